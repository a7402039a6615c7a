"""Metric names the ingestion pipeline knows how to route."""

from __future__ import annotations

# Gauges sampled from the process runtime.
TASK_COUNT = "blog.task.count"
THREAD_COUNT = "blog.thread.count"
MEMORY_RSS_BYTES = "blog.memory.rss.bytes"
MEMORY_VMS_BYTES = "blog.memory.vms.bytes"

# Cumulative sums, stored as last-value snapshots.
ARTICLES_SERVED = "articles.served"
REQUESTS_BLOCKED = "request.blocked"
ROBOTIC_VISITORS = "robotic.visitors"
COST_UPDATE_SUCCESS = "blog.cost.update.success"
COST_UPDATE_FAILURE = "blog.cost.update.failure"

# Histogram of server request durations, exported in seconds.
REQUEST_DURATION = "http.server.request.duration"

RUNTIME_GAUGES = (TASK_COUNT, THREAD_COUNT, MEMORY_RSS_BYTES, MEMORY_VMS_BYTES)

SIMPLE_METRICS = (
    ARTICLES_SERVED,
    REQUESTS_BLOCKED,
    ROBOTIC_VISITORS,
    COST_UPDATE_SUCCESS,
    COST_UPDATE_FAILURE,
    *RUNTIME_GAUGES,
)

# Sum name -> attribute key whose value selects the shard.
SHARDED_METRICS = {
    ARTICLES_SERVED: "article",
    REQUESTS_BLOCKED: "blocked",
}
