from __future__ import annotations

import html
from datetime import datetime, timedelta
from typing import Any

from blog_server.telemetry import catalog
from blog_server.telemetry.storage import TelemetryStorage

# (registry name, display name) pairs, in render order.
_SHARDED_DISPLAY = (
    (catalog.ARTICLES_SERVED, "blog.articles.served"),
    (catalog.REQUESTS_BLOCKED, "blog.requests.blocked"),
)

_TRAILING_DISPLAY = (
    (catalog.TASK_COUNT, catalog.TASK_COUNT),
    (catalog.THREAD_COUNT, catalog.THREAD_COUNT),
    (catalog.MEMORY_RSS_BYTES, catalog.MEMORY_RSS_BYTES),
    (catalog.MEMORY_VMS_BYTES, catalog.MEMORY_VMS_BYTES),
    (catalog.COST_UPDATE_SUCCESS, catalog.COST_UPDATE_SUCCESS),
    (catalog.COST_UPDATE_FAILURE, catalog.COST_UPDATE_FAILURE),
)


def format_uptime(delta: timedelta) -> str:
    return str(timedelta(seconds=max(0, int(delta.total_seconds()))))


def _line(name: str, value: Any) -> str:
    return f"<p>{html.escape(name)}: {html.escape(str(value))}</p>"


def render_metric_snippet(storage: TelemetryStorage, now: datetime | None = None) -> str:
    """HTML fragment of the current aggregates.

    Sharded counters are listed sorted by attribute value, so the same state
    and ``now`` always render the same bytes.
    """
    now = now or storage.now()
    registry = storage.registry
    lines = [_line("blog.uptime", format_uptime(now - storage.started_at))]

    for name, display in _SHARDED_DISPLAY:
        lines.append(_line(display, registry.value(name)))
        shards = registry.sharded(name)
        if shards is not None:
            for key, value in shards.snapshot():
                lines.append(_line(f"{display}.{key}", value))

    lines.append(_line("blog.requests.robots", registry.value(catalog.ROBOTIC_VISITORS)))

    for p, value in storage.percentiles.items():
        lines.append(_line(f"blog.server.request.ms.p{p}", value))

    for name, display in _TRAILING_DISPLAY:
        lines.append(_line(display, registry.value(name)))

    lines.append(_line("Last Updated", now.strftime("%Y-%m-%d %H:%M:%S")))
    return "".join(lines)


def metric_snapshot(storage: TelemetryStorage, now: datetime | None = None) -> dict[str, Any]:
    """JSON-serializable view of the same data as the HTML snippet."""
    now = now or storage.now()
    registry = storage.registry
    sharded: dict[str, dict[str, int]] = {}
    for name, _ in _SHARDED_DISPLAY:
        shards = registry.sharded(name)
        sharded[name] = dict(shards.snapshot()) if shards is not None else {}
    return {
        "uptime_seconds": round((now - storage.started_at).total_seconds(), 1),
        "counters": {name: registry.value(name) for name in registry.names()},
        "sharded": sharded,
        "request_duration_ms": {f"p{p}": v for p, v in storage.percentiles.items()},
        "histogram_total": storage.histogram.total,
        "spans_dropped": storage.spans.dropped,
        "last_updated": now.isoformat(),
    }
