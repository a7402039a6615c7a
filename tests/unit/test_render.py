from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from blog_server.telemetry import catalog
from blog_server.telemetry.points import GaugePoint, HistogramPoint, SumPoint
from blog_server.telemetry.render import format_uptime, metric_snapshot, render_metric_snippet
from blog_server.telemetry.storage import TelemetryStorage

STARTED = datetime(2024, 3, 9, 12, 0, 0, tzinfo=timezone.utc)
NOW = STARTED + timedelta(hours=2, minutes=3, seconds=4)


@pytest.fixture
def storage() -> TelemetryStorage:
    return TelemetryStorage(clock=lambda: STARTED)


def populate(storage: TelemetryStorage) -> None:
    storage.pipeline.export(
        [
            SumPoint(catalog.ARTICLES_SERVED, 1, {"article": "zebra"}),
            SumPoint(catalog.ARTICLES_SERVED, 4, {"article": "apple"}),
            SumPoint(catalog.ARTICLES_SERVED, 5),
            SumPoint(catalog.REQUESTS_BLOCKED, 2, {"blocked": "URI_LENGTH"}),
            SumPoint(catalog.REQUESTS_BLOCKED, 2),
            SumPoint(catalog.ROBOTIC_VISITORS, 7),
            GaugePoint(catalog.THREAD_COUNT, 6),
            HistogramPoint(catalog.REQUEST_DURATION, 33, (0.005, 0.01), (32, 1, 0)),
        ]
    )


@pytest.mark.parametrize(
    ("delta", "expected"),
    [
        (timedelta(0), "0:00:00"),
        (timedelta(hours=2, minutes=3, seconds=4, milliseconds=900), "2:03:04"),
        (timedelta(days=1, seconds=5), "1 day, 0:00:05"),
        (timedelta(seconds=-3), "0:00:00"),
    ],
)
def test_format_uptime(delta: timedelta, expected: str) -> None:
    assert format_uptime(delta) == expected


def test_empty_storage_renders_zeros(storage: TelemetryStorage) -> None:
    snippet = render_metric_snippet(storage, now=STARTED)
    assert snippet.startswith("<p>blog.uptime: 0:00:00</p>")
    assert "<p>blog.articles.served: 0</p>" in snippet
    assert "<p>blog.server.request.ms.p99: 0</p>" in snippet
    assert snippet.endswith("<p>Last Updated: 2024-03-09 12:00:00</p>")


def test_snippet_lists_shards_sorted(storage: TelemetryStorage) -> None:
    populate(storage)
    snippet = render_metric_snippet(storage, now=NOW)

    assert "<p>blog.uptime: 2:03:04</p>" in snippet
    assert (
        "<p>blog.articles.served: 5</p>"
        "<p>blog.articles.served.apple: 4</p>"
        "<p>blog.articles.served.zebra: 1</p>"
        "<p>blog.requests.blocked: 2</p>"
        "<p>blog.requests.blocked.URI_LENGTH: 2</p>"
        "<p>blog.requests.robots: 7</p>"
    ) in snippet
    assert (
        "<p>blog.server.request.ms.p50: 3</p>"
        "<p>blog.server.request.ms.p90: 5</p>"
        "<p>blog.server.request.ms.p95: 5</p>"
        "<p>blog.server.request.ms.p99: 8</p>"
    ) in snippet
    assert f"<p>{catalog.THREAD_COUNT}: 6</p>" in snippet


def test_same_state_renders_same_bytes(storage: TelemetryStorage) -> None:
    populate(storage)
    assert render_metric_snippet(storage, now=NOW) == render_metric_snippet(storage, now=NOW)


def test_shard_values_are_escaped(storage: TelemetryStorage) -> None:
    storage.pipeline.export([SumPoint(catalog.ARTICLES_SERVED, 1, {"article": "<script>"})])
    snippet = render_metric_snippet(storage, now=NOW)
    assert "<script>" not in snippet
    assert "blog.articles.served.&lt;script&gt;: 1" in snippet


def test_snapshot_mirrors_snippet(storage: TelemetryStorage) -> None:
    populate(storage)
    snapshot = metric_snapshot(storage, now=NOW)

    assert snapshot["uptime_seconds"] == 7384.0
    assert snapshot["counters"][catalog.ARTICLES_SERVED] == 5
    assert snapshot["sharded"][catalog.ARTICLES_SERVED] == {"apple": 4, "zebra": 1}
    assert snapshot["sharded"][catalog.REQUESTS_BLOCKED] == {"URI_LENGTH": 2}
    assert snapshot["request_duration_ms"] == {"p50": 3, "p90": 5, "p95": 5, "p99": 8}
    assert snapshot["histogram_total"] == 33
    assert snapshot["spans_dropped"] == 0
    assert snapshot["last_updated"] == NOW.isoformat()
    json.dumps(snapshot)
