from __future__ import annotations

import json

import pytest
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from blog_server.telemetry import catalog
from blog_server.telemetry.instrumentation import (
    Instrumentation,
    install_export_pipeline,
    metrics_to_points,
)
from blog_server.telemetry.points import HistogramPoint, SumPoint
from blog_server.telemetry.storage import TelemetryStorage


@pytest.fixture
def storage() -> TelemetryStorage:
    return TelemetryStorage()


@pytest.fixture
def reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def instrumentation(storage: TelemetryStorage, reader: InMemoryMetricReader):
    instr = install_export_pipeline(storage, env="test", metric_reader=reader)
    yield instr
    instr.shutdown()


def collect(storage: TelemetryStorage, reader: InMemoryMetricReader) -> list:
    points = metrics_to_points(reader.get_metrics_data())
    storage.pipeline.export(points)
    return points


def test_counters_reach_registry_with_shards(
    storage: TelemetryStorage, reader: InMemoryMetricReader, instrumentation: Instrumentation
) -> None:
    instrumentation.record_article("hello-world")
    instrumentation.record_article("hello-world")
    instrumentation.record_article("second-post")
    instrumentation.record_blocked("BAD_METHOD")
    instrumentation.record_robots()

    collect(storage, reader)

    registry = storage.registry
    assert registry.value(catalog.ARTICLES_SERVED) == 3
    assert registry.sharded(catalog.ARTICLES_SERVED).snapshot() == [("hello-world", 2), ("second-post", 1)]
    assert registry.value(catalog.REQUESTS_BLOCKED) == 1
    assert registry.sharded(catalog.REQUESTS_BLOCKED).get("BAD_METHOD") == 1
    assert registry.value(catalog.ROBOTIC_VISITORS) == 1


def test_cumulative_sums_are_snapshots(
    storage: TelemetryStorage, reader: InMemoryMetricReader, instrumentation: Instrumentation
) -> None:
    instrumentation.record_robots()
    collect(storage, reader)
    instrumentation.record_robots()
    collect(storage, reader)
    assert storage.registry.value(catalog.ROBOTIC_VISITORS) == 2


def test_durations_use_millisecond_buckets(
    storage: TelemetryStorage, reader: InMemoryMetricReader, instrumentation: Instrumentation
) -> None:
    instrumentation.record_duration(0.003)
    instrumentation.record_duration(0.2)

    points = collect(storage, reader)

    histograms = [p for p in points if isinstance(p, HistogramPoint)]
    assert len(histograms) == 1
    assert histograms[0].count == 2
    assert len(histograms[0].bounds) == len(storage.histogram.boundaries)
    assert storage.histogram.total == 2
    assert storage.histogram.bucket_count(5) == 1
    assert storage.histogram.bucket_count(250) == 1
    assert storage.percentiles.get(50) == 5
    assert storage.percentiles.get(99) == 247


def test_sum_points_carry_string_attributes(reader: InMemoryMetricReader, instrumentation: Instrumentation) -> None:
    instrumentation.record_blocked("URI_LENGTH")
    points = metrics_to_points(reader.get_metrics_data())
    attributed = [p for p in points if isinstance(p, SumPoint) and p.attributes]
    assert attributed == [SumPoint(catalog.REQUESTS_BLOCKED, 1, {"blocked": "URI_LENGTH"})]


def test_finished_spans_land_in_buffer(storage: TelemetryStorage, instrumentation: Instrumentation) -> None:
    with instrumentation.tracer.start_as_current_span("Serve /article/hello-world") as outer:
        outer.set_attribute("http.method", "GET")
        with instrumentation.tracer.start_as_current_span("render"):
            pass

    assert storage.spans.pending == 2
    storage.spans.drain_once()
    inner = storage.spans.latest()
    storage.spans.drain_once()
    latest = json.loads(storage.last_span_json())

    assert inner.name == "render"
    assert latest["name"] == "Serve /article/hello-world"
    assert latest["attributes"] == {"http.method": "GET"}
    assert len(latest["trace_id"]) == 32
    assert inner.trace_id == latest["trace_id"]
    assert inner.parent_span_id == latest["span_id"]
    assert latest["parent_span_id"] == ""
    assert latest["resource"]["service.name"] == "blog-server"


def test_periodic_reader_exports_on_flush(storage: TelemetryStorage) -> None:
    instr = install_export_pipeline(storage, export_interval_seconds=3600)
    try:
        instr.record_article("hello-world")
        instr.record_duration(0.04)
        instr.flush()
    finally:
        instr.shutdown()

    assert storage.registry.sharded(catalog.ARTICLES_SERVED).get("hello-world") == 1
    assert storage.histogram.bucket_count(50) == 1
