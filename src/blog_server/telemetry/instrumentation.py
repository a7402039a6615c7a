"""OpenTelemetry SDK wiring that feeds the local telemetry storage.

Metrics recorded through the meter are collected by a periodic reader and
handed to :class:`LocalMetricExporter`, which converts them into metric points
for the ingestion pipeline. Finished spans go through a simple span processor
to :class:`LocalSpanExporter`, which keeps only the newest span of each batch.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from opentelemetry.metrics import Counter, Histogram as HistogramInstrument
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import (
    Gauge,
    Histogram,
    MetricExporter,
    MetricExportResult,
    MetricReader,
    MetricsData,
    PeriodicExportingMetricReader,
    Sum,
)
from opentelemetry.sdk.metrics.view import ExplicitBucketHistogramAggregation, View
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter, SpanExportResult
from opentelemetry.trace import Tracer, format_span_id, format_trace_id

from blog_server.logging import get_logger
from blog_server.telemetry import catalog
from blog_server.telemetry.pipeline import MetricIngestionPipeline
from blog_server.telemetry.points import GaugePoint, HistogramPoint, MetricPoint, SumPoint
from blog_server.telemetry.spans import SpanBuffer, SpanEvent, SpanRecord
from blog_server.telemetry.storage import TelemetryStorage

SERVICE_NAME = "blog-server"


def metrics_to_points(metrics_data: MetricsData) -> list[MetricPoint]:
    points: list[MetricPoint] = []
    for resource_metrics in metrics_data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                data = metric.data
                if isinstance(data, Gauge):
                    points.extend(
                        GaugePoint(name=metric.name, value=int(dp.value)) for dp in data.data_points
                    )
                elif isinstance(data, Sum):
                    points.extend(
                        SumPoint(
                            name=metric.name,
                            value=int(dp.value),
                            attributes={k: str(v) for k, v in (dp.attributes or {}).items()},
                        )
                        for dp in data.data_points
                    )
                elif isinstance(data, Histogram):
                    points.extend(
                        HistogramPoint(
                            name=metric.name,
                            count=int(dp.count),
                            bounds=tuple(dp.explicit_bounds),
                            bucket_counts=tuple(int(c) for c in dp.bucket_counts),
                        )
                        for dp in data.data_points
                    )
    return points


def span_to_record(span: ReadableSpan) -> SpanRecord:
    context = span.context
    parent = span.parent
    return SpanRecord(
        name=span.name,
        trace_id=format_trace_id(context.trace_id) if context else "",
        span_id=format_span_id(context.span_id) if context else "",
        parent_span_id=format_span_id(parent.span_id) if parent else "",
        kind=span.kind.name,
        start_time=span.start_time or 0,
        end_time=span.end_time or 0,
        status=span.status.status_code.name,
        attributes=dict(span.attributes or {}),
        events=[
            SpanEvent(
                name=event.name,
                timestamp=event.timestamp or 0,
                attributes=dict(event.attributes or {}),
            )
            for event in span.events
        ],
        resource=dict(span.resource.attributes) if span.resource else {},
    )


class LocalMetricExporter(MetricExporter):
    """Pushes each collection cycle into the ingestion pipeline."""

    def __init__(self, pipeline: MetricIngestionPipeline) -> None:
        super().__init__()
        self._pipeline = pipeline

    def export(
        self,
        metrics_data: MetricsData,
        timeout_millis: float = 10_000,
        **kwargs: Any,
    ) -> MetricExportResult:
        self._pipeline.export(metrics_to_points(metrics_data))
        return MetricExportResult.SUCCESS

    def force_flush(self, timeout_millis: float = 10_000) -> bool:
        return True

    def shutdown(self, timeout_millis: float = 30_000, **kwargs: Any) -> None:
        return None


class LocalSpanExporter(SpanExporter):
    """Writes the newest span of every export batch to the span buffer."""

    def __init__(self, buffer: SpanBuffer) -> None:
        self._buffer = buffer

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        if spans:
            self._buffer.write(span_to_record(spans[-1]))
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        return None


@dataclass
class Instrumentation:
    """Providers and instruments used by the HTTP layer."""

    meter_provider: MeterProvider
    tracer_provider: TracerProvider
    tracer: Tracer
    articles_served: Counter
    requests_blocked: Counter
    robotic_visitors: Counter
    request_duration: HistogramInstrument

    def record_article(self, article: str) -> None:
        self.articles_served.add(1, {"article": article})
        self.articles_served.add(1)

    def record_blocked(self, reason: str) -> None:
        self.requests_blocked.add(1, {"blocked": reason})
        self.requests_blocked.add(1)

    def record_robots(self) -> None:
        self.robotic_visitors.add(1)

    def record_duration(self, seconds: float) -> None:
        self.request_duration.record(seconds)

    def flush(self) -> None:
        self.meter_provider.force_flush()
        self.tracer_provider.force_flush()

    def shutdown(self) -> None:
        self.tracer_provider.shutdown()
        self.meter_provider.shutdown()


def install_export_pipeline(
    storage: TelemetryStorage,
    *,
    env: str = "",
    export_interval_seconds: float = 5.0,
    metric_reader: MetricReader | None = None,
) -> Instrumentation:
    """Build meter and tracer providers that export into ``storage``.

    Providers are returned instead of being registered globally.
    """
    logger = get_logger("telemetry")
    resource = Resource.create({"service.name": SERVICE_NAME, "env": env})

    tracer_provider = TracerProvider(resource=resource)
    tracer_provider.add_span_processor(SimpleSpanProcessor(LocalSpanExporter(storage.spans)))

    reader = metric_reader or PeriodicExportingMetricReader(
        LocalMetricExporter(storage.pipeline),
        export_interval_millis=export_interval_seconds * 1000,
    )
    duration_view = View(
        instrument_name=catalog.REQUEST_DURATION,
        aggregation=ExplicitBucketHistogramAggregation(
            boundaries=[bound / 1000 for bound in storage.histogram.boundaries]
        ),
    )
    meter_provider = MeterProvider(
        resource=resource,
        metric_readers=[reader],
        views=[duration_view],
        shutdown_on_exit=False,
    )

    meter = meter_provider.get_meter(SERVICE_NAME)
    instrumentation = Instrumentation(
        meter_provider=meter_provider,
        tracer_provider=tracer_provider,
        tracer=tracer_provider.get_tracer(SERVICE_NAME),
        articles_served=meter.create_counter(
            catalog.ARTICLES_SERVED,
            description="Number of times a blog article has been requested",
        ),
        requests_blocked=meter.create_counter(
            catalog.REQUESTS_BLOCKED,
            description="Number of requests blocked by the request guard",
        ),
        robotic_visitors=meter.create_counter(
            catalog.ROBOTIC_VISITORS,
            description="Number of times robots.txt has been requested",
        ),
        request_duration=meter.create_histogram(
            catalog.REQUEST_DURATION,
            unit="s",
            description="Duration of HTTP server requests",
        ),
    )
    logger.info("export_pipeline_installed", interval_seconds=export_interval_seconds)
    return instrumentation
