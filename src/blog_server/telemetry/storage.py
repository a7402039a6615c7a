from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import datetime, timezone
from typing import Any

from blog_server.config import Settings
from blog_server.logging import get_logger
from blog_server.telemetry import catalog
from blog_server.telemetry.cost import CostExplorerSource, CostRefresher, CostReport, CostSource
from blog_server.telemetry.counters import CounterRegistry
from blog_server.telemetry.histogram import DEFAULT_BOUNDARIES_MS, BucketedHistogram, PercentileCache
from blog_server.telemetry.pipeline import MetricIngestionPipeline
from blog_server.telemetry.retry import create_fetch_with_retry
from blog_server.telemetry.runtime import RuntimeSampler, RuntimeStatsSource
from blog_server.telemetry.spans import SpanBuffer


class TelemetryStorage:
    """Process-wide telemetry state, created once at startup."""

    def __init__(
        self,
        *,
        boundaries_ms: Sequence[int] = DEFAULT_BOUNDARIES_MS,
        span_capacity: int = 10,
        clock: Callable[[], datetime] | None = None,
        logger: Any = None,
    ) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.started_at = self._clock()
        self.registry = CounterRegistry(catalog.SIMPLE_METRICS, catalog.SHARDED_METRICS)
        self.histogram = BucketedHistogram(boundaries_ms)
        self.percentiles = PercentileCache()
        self.spans = SpanBuffer(span_capacity, logger=logger)
        self.cost = CostReport()
        self.pipeline = MetricIngestionPipeline(
            self.registry, self.histogram, self.percentiles, logger=logger
        )

    def now(self) -> datetime:
        return self._clock()

    def cost_fragment(self) -> str:
        return self.cost.fragment()

    def last_span_json(self) -> str:
        return self.spans.read()


class TelemetryService:
    """Runs the span consumer, runtime sampler and cost refresher loops."""

    def __init__(
        self,
        storage: TelemetryStorage,
        sampler: RuntimeSampler,
        refresher: CostRefresher,
        shutdown_timeout: float = 5.0,
        logger: Any = None,
    ) -> None:
        self.storage = storage
        self.sampler = sampler
        self.refresher = refresher
        self._shutdown_timeout = shutdown_timeout
        self._stop = asyncio.Event()
        self._tasks: list[asyncio.Task[None]] = []
        self._log = logger or get_logger("telemetry")

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._stop.clear()
        self._tasks = [
            asyncio.create_task(self.storage.spans.run(self._stop), name="span-consumer"),
            asyncio.create_task(self.sampler.run(self._stop), name="runtime-sampler"),
            asyncio.create_task(self.refresher.run(self._stop), name="cost-refresher"),
        ]
        self._log.info("telemetry_started")

    async def stop(self) -> None:
        self._stop.set()
        if not self._tasks:
            return
        done, pending = await asyncio.wait(self._tasks, timeout=self._shutdown_timeout)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.wait(pending)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                self._log.error(
                    "telemetry_task_failed",
                    task=task.get_name(),
                    error=str(task.exception()),
                )
        self._tasks = []
        self._log.info("telemetry_stopped", cancelled=len(pending))


def create_telemetry(
    settings: Settings,
    *,
    cost_source: CostSource | None = None,
    stats_source: RuntimeStatsSource | None = None,
    clock: Callable[[], datetime] | None = None,
) -> TelemetryService:
    """Wire storage, pipeline and background loops from settings."""
    logger = get_logger("telemetry")
    storage = TelemetryStorage(
        span_capacity=settings.span_buffer_capacity,
        clock=clock,
        logger=logger,
    )
    sampler = RuntimeSampler(
        storage.pipeline,
        stats_source,
        interval_seconds=settings.runtime_sample_interval_seconds,
        logger=logger,
    )
    if settings.cost_tracking_enabled and cost_source is None:
        cost_source = CostExplorerSource(region=settings.cost_region, logger=logger)
    refresher = CostRefresher(
        storage.cost,
        storage.pipeline,
        cost_source,
        enabled=settings.cost_tracking_enabled,
        allowed_services=settings.cost_allowed_services,
        interval_seconds=settings.cost_refresh_interval_hours * 3600,
        fetch=create_fetch_with_retry(
            max_attempts=settings.cost_retry_attempts,
            min_wait=settings.cost_retry_min_wait_seconds,
            max_wait=settings.cost_retry_max_wait_seconds,
            logger=logger,
        ),
        clock=clock,
        logger=logger,
    )
    return TelemetryService(storage, sampler, refresher, logger=logger)
