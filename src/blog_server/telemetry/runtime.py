from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol

import psutil

from blog_server.logging import get_logger
from blog_server.telemetry import catalog
from blog_server.telemetry.counters import INT64_MAX
from blog_server.telemetry.pipeline import MetricIngestionPipeline
from blog_server.telemetry.points import GaugePoint


@dataclass(frozen=True)
class RuntimeStats:
    task_count: int
    thread_count: int
    rss_bytes: int
    vms_bytes: int


class RuntimeStatsSource(Protocol):
    def read(self) -> RuntimeStats: ...


class ProcessStatsSource:
    """Reads asyncio task count and process memory/thread stats via psutil."""

    def __init__(self) -> None:
        self._process = psutil.Process()

    def read(self) -> RuntimeStats:
        try:
            tasks = len(asyncio.all_tasks())
        except RuntimeError:
            tasks = 0
        with self._process.oneshot():
            mem = self._process.memory_info()
            threads = self._process.num_threads()
        return RuntimeStats(
            task_count=tasks,
            thread_count=threads,
            rss_bytes=mem.rss,
            vms_bytes=mem.vms,
        )


class RuntimeSampler:
    """Feeds process runtime stats through the ingestion pipeline's gauge path."""

    def __init__(
        self,
        pipeline: MetricIngestionPipeline,
        source: RuntimeStatsSource | None = None,
        interval_seconds: float = 5.0,
        logger: Any = None,
    ) -> None:
        self._pipeline = pipeline
        self._source = source or ProcessStatsSource()
        self._interval = interval_seconds
        self._log = logger or get_logger("telemetry")

    def sample_once(self) -> None:
        stats = self._source.read()
        readings = {
            catalog.TASK_COUNT: stats.task_count,
            catalog.THREAD_COUNT: stats.thread_count,
            catalog.MEMORY_RSS_BYTES: stats.rss_bytes,
            catalog.MEMORY_VMS_BYTES: stats.vms_bytes,
        }
        points = []
        for name, value in readings.items():
            if value > INT64_MAX:
                self._log.error("runtime_value_saturated", metric=name)
                value = INT64_MAX
            points.append(GaugePoint(name=name, value=value))
        self._pipeline.export(points)

    async def run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            self.sample_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except TimeoutError:
                pass
