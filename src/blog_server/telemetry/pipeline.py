from __future__ import annotations

import threading
from collections.abc import Iterable
from typing import Any

from blog_server.logging import get_logger
from blog_server.telemetry import catalog
from blog_server.telemetry.counters import CounterRegistry
from blog_server.telemetry.histogram import (
    TRACKED_PERCENTILES,
    BucketedHistogram,
    PercentileCache,
)
from blog_server.telemetry.points import GaugePoint, HistogramPoint, MetricPoint, SumPoint


class MetricIngestionPipeline:
    """Routes exported metric points into the counter registry and histogram.

    ``export`` is the only writer for gauges, sums and the request-duration
    histogram. Percentiles are recomputed inline after every histogram replace
    so they are current when ``export`` returns.
    """

    def __init__(
        self,
        registry: CounterRegistry,
        histogram: BucketedHistogram,
        percentiles: PercentileCache,
        histogram_name: str = catalog.REQUEST_DURATION,
        logger: Any = None,
    ) -> None:
        self._registry = registry
        self._histogram = histogram
        self._percentiles = percentiles
        self._histogram_name = histogram_name
        self._update_lock = threading.Lock()
        self._log = logger or get_logger("telemetry")

    def export(self, batch: Iterable[MetricPoint]) -> None:
        for point in batch:
            try:
                self._apply(point)
            except Exception:
                self._log.exception("metric_point_failed", metric=getattr(point, "name", None))

    def _apply(self, point: MetricPoint) -> None:
        match point:
            case GaugePoint():
                self._apply_simple(point.name, point.value)
            case SumPoint():
                self._apply_sum(point)
            case HistogramPoint():
                self._apply_histogram(point)
            case _:
                self._log.warning("unsupported_metric_point", type=type(point).__name__)

    def _apply_simple(self, name: str, value: int) -> None:
        if not self._registry.update(name, value):
            self._log.debug("unknown_metric", metric=name)

    def _apply_sum(self, point: SumPoint) -> None:
        key = self._registry.shard_key(point.name)
        if key is not None and key in point.attributes:
            self._registry.update_shard(point.name, str(point.attributes[key]), point.value)
            return
        self._apply_simple(point.name, point.value)

    def _apply_histogram(self, point: HistogramPoint) -> None:
        if point.name != self._histogram_name:
            self._log.debug("unknown_metric", metric=point.name)
            return
        with self._update_lock:
            dropped = self._histogram.replace_from_seconds(
                point.count, point.bounds, point.bucket_counts
            )
            values = self._histogram.percentiles(TRACKED_PERCENTILES)
            self._percentiles.store(values)
        for bound in dropped:
            self._log.warning("histogram_bound_dropped", metric=point.name, bound=bound)
        self._log.debug(
            "percentiles_updated",
            **{f"p{p}": v for p, v in zip(TRACKED_PERCENTILES, values)},
        )
