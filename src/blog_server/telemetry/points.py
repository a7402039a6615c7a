from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class GaugePoint:
    name: str
    value: int


@dataclass(frozen=True)
class SumPoint:
    """Cumulative sum reading, optionally attributed by key/value pairs."""

    name: str
    value: int
    attributes: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class HistogramPoint:
    """Cumulative histogram snapshot with bounds in seconds.

    ``bucket_counts`` holds the per-bucket counts; it may carry one more entry
    than ``bounds`` for the overflow bucket.
    """

    name: str
    count: int
    bounds: tuple[float, ...]
    bucket_counts: tuple[int, ...]


MetricPoint = GaugePoint | SumPoint | HistogramPoint
