from __future__ import annotations

import math
from collections.abc import Sequence

from blog_server.telemetry.counters import Int64Slot

DEFAULT_BOUNDARIES_MS = (5, 10, 25, 50, 75, 100, 250, 500, 750, 1000, 2500, 5000, 7500, 10000)

TRACKED_PERCENTILES = (50, 90, 95, 99)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class BucketedHistogram:
    """Fixed-boundary histogram with interpolated percentile estimates.

    Each bucket slot holds the count observed in that bucket only. Boundaries
    are upper bounds in milliseconds and cannot change after construction.
    """

    def __init__(self, boundaries_ms: Sequence[int] = DEFAULT_BOUNDARIES_MS) -> None:
        bounds = tuple(int(b) for b in boundaries_ms)
        if not bounds:
            raise ValueError("histogram needs at least one boundary")
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise ValueError("histogram boundaries must be strictly ascending")
        self._boundaries = bounds
        self._index = {bound: i for i, bound in enumerate(bounds)}
        self._buckets = [Int64Slot() for _ in bounds]
        self._total = Int64Slot()

    @property
    def boundaries(self) -> tuple[int, ...]:
        return self._boundaries

    @property
    def total(self) -> int:
        return self._total.load()

    def bucket_count(self, boundary_ms: int) -> int | None:
        i = self._index.get(boundary_ms)
        return None if i is None else self._buckets[i].load()

    def counts(self) -> dict[int, int]:
        return {bound: slot.load() for bound, slot in zip(self._boundaries, self._buckets)}

    def replace(self, total_count: int, bucket_counts: Sequence[int]) -> None:
        """Overwrite the total and every bucket. Missing trailing buckets become 0."""
        if len(bucket_counts) > len(self._boundaries):
            raise ValueError(
                f"got {len(bucket_counts)} bucket counts for {len(self._boundaries)} boundaries"
            )
        if total_count < 0 or any(c < 0 for c in bucket_counts):
            raise ValueError("histogram counts must not be negative")
        self._total.store(total_count)
        for i, slot in enumerate(self._buckets):
            slot.store(bucket_counts[i] if i < len(bucket_counts) else 0)

    def replace_from_seconds(
        self,
        total_count: int,
        bounds_seconds: Sequence[float],
        bucket_counts: Sequence[int],
    ) -> list[float]:
        """Load an exported histogram whose bounds are in seconds.

        A bound is kept only when its truncated millisecond value is one of
        this histogram's boundaries and a count exists at the same index. The
        overflow count past the last bound is ignored. Returns the bounds that
        were dropped.
        """
        counts = [0] * len(self._boundaries)
        dropped: list[float] = []
        for i, bound in enumerate(bounds_seconds):
            target = self._index.get(int(bound * 1000))
            if target is None or i >= len(bucket_counts):
                dropped.append(bound)
                continue
            counts[target] = bucket_counts[i]
        self.replace(total_count, counts)
        return dropped

    def percentile(self, p: float) -> int:
        return self.percentiles((p,))[0]

    def percentiles(self, ps: Sequence[float]) -> tuple[int, ...]:
        """Estimate several percentiles in a single walk over the buckets.

        ``ps`` must be ascending. A target inside a bucket with mass is
        interpolated linearly between the previous boundary (0 for the first
        bucket) and the bucket's own boundary. A target landing on an empty
        bucket returns that boundary, and a target never reached (total larger
        than the bucket sum) returns the last boundary.
        """
        for p in ps:
            if not 0 <= p <= 100:
                raise ValueError(f"percentile must be between 0 and 100, got {p}")
        if any(b < a for a, b in zip(ps, ps[1:])):
            raise ValueError("percentiles must be requested in ascending order")

        total = self._total.load()
        if total == 0:
            return tuple(0 for _ in ps)

        targets = [total * p / 100 for p in ps]
        results: list[int] = []
        running = 0.0
        previous = 0
        for bound, slot in zip(self._boundaries, self._buckets):
            count = float(slot.load())
            running += count
            while len(results) < len(targets) and running >= targets[len(results)]:
                target = targets[len(results)]
                if count > 0:
                    fraction = (target - (running - count)) / count
                    results.append(_round_half_up(previous + fraction * (bound - previous)))
                else:
                    results.append(bound)
            if len(results) == len(targets):
                break
            previous = bound

        last = self._boundaries[-1]
        results.extend(last for _ in range(len(targets) - len(results)))
        return tuple(results)


class PercentileCache:
    """Cached p50/p90/p95/p99 for O(1) reads."""

    def __init__(self) -> None:
        self._slots = {p: Int64Slot() for p in TRACKED_PERCENTILES}

    def store(self, values: Sequence[int]) -> None:
        for p, value in zip(TRACKED_PERCENTILES, values):
            self._slots[p].store(value)

    def get(self, p: int) -> int:
        return self._slots[p].load()

    def items(self) -> list[tuple[int, int]]:
        return [(p, slot.load()) for p, slot in self._slots.items()]
