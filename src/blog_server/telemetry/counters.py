from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping

INT64_MAX = 2**63 - 1
INT64_MIN = -(2**63)


def saturate_int64(value: int) -> int:
    """Clamp an integer into the signed 64-bit range."""
    if value > INT64_MAX:
        return INT64_MAX
    if value < INT64_MIN:
        return INT64_MIN
    return value


class Int64Slot:
    """A single 64-bit value. Loads and stores are plain attribute access."""

    __slots__ = ("_value",)

    def __init__(self, value: int = 0) -> None:
        self._value = saturate_int64(int(value))

    def load(self) -> int:
        return self._value

    def store(self, value: int) -> None:
        self._value = saturate_int64(int(value))


class ShardedCounter:
    """Counter split into one slot per observed attribute value.

    Shards are created lazily and never removed, so the map grows with the
    number of distinct attribute values seen during the life of the process.
    """

    def __init__(self, attribute_key: str) -> None:
        self.attribute_key = attribute_key
        self._shards: dict[str, Int64Slot] = {}
        self._lock = threading.Lock()

    def ensure(self, attribute_value: str) -> Int64Slot:
        """Return the shard for ``attribute_value``, creating it at most once."""
        slot = self._shards.get(attribute_value)
        if slot is not None:
            return slot
        with self._lock:
            slot = self._shards.get(attribute_value)
            if slot is None:
                slot = Int64Slot()
                self._shards[attribute_value] = slot
            return slot

    def store(self, attribute_value: str, value: int) -> None:
        self.ensure(attribute_value).store(value)

    def get(self, attribute_value: str) -> int | None:
        slot = self._shards.get(attribute_value)
        return None if slot is None else slot.load()

    def snapshot(self) -> list[tuple[str, int]]:
        """Shard values sorted by attribute value."""
        with self._lock:
            items = list(self._shards.items())
        return sorted((key, slot.load()) for key, slot in items)

    def __len__(self) -> int:
        return len(self._shards)

    def __contains__(self, attribute_value: object) -> bool:
        return attribute_value in self._shards


class CounterRegistry:
    """Named counters and gauges plus attribute-sharded counters."""

    def __init__(
        self,
        names: Iterable[str],
        sharded: Mapping[str, str] | None = None,
    ) -> None:
        self._slots: dict[str, Int64Slot] = {name: Int64Slot() for name in names}
        self._sharded: dict[str, ShardedCounter] = {
            name: ShardedCounter(key) for name, key in (sharded or {}).items()
        }

    def update(self, name: str, value: int) -> bool:
        """Store ``value`` under ``name``. Unknown names are ignored."""
        slot = self._slots.get(name)
        if slot is None:
            return False
        slot.store(value)
        return True

    def value(self, name: str) -> int:
        slot = self._slots.get(name)
        return 0 if slot is None else slot.load()

    def sharded(self, name: str) -> ShardedCounter | None:
        return self._sharded.get(name)

    def shard_key(self, name: str) -> str | None:
        counter = self._sharded.get(name)
        return None if counter is None else counter.attribute_key

    def ensure_shard(self, name: str, attribute_value: str) -> Int64Slot | None:
        counter = self._sharded.get(name)
        if counter is None:
            return None
        return counter.ensure(attribute_value)

    def update_shard(self, name: str, attribute_value: str, value: int) -> bool:
        slot = self.ensure_shard(name, attribute_value)
        if slot is None:
            return False
        slot.store(value)
        return True

    def names(self) -> list[str]:
        return list(self._slots)
