from __future__ import annotations

import asyncio
import queue
import threading
from typing import Any

from pydantic import BaseModel, Field

from blog_server.logging import get_logger


class SpanEvent(BaseModel):
    name: str
    timestamp: int = 0
    attributes: dict[str, Any] = Field(default_factory=dict)


class SpanRecord(BaseModel):
    """Serializable copy of a finished trace span."""

    name: str = ""
    trace_id: str = ""
    span_id: str = ""
    parent_span_id: str = ""
    kind: str = ""
    start_time: int = 0
    end_time: int = 0
    status: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)
    events: list[SpanEvent] = Field(default_factory=list)
    resource: dict[str, Any] = Field(default_factory=dict)


class SpanBuffer:
    """Keeps the most recently finished span.

    Writers push into a small bounded queue and never block; when the queue is
    full the span is dropped. One consumer moves queued spans into the latest
    slot.
    """

    def __init__(self, capacity: int = 10, logger: Any = None) -> None:
        if capacity < 1:
            raise ValueError("span buffer capacity must be at least 1")
        self._queue: queue.Queue[SpanRecord] = queue.Queue(maxsize=capacity)
        self._latest = SpanRecord()
        self._lock = threading.Lock()
        self._dropped = 0
        self._log = logger or get_logger("telemetry")

    @property
    def capacity(self) -> int:
        return self._queue.maxsize

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped

    def write(self, span: SpanRecord) -> bool:
        try:
            self._queue.put_nowait(span)
        except queue.Full:
            with self._lock:
                self._dropped += 1
            self._log.warning("span_dropped", span_id=span.span_id, reason="full buffer")
            return False
        return True

    def drain_once(self) -> bool:
        """Move one queued span into the latest slot. Returns False when empty."""
        try:
            span = self._queue.get_nowait()
        except queue.Empty:
            return False
        self._store(span)
        return True

    def _store(self, span: SpanRecord) -> None:
        with self._lock:
            self._latest = span

    def latest(self) -> SpanRecord:
        with self._lock:
            return self._latest

    def read(self, indent: int | None = None) -> str:
        """JSON of the latest span, or of an empty record if none arrived yet."""
        with self._lock:
            latest = self._latest
        return latest.model_dump_json(indent=indent)

    async def run(self, stop: asyncio.Event, poll_interval: float = 0.25) -> None:
        """Consume queued spans until ``stop`` is set. Queued spans are not flushed."""
        while not stop.is_set():
            if self.drain_once():
                await asyncio.sleep(0)
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=poll_interval)
            except TimeoutError:
                pass
