"""Bounded ring buffer between the span generator and the export thread."""

from __future__ import annotations

import threading
from collections import deque

from tracespammer._types import SpanData


class RingBuffer:
    """Thread-safe ring buffer backed by collections.deque.

    The generator thread enqueues while the processor thread drains, and a
    pipeline rebuild may drain from a third thread, so the drop accounting
    and batch draining are done under a lock.
    """

    def __init__(self, maxsize: int) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._buffer: deque[SpanData] = deque(maxlen=maxsize)
        self._lock = threading.Lock()
        self._drop_count: int = 0
        self._maxsize = maxsize

    def enqueue(self, span: SpanData) -> None:
        """Add a span to the buffer. Oldest item is dropped if full."""
        with self._lock:
            if len(self._buffer) == self._maxsize:
                self._drop_count += 1
            self._buffer.append(span)

    def drain(self, max_items: int) -> list[SpanData]:
        """Remove and return up to max_items spans, oldest first."""
        with self._lock:
            count = min(max_items, len(self._buffer))
            return [self._buffer.popleft() for _ in range(count)]

    @property
    def drop_count(self) -> int:
        """Number of spans dropped due to buffer overflow."""
        return self._drop_count

    def __len__(self) -> int:
        return len(self._buffer)
