"""Live span nodes for generated trace trees."""

from __future__ import annotations

import time
import uuid
import weakref
from collections.abc import Callable
from types import TracebackType

from tracespammer._types import SpanData

SpanSink = Callable[[SpanData], None]


class SpanNode:
    """A live span that becomes an immutable SpanData when it closes.

    Used as a context manager::

        with SpanNode("Parent - 12:00:00", sink=pipeline.submit) as root:
            with SpanNode("Child 1 - (0) - 12:00:00", sink=..., parent=root):
                ...

    Only a clean exit hands the snapshot to ``sink``. A node unwound by an
    exception (cancellation included) is discarded without being exported.
    """

    def __init__(
        self,
        name: str,
        *,
        sink: SpanSink | None,
        parent: SpanNode | None = None,
        duration_ms: int | None = None,
        label: str | None = None,
        attributes: dict[str, str | int | float | bool] | None = None,
        service_name: str = "",
    ) -> None:
        self.name = name
        self.duration_ms = duration_ms
        self._sink = sink
        self._service_name = service_name
        self._attributes: dict[str, str | int | float | bool] = dict(attributes or {})

        self.span_id: str = uuid.uuid4().hex[:16]
        if parent is not None:
            self._parent: weakref.ref[SpanNode] | None = weakref.ref(parent)
            self.trace_id: str = parent.trace_id
            self.parent_span_id: str | None = parent.span_id
            self.label: str = label if label is not None else parent.label
        else:
            self._parent = None
            self.trace_id = uuid.uuid4().hex
            self.parent_span_id = None
            self.label = label if label is not None else time.strftime("%H:%M:%S")

        self._start_time_ns: int = 0
        self._end_time_ns: int = 0
        self.closed = False

    @property
    def parent(self) -> SpanNode | None:
        """The owning node, or None for a root (or once the parent is gone)."""
        return self._parent() if self._parent is not None else None

    @property
    def attributes(self) -> dict[str, str | int | float | bool]:
        return dict(self._attributes)

    def __enter__(self) -> SpanNode:
        self._start_time_ns = time.time_ns()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self._end_time_ns = time.time_ns()
        self.closed = True
        if exc_type is None and self._sink is not None:
            self._sink(self._to_span_data())

    def _to_span_data(self) -> SpanData:
        if self.duration_ms is not None:
            duration_ms: float = float(self.duration_ms)
        else:
            duration_ms = (self._end_time_ns - self._start_time_ns) / 1_000_000
        return SpanData(
            span_id=self.span_id,
            trace_id=self.trace_id,
            name=self.name,
            start_time_ns=self._start_time_ns,
            end_time_ns=self._end_time_ns,
            duration_ms=duration_ms,
            service_name=self._service_name,
            attributes=dict(self._attributes),
            parent_span_id=self.parent_span_id,
        )
