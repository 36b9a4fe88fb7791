"""Background processor that drains the ring buffer into an exporter."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from tracespammer._buffer import RingBuffer
from tracespammer._errors import ExportError
from tracespammer._types import SpanData

logger = logging.getLogger("tracespammer.processor")

SpanHandler = Callable[[list[SpanData]], None]


def _noop_handler(spans: list[SpanData]) -> None:
    """Default handler that discards spans."""


class BackgroundProcessor:
    """Daemon thread that periodically drains spans from the buffer.

    Every flush empties the buffer in ``batch_size`` chunks. A failing
    handler is reported and the batch is dropped; the thread keeps going.
    """

    def __init__(
        self,
        buffer: RingBuffer,
        *,
        batch_size: int = 512,
        flush_interval_ms: int = 1000,
        handler: SpanHandler = _noop_handler,
        join_timeout_s: float = 5.0,
        name: str = "tracespammer-export",
    ) -> None:
        self._buffer = buffer
        self._batch_size = batch_size
        self._flush_interval_s = flush_interval_ms / 1000.0
        self._handler = handler
        self._join_timeout_s = join_timeout_s
        self._name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.exported_count = 0
        self.failed_count = 0

    def start(self) -> None:
        """Start the background drain loop."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Signal stop and perform a final drain.

        If the thread is still inside the handler after the join timeout the
        final drain is skipped; the thread empties the buffer itself once the
        handler returns.
        """
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=self._join_timeout_s)
            still_running = self._thread.is_alive()
            self._thread = None
            if still_running:
                logger.warning(
                    "%s did not stop within %.1fs; skipping final drain",
                    self._name,
                    self._join_timeout_s,
                )
                return
        self._flush()

    def _run(self) -> None:
        while not self._stop_event.wait(timeout=self._flush_interval_s):
            self._flush()

    def _flush(self) -> None:
        while True:
            spans = self._buffer.drain(self._batch_size)
            if not spans:
                return
            try:
                self._handler(spans)
            except ExportError as exc:
                self.failed_count += len(spans)
                logger.warning("ExportError: %s", exc)
            except Exception:  # noqa: BLE001
                self.failed_count += len(spans)
                logger.exception("Span handler failed; dropped %d spans", len(spans))
            else:
                self.exported_count += len(spans)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
