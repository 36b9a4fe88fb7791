"""Exporter, buffer and processor bound to one collector endpoint."""

from __future__ import annotations

import logging
import threading

from tracespammer._buffer import RingBuffer
from tracespammer._errors import BuildError
from tracespammer._exporter import SpanExporter, create_exporter
from tracespammer._processor import BackgroundProcessor
from tracespammer._types import OtlpProtocol, SpanData

logger = logging.getLogger("tracespammer.pipeline")


class ExporterPipeline:
    """Owns the network-facing export handle for one ``(endpoint, protocol)``.

    Spans handed to :meth:`submit` are buffered and shipped in batches by a
    background thread. :meth:`dispose` flushes what is buffered and releases
    the transport; later submissions are counted as dropped.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        endpoint: str,
        protocol: OtlpProtocol,
        buffer_size: int = 8192,
        batch_size: int = 512,
        flush_interval_ms: int = 1000,
    ) -> None:
        self.endpoint = endpoint
        self.protocol = protocol
        self._exporter = exporter
        self._buffer = RingBuffer(buffer_size)
        self._processor = BackgroundProcessor(
            self._buffer,
            batch_size=batch_size,
            flush_interval_ms=flush_interval_ms,
            handler=exporter.export,
        )
        self._lock = threading.Lock()
        self._disposed = False
        self._dropped = 0

    @classmethod
    def build(
        cls,
        endpoint: str,
        protocol: OtlpProtocol,
        *,
        service_name: str = "trace-spammer",
        buffer_size: int = 8192,
        batch_size: int = 512,
        flush_interval_ms: int = 1000,
        timeout_s: float = 10.0,
    ) -> ExporterPipeline:
        """Create and start a pipeline. Raises BuildError on failure."""
        exporter = create_exporter(
            endpoint, protocol, service_name, timeout_s=timeout_s
        )
        try:
            pipeline = cls(
                exporter,
                endpoint=endpoint,
                protocol=protocol,
                buffer_size=buffer_size,
                batch_size=batch_size,
                flush_interval_ms=flush_interval_ms,
            )
            pipeline.start()
        except Exception as exc:
            exporter.shutdown()
            raise BuildError(f"Could not start pipeline for {endpoint!r}: {exc}") from exc
        return pipeline

    def start(self) -> None:
        self._processor.start()

    def submit(self, span: SpanData) -> None:
        """Queue a closed span for export. Dropped once the pipeline is disposed."""
        with self._lock:
            if self._disposed:
                self._dropped += 1
                return
            self._buffer.enqueue(span)

    def dispose(self) -> None:
        """Flush and release the transport. Idempotent and never raises."""
        with self._lock:
            if self._disposed:
                return
            self._disposed = True
        try:
            self._processor.stop()
        except Exception:  # noqa: BLE001
            logger.warning("Error stopping export processor for %s", self.endpoint, exc_info=True)
        try:
            self._exporter.shutdown()
        except Exception:  # noqa: BLE001
            logger.warning("Error shutting down exporter for %s", self.endpoint, exc_info=True)
        logger.debug(
            "Pipeline for %s disposed (exported=%d failed=%d dropped=%d)",
            self.endpoint,
            self._processor.exported_count,
            self._processor.failed_count,
            self.dropped,
        )

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def dropped(self) -> int:
        """Spans lost to buffer overflow or submitted after disposal."""
        return self._dropped + self._buffer.drop_count

    @property
    def exported(self) -> int:
        return self._processor.exported_count

    def __repr__(self) -> str:
        return f"ExporterPipeline({self.endpoint!r}, {self.protocol.value})"
