"""Core types: export protocol and span data structures."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field


class OtlpProtocol(enum.Enum):
    """Transport used to ship spans to the collector."""

    GRPC = "grpc"
    HTTP_PROTOBUF = "http/protobuf"


@dataclass(frozen=True)
class SpanData:
    """Immutable snapshot of a closed span, ready for export."""

    span_id: str
    trace_id: str
    name: str
    start_time_ns: int
    end_time_ns: int
    duration_ms: float
    service_name: str
    attributes: dict[str, str | int | float | bool] = field(default_factory=dict)
    parent_span_id: str | None = None
