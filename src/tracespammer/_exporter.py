"""OTLP exporters — convert SpanData batches to protobuf and ship them.

Two transports share one encoder: gRPC via ``TraceServiceStub`` and
HTTP/protobuf via a POST to ``<endpoint>/v1/traces``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

import grpc
import httpx
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceStub,
)
from opentelemetry.proto.common.v1.common_pb2 import (
    AnyValue,
    InstrumentationScope,
    KeyValue,
)
from opentelemetry.proto.resource.v1.resource_pb2 import Resource
from opentelemetry.proto.trace.v1.trace_pb2 import (
    ResourceSpans,
    ScopeSpans,
)
from opentelemetry.proto.trace.v1.trace_pb2 import (
    Span as OtlpSpan,
)

from tracespammer._errors import BuildError, ExportError
from tracespammer._types import OtlpProtocol

if TYPE_CHECKING:
    from tracespammer._types import SpanData

logger = logging.getLogger("tracespammer.exporter")

SDK_NAME = "tracespammer"
SDK_VERSION = "0.1.0"
DEFAULT_GRPC_PORT = 4317
TRACES_PATH = "/v1/traces"


def _make_attribute(key: str, value: str | int | float | bool) -> KeyValue:
    """Convert a Python key-value pair to an OTLP KeyValue protobuf."""
    if isinstance(value, bool):
        av = AnyValue(bool_value=value)
    elif isinstance(value, int):
        av = AnyValue(int_value=value)
    elif isinstance(value, float):
        av = AnyValue(double_value=value)
    else:
        av = AnyValue(string_value=str(value))
    return KeyValue(key=key, value=av)


def _span_data_to_otlp(sd: SpanData) -> OtlpSpan:
    """Convert a single SpanData to an OTLP Span protobuf."""
    attrs = [_make_attribute(k, v) for k, v in sd.attributes.items()]
    attrs.append(_make_attribute("spammer.duration_ms", sd.duration_ms))

    parent = bytes.fromhex(sd.parent_span_id) if sd.parent_span_id else b""

    return OtlpSpan(
        trace_id=bytes.fromhex(sd.trace_id),
        span_id=bytes.fromhex(sd.span_id),
        parent_span_id=parent,
        name=sd.name,
        kind=OtlpSpan.SPAN_KIND_INTERNAL,
        start_time_unix_nano=sd.start_time_ns,
        end_time_unix_nano=sd.end_time_ns,
        attributes=attrs,
    )


def _build_export_request(
    spans: list[SpanData],
    service_name: str,
) -> ExportTraceServiceRequest:
    """Build an ExportTraceServiceRequest from a batch of SpanData."""
    resource_attrs = [
        _make_attribute("service.name", service_name),
        _make_attribute("telemetry.sdk.name", SDK_NAME),
        _make_attribute("telemetry.sdk.version", SDK_VERSION),
    ]

    resource = Resource(attributes=resource_attrs)
    scope = InstrumentationScope(name=SDK_NAME, version=SDK_VERSION)

    otlp_spans = [_span_data_to_otlp(sd) for sd in spans]

    scope_spans = ScopeSpans(scope=scope, spans=otlp_spans)
    resource_spans = ResourceSpans(resource=resource, scope_spans=[scope_spans])

    return ExportTraceServiceRequest(resource_spans=[resource_spans])


def _grpc_target(endpoint: str) -> tuple[str, bool]:
    """Turn ``http(s)://host[:port]/`` into a ``host:port`` channel target."""
    parsed = urlparse(endpoint)
    if not parsed.hostname:
        raise BuildError(f"Endpoint {endpoint!r} has no host")
    try:
        port = parsed.port or DEFAULT_GRPC_PORT
    except ValueError as exc:
        raise BuildError(f"Endpoint {endpoint!r} has an invalid port") from exc
    host = parsed.hostname
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}", parsed.scheme == "https"


def _http_traces_url(endpoint: str) -> str:
    parsed = urlparse(endpoint)
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise BuildError(f"Endpoint {endpoint!r} is not an http(s) URL")
    try:
        parsed.port
    except ValueError as exc:
        raise BuildError(f"Endpoint {endpoint!r} has an invalid port") from exc
    base = endpoint.rstrip("/")
    if base.endswith(TRACES_PATH):
        return base
    return base + TRACES_PATH


class OTLPGrpcExporter:
    """Exports SpanData batches over gRPC using the OTLP trace protocol.

    Designed as a SpanHandler for BackgroundProcessor. Transport failures
    surface as ExportError so the processor can report them.
    """

    protocol = OtlpProtocol.GRPC

    def __init__(
        self,
        endpoint: str,
        service_name: str,
        *,
        timeout_s: float = 10.0,
    ) -> None:
        self.endpoint = endpoint
        self._service_name = service_name
        self._timeout_s = timeout_s

        target, secure = _grpc_target(endpoint)
        self.target = target
        if secure:
            self._channel = grpc.secure_channel(target, grpc.ssl_channel_credentials())
        else:
            self._channel = grpc.insecure_channel(target)

        self._stub = TraceServiceStub(self._channel)  # type: ignore[no-untyped-call]
        self._closed = False

    def export(self, spans: list[SpanData]) -> None:
        """Export a batch of spans. Raises ExportError on failure."""
        if not spans:
            return
        request = _build_export_request(spans, self._service_name)
        try:
            self._stub.Export(request, timeout=self._timeout_s)
        except grpc.RpcError as exc:
            raise ExportError(
                f"Failed to export {len(spans)} spans to {self.target}: {exc.code()}"
            ) from exc

    def shutdown(self) -> None:
        """Close the gRPC channel."""
        if self._closed:
            return
        self._closed = True
        try:
            self._channel.close()
        except Exception:  # noqa: BLE001
            logger.debug("Error closing gRPC channel to %s", self.target, exc_info=True)


class OTLPHttpExporter:
    """Exports SpanData batches as binary protobuf over HTTP."""

    protocol = OtlpProtocol.HTTP_PROTOBUF

    def __init__(
        self,
        endpoint: str,
        service_name: str,
        *,
        timeout_s: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.url = _http_traces_url(endpoint)
        self._service_name = service_name
        self._client = httpx.Client(
            timeout=timeout_s,
            transport=transport,
            headers={"Content-Type": "application/x-protobuf"},
        )
        self._closed = False

    def export(self, spans: list[SpanData]) -> None:
        """Export a batch of spans. Raises ExportError on failure."""
        if not spans:
            return
        request = _build_export_request(spans, self._service_name)
        try:
            response = self._client.post(self.url, content=request.SerializeToString())
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExportError(
                f"Failed to export {len(spans)} spans to {self.url}: "
                f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ExportError(
                f"Failed to export {len(spans)} spans to {self.url}: {exc}"
            ) from exc

    def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        try:
            self._client.close()
        except Exception:  # noqa: BLE001
            logger.debug("Error closing HTTP client for %s", self.url, exc_info=True)


SpanExporter = OTLPGrpcExporter | OTLPHttpExporter


def create_exporter(
    endpoint: str,
    protocol: OtlpProtocol,
    service_name: str,
    *,
    timeout_s: float = 10.0,
) -> SpanExporter:
    """Return the exporter for ``protocol``. Raises BuildError if it cannot be made."""
    try:
        if protocol is OtlpProtocol.GRPC:
            return OTLPGrpcExporter(endpoint, service_name, timeout_s=timeout_s)
        if protocol is OtlpProtocol.HTTP_PROTOBUF:
            return OTLPHttpExporter(endpoint, service_name, timeout_s=timeout_s)
    except BuildError:
        raise
    except Exception as exc:
        raise BuildError(
            f"Could not create {protocol.value} exporter for {endpoint!r}: {exc}"
        ) from exc
    raise BuildError(f"Unsupported protocol {protocol!r}")
