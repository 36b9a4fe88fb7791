"""Tests for the OTLP exporters."""

from __future__ import annotations

import threading
from concurrent import futures

import grpc
import httpx
import pytest
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import (
    ExportTraceServiceRequest,
    ExportTraceServiceResponse,
)
from opentelemetry.proto.collector.trace.v1.trace_service_pb2_grpc import (
    TraceServiceServicer,
    add_TraceServiceServicer_to_server,
)
from opentelemetry.proto.trace.v1.trace_pb2 import Span as OtlpSpan

from tracespammer._errors import BuildError, ExportError
from tracespammer._exporter import (
    OTLPGrpcExporter,
    OTLPHttpExporter,
    _build_export_request,
    _grpc_target,
    _http_traces_url,
    _make_attribute,
    _span_data_to_otlp,
    create_exporter,
)
from tracespammer._types import OtlpProtocol, SpanData


def _make_span_data(**overrides: object) -> SpanData:
    """Create a SpanData with sensible defaults."""
    defaults: dict[str, object] = {
        "span_id": "abcdef0123456789",
        "trace_id": "0123456789abcdef0123456789abcdef",
        "name": "test-span",
        "start_time_ns": 1_000_000_000,
        "end_time_ns": 2_000_000_000,
        "duration_ms": 25.0,
        "service_name": "test-service",
        "attributes": {},
        "parent_span_id": None,
    }
    defaults.update(overrides)
    return SpanData(**defaults)  # type: ignore[arg-type]


class TestMakeAttribute:
    def test_string(self) -> None:
        kv = _make_attribute("key", "value")
        assert kv.key == "key"
        assert kv.value.string_value == "value"

    def test_int(self) -> None:
        assert _make_attribute("key", 42).value.int_value == 42

    def test_float(self) -> None:
        assert _make_attribute("key", 3.14).value.double_value == pytest.approx(3.14)

    def test_bool_is_not_int(self) -> None:
        """bool is subclass of int — ensure it's handled as bool, not int."""
        assert _make_attribute("key", True).value.HasField("bool_value")
        assert _make_attribute("key", 1).value.HasField("int_value")


class TestSpanDataToOtlp:
    def test_basic_fields(self) -> None:
        otlp = _span_data_to_otlp(_make_span_data())
        assert otlp.name == "test-span"
        assert otlp.start_time_unix_nano == 1_000_000_000
        assert otlp.end_time_unix_nano == 2_000_000_000
        assert otlp.kind == OtlpSpan.SPAN_KIND_INTERNAL

    def test_id_bytes(self) -> None:
        otlp = _span_data_to_otlp(_make_span_data())
        assert otlp.trace_id == bytes.fromhex("0123456789abcdef0123456789abcdef")
        assert otlp.span_id == bytes.fromhex("abcdef0123456789")

    def test_parent_span_id_present(self) -> None:
        otlp = _span_data_to_otlp(_make_span_data(parent_span_id="1234567890abcdef"))
        assert otlp.parent_span_id == bytes.fromhex("1234567890abcdef")

    def test_parent_span_id_absent(self) -> None:
        otlp = _span_data_to_otlp(_make_span_data(parent_span_id=None))
        assert otlp.parent_span_id == b""

    def test_attributes_and_duration(self) -> None:
        sd = _make_span_data(attributes={"child.index": 2, "parent.id": "ff" * 8})
        otlp = _span_data_to_otlp(sd)
        attr_dict = {a.key: a.value for a in otlp.attributes}
        assert attr_dict["child.index"].int_value == 2
        assert attr_dict["parent.id"].string_value == "ff" * 8
        assert attr_dict["spammer.duration_ms"].double_value == pytest.approx(25.0)


class TestBuildExportRequest:
    def test_resource_and_scope(self) -> None:
        req = _build_export_request([_make_span_data()], "my-svc")
        assert len(req.resource_spans) == 1
        resource = req.resource_spans[0].resource
        attr_dict = {a.key: a.value.string_value for a in resource.attributes}
        assert attr_dict["service.name"] == "my-svc"
        assert attr_dict["telemetry.sdk.name"] == "tracespammer"
        scope = req.resource_spans[0].scope_spans[0].scope
        assert scope.name == "tracespammer"

    def test_all_spans_in_batch(self) -> None:
        spans = [_make_span_data(name=f"span-{i}") for i in range(5)]
        req = _build_export_request(spans, "svc")
        names = {s.name for s in req.resource_spans[0].scope_spans[0].spans}
        assert names == {f"span-{i}" for i in range(5)}


class TestEndpointParsing:
    def test_grpc_target_default_port(self) -> None:
        assert _grpc_target("http://collector/") == ("collector:4317", False)

    def test_grpc_target_explicit_port_and_tls(self) -> None:
        assert _grpc_target("https://collector:9000") == ("collector:9000", True)

    def test_grpc_target_ipv6(self) -> None:
        assert _grpc_target("http://[::1]:4317") == ("[::1]:4317", False)

    def test_grpc_target_bad_port(self) -> None:
        with pytest.raises(BuildError):
            _grpc_target("http://collector:notaport")

    def test_grpc_target_no_host(self) -> None:
        with pytest.raises(BuildError):
            _grpc_target("not-a-url")

    def test_http_url_appends_path(self) -> None:
        assert _http_traces_url("http://collector:4318/") == "http://collector:4318/v1/traces"

    def test_http_url_keeps_existing_path(self) -> None:
        url = "http://collector:4318/v1/traces"
        assert _http_traces_url(url) == url

    def test_http_url_rejects_non_http(self) -> None:
        with pytest.raises(BuildError):
            _http_traces_url("collector:4318")


class TestCreateExporter:
    def test_grpc(self) -> None:
        exporter = create_exporter("http://localhost:4317", OtlpProtocol.GRPC, "svc")
        try:
            assert isinstance(exporter, OTLPGrpcExporter)
            assert exporter.target == "localhost:4317"
        finally:
            exporter.shutdown()

    def test_http(self) -> None:
        exporter = create_exporter("http://localhost:4318", OtlpProtocol.HTTP_PROTOBUF, "svc")
        try:
            assert isinstance(exporter, OTLPHttpExporter)
            assert exporter.url == "http://localhost:4318/v1/traces"
        finally:
            exporter.shutdown()

    def test_malformed_endpoint_raises_build_error(self) -> None:
        with pytest.raises(BuildError):
            create_exporter("http://localhost:99999999", OtlpProtocol.GRPC, "svc")


class TestOTLPGrpcExporter:
    def test_export_empty_batch(self) -> None:
        exporter = OTLPGrpcExporter("http://localhost:4317", "svc")
        exporter.export([])  # Should not raise
        exporter.shutdown()

    def test_bad_endpoint_raises_export_error(self) -> None:
        exporter = OTLPGrpcExporter("http://localhost:1", "svc", timeout_s=0.1)
        try:
            with pytest.raises(ExportError):
                exporter.export([_make_span_data()])
        finally:
            exporter.shutdown()

    def test_shutdown_idempotent(self) -> None:
        exporter = OTLPGrpcExporter("http://localhost:4317", "svc")
        exporter.shutdown()
        exporter.shutdown()  # Should not raise


class _CollectorServicer(TraceServiceServicer):
    """In-process gRPC servicer that collects ExportTraceServiceRequests."""

    def __init__(self) -> None:
        self.requests: list[ExportTraceServiceRequest] = []
        self._lock = threading.Lock()

    def Export(  # noqa: N802
        self,
        request: ExportTraceServiceRequest,
        context: grpc.ServicerContext,
    ) -> ExportTraceServiceResponse:
        with self._lock:
            self.requests.append(request)
        return ExportTraceServiceResponse()


class TestWithMockGrpcServer:
    """Integration test with an in-process gRPC server."""

    def test_export_received_by_server(self) -> None:
        servicer = _CollectorServicer()
        server = grpc.server(futures.ThreadPoolExecutor(max_workers=2))
        add_TraceServiceServicer_to_server(servicer, server)
        port = server.add_insecure_port("localhost:0")
        server.start()

        try:
            exporter = OTLPGrpcExporter(
                f"http://localhost:{port}", "test-svc", timeout_s=5.0
            )
            spans = [
                _make_span_data(name="op-1"),
                _make_span_data(name="op-2", span_id="1234567890abcdef"),
            ]
            exporter.export(spans)
            exporter.shutdown()

            assert len(servicer.requests) == 1
            req = servicer.requests[0]
            resource = req.resource_spans[0].resource
            attr_dict = {a.key: a.value.string_value for a in resource.attributes}
            assert attr_dict["service.name"] == "test-svc"

            otlp_spans = req.resource_spans[0].scope_spans[0].spans
            assert {s.name for s in otlp_spans} == {"op-1", "op-2"}
        finally:
            server.stop(grace=1)


class TestOTLPHttpExporter:
    def test_posts_protobuf(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        exporter = OTLPHttpExporter(
            "http://collector:4318", "http-svc", transport=httpx.MockTransport(handler)
        )
        exporter.export([_make_span_data(name="over-http")])
        exporter.shutdown()

        assert len(seen) == 1
        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == "http://collector:4318/v1/traces"
        assert request.headers["content-type"] == "application/x-protobuf"

        decoded = ExportTraceServiceRequest.FromString(request.content)
        spans = decoded.resource_spans[0].scope_spans[0].spans
        assert [s.name for s in spans] == ["over-http"]

    def test_http_error_status_raises_export_error(self) -> None:
        exporter = OTLPHttpExporter(
            "http://collector:4318",
            "svc",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        with pytest.raises(ExportError, match="HTTP 503"):
            exporter.export([_make_span_data()])
        exporter.shutdown()

    def test_connection_error_raises_export_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        exporter = OTLPHttpExporter(
            "http://collector:4318", "svc", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(ExportError):
            exporter.export([_make_span_data()])
        exporter.shutdown()

    def test_export_empty_batch_sends_nothing(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        exporter = OTLPHttpExporter(
            "http://collector:4318", "svc", transport=httpx.MockTransport(handler)
        )
        exporter.export([])
        exporter.shutdown()
        exporter.shutdown()
        assert seen == []
