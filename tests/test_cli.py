"""Tests for the command-line host."""

from __future__ import annotations

import signal
import threading

import pytest

from tracespammer import _cli
from tracespammer._pipeline import ExporterPipeline
from tracespammer._types import OtlpProtocol, SpanData

_ENV = [
    "OTEL_EXPORTER_OTLP_ENDPOINT",
    "OTEL_EXPORTER_OTLP_PROTOCOL",
    "SPAMMER_RATE_PER_SECOND",
    "SPAMMER_TRACE_DEPTH",
    "SPAMMER_CHILDREN_PER_NODE",
    "SPAMMER_MIN_CHILD_DURATION_MS",
    "SPAMMER_MAX_CHILD_DURATION_MS",
]


class _RecordingPipeline:
    instances: list[_RecordingPipeline] = []

    def __init__(self, endpoint: str, protocol: OtlpProtocol, service_name: str) -> None:
        self.endpoint = endpoint
        self.protocol = protocol
        self.service_name = service_name
        self.spans: list[SpanData] = []
        self.disposed = False
        self._lock = threading.Lock()

    def submit(self, span: SpanData) -> None:
        with self._lock:
            self.spans.append(span)

    def dispose(self) -> None:
        self.disposed = True


@pytest.fixture(autouse=True)
def _isolate(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in _ENV:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(signal, "signal", lambda *args: None)
    _RecordingPipeline.instances = []

    def build(
        endpoint: str, protocol: OtlpProtocol, *, service_name: str = "trace-spammer"
    ) -> _RecordingPipeline:
        pipeline = _RecordingPipeline(endpoint, protocol, service_name)
        _RecordingPipeline.instances.append(pipeline)
        return pipeline

    monkeypatch.setattr(ExporterPipeline, "build", build)


def test_parser_defaults() -> None:
    args = _cli.build_parser().parse_args([])
    assert args.endpoint is None
    assert args.rate is None
    assert args.duration == 0.0
    assert args.paused is False
    assert args.service_name == "trace-spammer"


def test_invalid_flag_value_exits_2(capsys: pytest.CaptureFixture[str]) -> None:
    assert _cli.main(["--rate", "0"]) == 2
    assert "rate_per_second invalid" in capsys.readouterr().err


def test_invalid_env_exits_2(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "not-a-url")
    assert _cli.main(["--duration", "0.1"]) == 2


def test_runs_for_duration_and_exports() -> None:
    code = _cli.main(
        [
            "--endpoint", "http://collector:4318",
            "--protocol", "http/protobuf",
            "--rate", "50",
            "--depth", "1",
            "--children", "2",
            "--min-duration-ms", "0",
            "--max-duration-ms", "1",
            "--service-name", "cli-test",
            "--duration", "0.3",
        ]
    )
    assert code == 0

    assert len(_RecordingPipeline.instances) == 1
    pipeline = _RecordingPipeline.instances[0]
    assert pipeline.endpoint == "http://collector:4318"
    assert pipeline.protocol is OtlpProtocol.HTTP_PROTOBUF
    assert pipeline.service_name == "cli-test"
    assert pipeline.disposed
    assert len(pipeline.spans) >= 3
    assert {s.service_name for s in pipeline.spans} == {"cli-test"}


def test_paused_generates_nothing() -> None:
    assert _cli.main(["--paused", "--duration", "0.2"]) == 0
    assert _RecordingPipeline.instances[0].spans == []
