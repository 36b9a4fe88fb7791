"""tracespammer: synthetic trace load generator for OTLP collectors."""

from __future__ import annotations

from tracespammer._builder import build_subtree, build_trace, expected_span_count
from tracespammer._config import FIELDS, TracingConfig, TracingSettings
from tracespammer._errors import BuildError, ExportError, TraceCancelled, ValidationError
from tracespammer._pipeline import ExporterPipeline
from tracespammer._span import SpanNode
from tracespammer._spammer import SpammerState, TraceSpammer
from tracespammer._types import OtlpProtocol, SpanData

__version__ = "0.1.0"

__all__ = [
    "FIELDS",
    "BuildError",
    "ExportError",
    "ExporterPipeline",
    "OtlpProtocol",
    "SpanData",
    "SpanNode",
    "SpammerState",
    "TraceCancelled",
    "TraceSpammer",
    "TracingConfig",
    "TracingSettings",
    "ValidationError",
    "__version__",
    "build_subtree",
    "build_trace",
    "expected_span_count",
]
