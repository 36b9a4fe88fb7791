"""Command-line host: run the spammer until a signal or a time limit.

Usage::

    trace-spammer --endpoint http://localhost:4318 --protocol http/protobuf
    trace-spammer --rate 50 --depth 3 --children 2 --duration 60
"""

from __future__ import annotations

import argparse
import functools
import logging
import signal
import sys
import threading
from collections.abc import Sequence

from tracespammer._builder import DEFAULT_SERVICE_NAME, expected_span_count
from tracespammer._config import TracingConfig
from tracespammer._errors import ValidationError
from tracespammer._pipeline import ExporterPipeline
from tracespammer._spammer import TraceSpammer

logger = logging.getLogger("tracespammer.cli")

_FLAGS: dict[str, str] = {
    "endpoint": "endpoint",
    "protocol": "protocol",
    "rate": "rate_per_second",
    "depth": "trace_depth",
    "children": "children_per_node",
    "min_duration_ms": "min_child_duration_ms",
    "max_duration_ms": "max_child_duration_ms",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="trace-spammer",
        description="Generate synthetic trace trees and export them over OTLP.",
    )
    parser.add_argument("--endpoint", help="collector base URL (env: OTEL_EXPORTER_OTLP_ENDPOINT)")
    parser.add_argument(
        "--protocol",
        choices=["grpc", "http/protobuf"],
        help="export protocol (env: OTEL_EXPORTER_OTLP_PROTOCOL)",
    )
    parser.add_argument("--rate", type=int, help="root traces per second")
    parser.add_argument("--depth", type=int, help="levels below the root")
    parser.add_argument("--children", type=int, help="children per node")
    parser.add_argument("--min-duration-ms", type=int, help="minimum child span duration")
    parser.add_argument("--max-duration-ms", type=int, help="maximum child span duration")
    parser.add_argument("--service-name", default=DEFAULT_SERVICE_NAME)
    parser.add_argument(
        "--duration", type=float, default=0.0, help="seconds to run (0 = until interrupted)"
    )
    parser.add_argument(
        "--paused", action="store_true", help="start armed but not generating"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = TracingConfig.from_env(
            **{field: getattr(args, flag) for flag, field in _FLAGS.items()}
        )
    except ValidationError as exc:
        print(f"trace-spammer: {exc}", file=sys.stderr)
        return 2

    settings = config.snapshot()
    logger.info(
        "Sending %d traces/s of %d spans each to %s (%s)",
        settings.rate_per_second,
        expected_span_count(settings.trace_depth, settings.children_per_node),
        settings.endpoint,
        settings.protocol.value,
    )

    spammer = TraceSpammer(
        config,
        pipeline_factory=functools.partial(
            ExporterPipeline.build, service_name=args.service_name
        ),
        service_name=args.service_name,
    )
    stop_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    if args.duration > 0:
        timer = threading.Timer(args.duration, stop_event.set)
        timer.daemon = True
        timer.start()

    if not args.paused:
        spammer.start()
    spammer.run(stop_event)
    return 0


if __name__ == "__main__":
    sys.exit(main())
