"""Recursive span tree construction with cancellable simulated work."""

from __future__ import annotations

import random
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from tracespammer._errors import TraceCancelled
from tracespammer._span import SpanNode, SpanSink

if TYPE_CHECKING:
    from tracespammer._config import TracingSettings

DEFAULT_SERVICE_NAME = "trace-spammer"


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def expected_span_count(trace_depth: int, children_per_node: int) -> int:
    """Spans produced by one trace: the root plus ``sum(f**k for k in 1..d)``."""
    return 1 + sum(children_per_node**k for k in range(1, trace_depth + 1))


def build_subtree(
    parent: SpanNode | None,
    remaining_depth: int,
    children_per_node: int,
    min_duration_ms: int,
    max_duration_ms: int,
    *,
    sink: SpanSink | None,
    stop_event: threading.Event,
    rng: random.Random,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Open ``children_per_node`` children under ``parent`` and recurse.

    Each child draws its simulated duration uniformly from
    ``[min_duration_ms, max_duration_ms]``, waits that long on ``stop_event``
    and then builds its own children with one less level of depth. A child
    is submitted to ``sink`` when it closes, after its descendants.

    Raises :class:`TraceCancelled` as soon as ``stop_event`` is observed set;
    the nodes still open at that point are not submitted.
    """
    if remaining_depth <= 0 or parent is None:
        return

    for i in range(children_per_node):
        duration = rng.randint(min_duration_ms, max_duration_ms)
        child = SpanNode(
            f"Child {remaining_depth} - ({i}) - {parent.label}",
            sink=sink,
            parent=parent,
            duration_ms=duration,
            attributes={
                "parent.id": parent.span_id,
                "child.index": i,
                "timestamp": _utc_timestamp(),
            },
            service_name=service_name,
        )
        with child:
            if stop_event.is_set() or stop_event.wait(duration / 1000.0):
                raise TraceCancelled
            build_subtree(
                child,
                remaining_depth - 1,
                children_per_node,
                min_duration_ms,
                max_duration_ms,
                sink=sink,
                stop_event=stop_event,
                rng=rng,
                service_name=service_name,
            )


def build_trace(
    settings: TracingSettings,
    *,
    sink: SpanSink | None,
    stop_event: threading.Event,
    rng: random.Random | None = None,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> SpanNode:
    """Generate one complete trace tree shaped by ``settings``.

    Returns the (closed) root node. Raises :class:`TraceCancelled` if the
    stop signal fires while the tree is being built.
    """
    rng = rng if rng is not None else random.Random()
    label = time.strftime("%H:%M:%S")
    root = SpanNode(
        f"Parent - {label}",
        sink=sink,
        label=label,
        attributes={
            "spammer.id": str(uuid.uuid4()),
            "timestamp": _utc_timestamp(),
        },
        service_name=service_name,
    )
    with root:
        build_subtree(
            root,
            settings.trace_depth,
            settings.children_per_node,
            settings.min_child_duration_ms,
            settings.max_child_duration_ms,
            sink=sink,
            stop_event=stop_event,
            rng=rng,
            service_name=service_name,
        )
    return root
