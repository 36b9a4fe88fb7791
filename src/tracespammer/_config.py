"""Validated generator configuration with change notification."""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from tracespammer._errors import ValidationError
from tracespammer._types import OtlpProtocol

logger = logging.getLogger("tracespammer.config")

DEFAULT_ENDPOINT = "http://localhost:4317/"


@dataclass(frozen=True)
class TracingSettings:
    """Immutable snapshot of the generator configuration."""

    endpoint: str = DEFAULT_ENDPOINT
    protocol: OtlpProtocol = OtlpProtocol.GRPC
    rate_per_second: int = 3
    trace_depth: int = 1
    children_per_node: int = 1
    min_child_duration_ms: int = 10
    max_child_duration_ms: int = 100
    revision: int = 0


FIELDS: tuple[str, ...] = tuple(
    f.name for f in dataclasses.fields(TracingSettings) if f.name != "revision"
)

ChangeListener = Callable[[TracingSettings, str], None]

_ENV_VARS: dict[str, str] = {
    "endpoint": "OTEL_EXPORTER_OTLP_ENDPOINT",
    "protocol": "OTEL_EXPORTER_OTLP_PROTOCOL",
    "rate_per_second": "SPAMMER_RATE_PER_SECOND",
    "trace_depth": "SPAMMER_TRACE_DEPTH",
    "children_per_node": "SPAMMER_CHILDREN_PER_NODE",
    "min_child_duration_ms": "SPAMMER_MIN_CHILD_DURATION_MS",
    "max_child_duration_ms": "SPAMMER_MAX_CHILD_DURATION_MS",
}


def _require_int(field: str, value: Any, minimum: int, message: str) -> int:
    # bool is a subclass of int but never a meaningful count
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, f"Expected an integer, got {value!r}.")
    if value < minimum:
        raise ValidationError(field, message)
    return value


def _validate_endpoint(value: Any, current: TracingSettings) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("endpoint", "OTLP endpoint must be a valid URL.")
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise ValidationError("endpoint", "OTLP endpoint must be a valid URL.")
    return value.strip()


def _validate_protocol(value: Any, current: TracingSettings) -> OtlpProtocol:
    if isinstance(value, OtlpProtocol):
        return value
    try:
        return OtlpProtocol(value)
    except ValueError:
        raise ValidationError(
            "protocol", "Protocol must be one of: grpc, http/protobuf."
        ) from None


def _validate_rate(value: Any, current: TracingSettings) -> int:
    return _require_int("rate_per_second", value, 1, "Rate must be at least 1.")


def _validate_depth(value: Any, current: TracingSettings) -> int:
    return _require_int("trace_depth", value, 1, "Trace depth must be >= 1.")


def _validate_children(value: Any, current: TracingSettings) -> int:
    return _require_int(
        "children_per_node", value, 1, "Children per node must be >= 1."
    )


def _validate_min_duration(value: Any, current: TracingSettings) -> int:
    value = _require_int(
        "min_child_duration_ms", value, 0, "Min duration must be >= 0."
    )
    if value > current.max_child_duration_ms:
        raise ValidationError(
            "min_child_duration_ms", "Min duration must be <= Max duration."
        )
    return value


def _validate_max_duration(value: Any, current: TracingSettings) -> int:
    value = _require_int(
        "max_child_duration_ms", value, 1, "Max duration must be >= 1."
    )
    if value < current.min_child_duration_ms:
        raise ValidationError(
            "max_child_duration_ms", "Max duration must be >= Min duration."
        )
    return value


_VALIDATORS: dict[str, Callable[[Any, TracingSettings], Any]] = {
    "endpoint": _validate_endpoint,
    "protocol": _validate_protocol,
    "rate_per_second": _validate_rate,
    "trace_depth": _validate_depth,
    "children_per_node": _validate_children,
    "min_child_duration_ms": _validate_min_duration,
    "max_child_duration_ms": _validate_max_duration,
}


class TracingConfig:
    """Mutable, thread-safe holder of the current :class:`TracingSettings`.

    Every mutation goes through :meth:`set`, which validates the single
    field (the min/max duration pair is checked against the other bound),
    swaps in a new snapshot and notifies subscribers. Subscribers run
    synchronously under the store lock, so notifications are delivered in
    mutation order and never interleave.
    """

    def __init__(self, settings: TracingSettings | None = None) -> None:
        settings = settings if settings is not None else TracingSettings()
        validated = {
            name: _VALIDATORS[name](getattr(settings, name), settings)
            for name in FIELDS
        }

        self._settings = dataclasses.replace(settings, **validated)
        self._lock = threading.RLock()
        self._listeners: list[ChangeListener] = []

    @classmethod
    def from_env(
        cls, environ: Mapping[str, str] | None = None, **explicit: Any
    ) -> TracingConfig:
        """Build a store from ``OTEL_EXPORTER_OTLP_*`` and ``SPAMMER_*`` variables.

        Keyword arguments that are not None take precedence over the
        environment. The combined settings are validated as a whole.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, var in _ENV_VARS.items():
            if explicit.get(name) is not None:
                overrides[name] = explicit[name]
                continue
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            if name in ("endpoint", "protocol"):
                overrides[name] = raw
                continue
            try:
                overrides[name] = int(raw)
            except ValueError:
                raise ValidationError(
                    name, f"{var}={raw!r} is not an integer."
                ) from None
        return cls(TracingSettings(**overrides))

    def snapshot(self) -> TracingSettings:
        """Return the current settings. The result never changes."""
        with self._lock:
            return self._settings

    def get(self, field: str) -> Any:
        if field not in _VALIDATORS:
            raise KeyError(field)
        return getattr(self.snapshot(), field)

    def set(self, field: str, value: Any) -> None:
        """Validate and apply one field, then notify subscribers.

        Raises :class:`ValidationError` if the value is rejected; in that
        case nothing changes and nobody is notified.
        """
        validator = _VALIDATORS.get(field)
        if validator is None:
            raise KeyError(field)

        with self._lock:
            current = self._settings
            try:
                accepted = validator(value, current)
            except ValidationError as exc:
                logger.warning("%s", exc)
                raise

            self._settings = dataclasses.replace(
                current, **{field: accepted}, revision=current.revision + 1
            )
            logger.info("%s changed to %r", field, accepted)
            self._notify(self._settings, field)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, settings: TracingSettings, field: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(settings, field)
            except Exception:  # noqa: BLE001
                logger.exception("Configuration listener failed for %s", field)

    @property
    def endpoint(self) -> str:
        return self.snapshot().endpoint

    @property
    def protocol(self) -> OtlpProtocol:
        return self.snapshot().protocol

    @property
    def rate_per_second(self) -> int:
        return self.snapshot().rate_per_second

    @property
    def trace_depth(self) -> int:
        return self.snapshot().trace_depth

    @property
    def children_per_node(self) -> int:
        return self.snapshot().children_per_node

    @property
    def min_child_duration_ms(self) -> int:
        return self.snapshot().min_child_duration_ms

    @property
    def max_child_duration_ms(self) -> int:
        return self.snapshot().max_child_duration_ms
