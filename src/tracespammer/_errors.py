"""Error taxonomy shared by the configuration store, exporters and loop."""

from __future__ import annotations


class ValidationError(ValueError):
    """A configuration mutation was rejected. State is left unchanged."""

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(f"{field} invalid: {reason}")
        self.field = field
        self.reason = reason


class ExportError(RuntimeError):
    """An exporter failed to deliver a batch of spans."""


class BuildError(RuntimeError):
    """An exporter pipeline could not be constructed."""


class TraceCancelled(Exception):
    """Raised inside tree generation when the stop signal fires."""
