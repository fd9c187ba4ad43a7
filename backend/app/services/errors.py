"""Error taxonomy for the readiness and email settings services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class SettingsError(Exception):
    """Base class for recoverable settings failures."""

    kind = "settings_error"

    def __init__(self, message: str, *, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": self.message, "type": self.kind}
        if self.field:
            payload["field"] = self.field
        return payload


class LookupDegraded(SettingsError):
    """A readiness sub-check failed or found nothing; folded to False."""

    kind = "lookup_degraded"


class ValidationError(SettingsError):
    """A precondition on the draft configuration failed before any I/O."""

    kind = "validation_error"


class PersistenceError(SettingsError):
    """The record store rejected or failed a load or save."""

    kind = "persistence_error"


class DeliveryError(SettingsError):
    """The email provider rejected or failed a send."""

    kind = "delivery_error"


@dataclass
class OperationResult:
    """Outcome of a workflow operation. Failures are returned, not raised."""

    ok: bool
    error: SettingsError | None = None
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: SettingsError) -> "OperationResult":
        return cls(ok=False, error=error)
