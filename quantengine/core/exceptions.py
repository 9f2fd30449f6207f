from __future__ import annotations

from typing import Any, Dict, Optional


class QuantEngineError(Exception):
    """Base class for all analytics engine exceptions.

    Every error carries a ``kind`` tag and, where known, the ``field`` that
    caused it so a caller can correct its input and retry.
    """

    kind: str = "QuantEngineError"

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def as_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "field": self.field, "error": self.message}

    def __str__(self) -> str:
        if self.field:
            return f"{self.message} (field={self.field})"
        return self.message


class InvalidParameterError(QuantEngineError):
    """Raised for out-of-range or malformed inputs."""

    kind = "InvalidParameter"


class InsufficientDataError(QuantEngineError):
    """Raised when fewer data points are supplied than a component requires."""

    kind = "InsufficientData"


class DivisionGuardError(QuantEngineError):
    """Raised instead of silently dividing by zero (flat volatility, empty value)."""

    kind = "DivisionGuard"


class NotFoundError(QuantEngineError):
    """Raised when a catalog lookup (e.g. a stress scenario id) fails."""

    kind = "NotFound"


__all__ = [
    "QuantEngineError",
    "InvalidParameterError",
    "InsufficientDataError",
    "DivisionGuardError",
    "NotFoundError",
]
