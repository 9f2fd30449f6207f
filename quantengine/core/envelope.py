"""Uniform success/failure envelope for callers that want plain dicts back."""

from __future__ import annotations

import functools
from typing import Any, Callable, Dict, Optional, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from quantengine.core.exceptions import QuantEngineError

F = TypeVar("F", bound=Callable[..., Any])


class Envelope(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None
    kind: Optional[str] = None
    field: Optional[str] = Field(default=None, description="Input that caused the error")

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "data": self.data}
        return {
            "success": False,
            "error": self.error,
            "kind": self.kind,
            "field": self.field,
        }


def _payload(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump()
    to_dict = getattr(data, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(data, list):
        return [_payload(item) for item in data]
    return data


def ok(data: Any) -> Envelope:
    return Envelope(success=True, data=_payload(data))


def fail(exc: QuantEngineError) -> Envelope:
    return Envelope(success=False, error=exc.message, kind=exc.kind, field=exc.field)


def enveloped(func: F) -> Callable[..., Dict[str, Any]]:
    """Wrap ``func`` so engine errors come back as failure envelopes.

    Only ``QuantEngineError`` is converted; anything else propagates.
    """

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
        try:
            result = func(*args, **kwargs)
        except QuantEngineError as exc:
            logger.warning("[envelope] {} failed: {}", func.__name__, exc)
            return fail(exc).to_dict()
        return ok(result).to_dict()

    return wrapper


__all__ = ["Envelope", "ok", "fail", "enveloped"]
