"""Error taxonomy for the component version engine.

Lifecycle operations raise these exceptions and let them propagate. The batch
coordinator is the one place that turns them into values, through
:func:`capture` and :class:`OperationResult`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class VersionEngineError(RuntimeError):
    """Base error for version engine operations."""

    kind = "version_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class VersionValidationError(VersionEngineError):
    """Raised when a payload is missing required fields or is malformed."""

    kind = "validation_error"
    status_code = 422


class NotFoundError(VersionEngineError):
    """Raised when a referenced component or version does not exist."""

    kind = "not_found"
    status_code = 404


class ConflictError(VersionEngineError):
    """Raised when an operation would break a version invariant."""

    kind = "conflict"
    status_code = 409


class UnauthorizedError(VersionEngineError):
    """Raised when the requester may not perform a mutating operation."""

    kind = "unauthorized"
    status_code = 401


@dataclass
class OperationResult(Generic[T]):
    """Success or error variant of a single engine operation."""

    ok: bool
    value: Optional[T] = None
    error_kind: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, value: T) -> "OperationResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error_kind: str, message: str) -> "OperationResult[T]":
        return cls(ok=False, error_kind=error_kind, message=message)


def capture(fn: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
    """Run ``fn`` and return its outcome as an :class:`OperationResult`."""

    try:
        return OperationResult.success(fn(*args, **kwargs))
    except VersionEngineError as exc:
        return OperationResult.failure(exc.kind, exc.message)
    except Exception as exc:  # noqa: BLE001 - reported as a value, not raised
        logger.exception("Unexpected failure in %s", getattr(fn, "__name__", fn))
        return OperationResult.failure("internal_error", str(exc) or type(exc).__name__)
