from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    INVALID_ARGUMENT = "invalid_argument"
    PERMISSION_DENIED = "permission_denied"
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class EngineError(Exception):
    """Typed failure surfaced by the combat engine.

    ``code`` drives how callers render the failure: validation and permission
    problems go back to the acting user verbatim, everything else is generic.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.meta: Dict[str, Any] = dict(meta or {})

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"EngineError(code={self.code.value!r}, message={self.message!r})"


class RecordNotFound(LookupError):
    """Raised by repositories and providers for an unknown id."""


class RecordExists(ValueError):
    """Raised by a repository when creating a record whose id is taken."""


class VersionConflict(RuntimeError):
    """Raised by a repository when an update carries a stale version."""


def invalid_argument(message: str, **meta: Any) -> EngineError:
    return EngineError(ErrorCode.INVALID_ARGUMENT, message, meta)


def permission_denied(message: str, **meta: Any) -> EngineError:
    return EngineError(ErrorCode.PERMISSION_DENIED, message, meta)


def not_found(message: str, **meta: Any) -> EngineError:
    return EngineError(ErrorCode.NOT_FOUND, message, meta)


def code_of(exc: BaseException) -> ErrorCode:
    if isinstance(exc, EngineError):
        return exc.code
    if isinstance(exc, RecordNotFound):
        return ErrorCode.NOT_FOUND
    if isinstance(exc, RecordExists):
        return ErrorCode.ALREADY_EXISTS
    if isinstance(exc, VersionConflict):
        return ErrorCode.CONFLICT
    return ErrorCode.UNKNOWN


def wrap(exc: BaseException, operation: str) -> EngineError:
    """Prefix ``exc`` with the failing operation, keeping its error code."""
    meta = dict(exc.meta) if isinstance(exc, EngineError) else {}
    meta.setdefault("operation", operation)
    message = exc.message if isinstance(exc, EngineError) else str(exc)
    err = EngineError(code_of(exc), f"{operation}: {message}", meta)
    err.__cause__ = exc
    return err
