"""
Error types for unistore.

This module defines the error taxonomy shared by engines, datastores and
containers:
- DataStoreError: Base exception
- EngineConnectionError: Connection could not be established or released
- ConstraintViolationError: A write violated a uniqueness constraint
- NotFoundError: A resolution/unregistration target does not exist
- UnsupportedOperationError: An optional engine capability is missing
- LifecycleHookError: A container lifecycle hook reported failure
- AggregateTeardownError: Collected failures from container teardown
- StorageEngineError: Any other engine failure
- InvalidFilterError: A native filter the engine cannot evaluate

Errors are raised inside components and travel across public boundaries as
the ``error`` of a failed Result (see result.py).

Invariants:
    - All errors inherit from DataStoreError
    - ConstraintViolationError is the only kind that triggers upsert reconciliation
    - DUPLICATE_KEY_CODE is the well-known duplicate key sentinel
"""

from __future__ import annotations

from typing import Any, Dict, Hashable, List, Optional, Sequence

# Duplicate key code reported by document stores on unique index violations.
DUPLICATE_KEY_CODE = 11000


class DataStoreError(Exception):
    """Base exception for all unistore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DATASTORE_ERROR"
        self.details = details or {}


class EngineConnectionError(DataStoreError):
    """Failed to establish or release a connection to the storage engine.

    Also raised when an operation is issued against a disconnected engine.
    """

    def __init__(self, message: str, target: Optional[str] = None) -> None:
        super().__init__(message, code="CONNECTION_ERROR", details={"target": target})
        self.target = target


class ConstraintViolationError(DataStoreError):
    """A write violated a uniqueness constraint.

    Attributes:
        fields: Fields whose unique index was violated (when known)
        driver_code: Store-specific violation code (DUPLICATE_KEY_CODE)
    """

    def __init__(
        self,
        message: str,
        fields: Optional[Sequence[str]] = None,
        driver_code: int = DUPLICATE_KEY_CODE,
    ) -> None:
        super().__init__(
            message,
            code="CONSTRAINT_VIOLATION",
            details={"fields": list(fields or []), "driver_code": driver_code},
        )
        self.fields = list(fields or [])
        self.driver_code = driver_code


class NotFoundError(DataStoreError):
    """A resolution or unregistration target does not exist."""

    def __init__(self, message: str, key: Optional[Hashable] = None) -> None:
        super().__init__(message, code="NOT_FOUND", details={"key": key})
        self.key = key


class UnsupportedOperationError(DataStoreError):
    """An optional engine capability is not implemented."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"{operation} is not implemented",
            code="UNSUPPORTED",
            details={"operation": operation},
        )
        self.operation = operation


class LifecycleHookError(DataStoreError):
    """A container lifecycle hook reported failure.

    Attributes:
        key: Registration key the hook belongs to
        hook: Hook name (before_create, after_create, on_destroy)
    """

    def __init__(self, key: Hashable, hook: str, detail: Any) -> None:
        super().__init__(
            f"Error in {hook} lifecycle hook for '{key}': {detail}",
            code="LIFECYCLE_HOOK_ERROR",
            details={"key": key, "hook": hook},
        )
        self.key = key
        self.hook = hook


class AggregateTeardownError(DataStoreError):
    """Failures collected while destroying a container.

    The message is the newline-joined message of every collected error.
    """

    def __init__(self, errors: List[Any]) -> None:
        super().__init__(
            "\n".join(str(error) for error in errors),
            code="TEARDOWN_ERROR",
            details={"count": len(errors)},
        )
        self.errors = errors


class StorageEngineError(DataStoreError):
    """Any other failure raised by a storage engine operation."""

    def __init__(self, operation: str, detail: str) -> None:
        super().__init__(
            f"Storage engine error during {operation}: {detail}",
            code="ENGINE_ERROR",
            details={"operation": operation},
        )
        self.operation = operation
        self.detail = detail


class InvalidFilterError(DataStoreError):
    """A native filter could not be evaluated by the engine."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_FILTER")


def is_constraint_violation(error: Any) -> bool:
    """Whether an error signals a uniqueness violation.

    Besides ConstraintViolationError, any error object exposing the duplicate
    key sentinel as ``driver_code`` or ``code`` qualifies, so driver errors
    passed through unchanged are recognized too.
    """
    if isinstance(error, ConstraintViolationError):
        return True
    for attr in ("driver_code", "code"):
        if getattr(error, attr, None) == DUPLICATE_KEY_CODE:
            return True
    if isinstance(error, dict):
        return error.get("code") == DUPLICATE_KEY_CODE
    return False
