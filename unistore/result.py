"""
Tagged operation outcomes.

Every public operation of an engine, datastore or container returns a Result
instead of raising across the boundary, so callers compose without wrapping
each hop in try/except.

Invariants:
    - ok=True results carry data and no error
    - ok=False results carry an error (a DataStoreError) and no data
    - Exceptions are converted at component boundaries by returns_result()

Example:
    >>> result = await store.find(QueryFilter(conditions=[{"name": "Alice"}]))
    >>> if result.ok:
    ...     print(result.data)
    ... else:
    ...     print(result.error)
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from .errors import DataStoreError, StorageEngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResultError(Exception):
    """Raised by Result.unwrap() on a failed result."""
    pass


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an operation.

    Attributes:
        ok: Whether the operation succeeded
        data: Payload (only meaningful when ok is True)
        error: Failure detail (only set when ok is False)
    """
    ok: bool
    data: Optional[T] = None
    error: Optional[DataStoreError] = None

    @classmethod
    def success(cls, data: Optional[T] = None) -> Result[T]:
        """Create a successful result."""
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: Any) -> Result[T]:
        """Create a failed result.

        Plain strings and foreign exceptions are wrapped in DataStoreError so
        the error attribute always has a message and a code.
        """
        if not isinstance(error, DataStoreError):
            error = DataStoreError(str(error), details={"cause": error})
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return data, or raise if the result is a failure."""
        if not self.ok:
            raise ResultError(str(self.error)) from self.error
        return self.data  # type: ignore[return-value]

    def __bool__(self) -> bool:
        return self.ok


def returns_result(operation: str) -> Callable[
    [Callable[..., Awaitable[Any]]], Callable[..., Awaitable[Result[Any]]]
]:
    """Decorate an async method so it returns a Result.

    The wrapped coroutine returns its plain value on success. DataStoreError
    subclasses become failures as-is; any other exception is logged and
    reported as StorageEngineError naming the operation. A coroutine that
    already returns a Result is passed through.

    Args:
        operation: Operation name used in error messages and logs
    """

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Result[Any]]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
            try:
                value = await func(*args, **kwargs)
            except DataStoreError as e:
                logger.debug(f"{operation} failed: {e}")
                return Result.failure(e)
            except Exception as e:
                logger.exception(f"Unexpected error during {operation}")
                return Result.failure(StorageEngineError(operation, str(e)))
            if isinstance(value, Result):
                return value
            return Result.success(value)

        return wrapper

    return decorator
