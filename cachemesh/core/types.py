"""
Core Types: Result Monad, Timestamps, Stored-Null Marker

Store internals never raise for expected failures. Each step returns
Ok(value) or Err(CacheStoreError) and the completion layer decides,
once, whether the caller sees a raised error or a callback argument.

    match await store._get("user:1", None):
        case Ok(value):
            ...
        case Err(error):
            ...
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Literal, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


# =============================================================================
# RESULT
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful outcome."""

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Transform the value, e.g. redis-py's True reply into "OK"."""
        return Ok(fn(self.value))


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failed outcome carrying the error object itself, so the public
    boundary can re-raise it with code, id and cause intact.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        raise RuntimeError(f"unwrap() on {self!r}")

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self


Result = Union[Ok[T], Err[E]]


# =============================================================================
# TIMESTAMP
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """Wall-clock instant in nanoseconds since the epoch."""

    nanos: int

    @classmethod
    def now(cls) -> Timestamp:
        return cls(time.time_ns())

    def age_ms(self) -> float:
        return (time.time_ns() - self.nanos) / 1_000_000


# =============================================================================
# STORED NULL
# =============================================================================
class _StoredNull:
    """
    What get() returns for a key holding an explicitly stored null.

    Only reachable when a custom cacheable-value predicate admits None.
    Falsy, so `if value:` treats it like an empty result, while
    `value is STORED_NULL` still tells it apart from a missing key.
    """

    __slots__ = ()
    _instance: "_StoredNull | None" = None

    def __new__(cls) -> "_StoredNull":
        if cls._instance is None:
            cls._instance = object.__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "STORED_NULL"

    def __reduce__(self) -> str:
        return "STORED_NULL"


STORED_NULL = _StoredNull()
