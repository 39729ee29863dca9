"""
Error Hierarchy for the Redis Cache Store

One subclass per failure class a caller may want to handle differently:

    ConfigurationError  bad options; raised when the store is built
    PoolError           no usable session (unreachable, exhausted, closed)
    ValidationError     value refused by the cacheable-value predicate
    CodecError          JSON or compression failure on either side
    CommandError        server error reply or session lost mid-command

A missing key is not an error. Every instance carries an ErrorCode, a
short error_id to correlate with log lines, and the underlying cause.

    try:
        await store.get("user:1")
    except PoolError:
        serve_from_origin()
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from cachemesh.core.types import Timestamp


# =============================================================================
# ERROR CODE ENUMERATION
# =============================================================================
class ErrorCode(Enum):
    """
    Stable numeric codes, safe to match on and to ship to dashboards.

    Codes are grouped by failure class:
    - 1xxx: Configuration errors
    - 2xxx: Pool / connectivity errors
    - 3xxx: Validation errors
    - 4xxx: Codec errors
    - 5xxx: Remote command errors
    """

    # Configuration errors (1xxx)
    CONFIG_INVALID = 1001

    # Pool errors (2xxx)
    POOL_CONNECTION_FAILED = 2001
    POOL_EXHAUSTED = 2002
    POOL_CLOSED = 2003
    POOL_SELECT_FAILED = 2004

    # Validation errors (3xxx)
    VALIDATION_NOT_CACHEABLE = 3001
    VALIDATION_PREDICATE_FAILED = 3002

    # Codec errors (4xxx)
    CODEC_ENCODE_FAILED = 4001
    CODEC_DECODE_FAILED = 4002

    # Command errors (5xxx)
    COMMAND_FAILED = 5001
    COMMAND_CONNECTION_LOST = 5002


# =============================================================================
# BASE ERROR CLASS
# =============================================================================
@dataclass
class CacheStoreError(Exception):
    """
    Root of every error the store reports.

    A dataclass so structured logging can serialize it through to_dict();
    the cause is also chained as __cause__ for tracebacks.
    """

    code: ErrorCode
    message: str
    error_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: Timestamp = field(default_factory=Timestamp.now)
    cause: Optional[BaseException] = None
    context: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)
        if self.cause is not None:
            self.__cause__ = self.cause

    def to_dict(self) -> dict[str, Any]:
        """Serialize error to dictionary for structured logging."""
        return {
            "error_id": self.error_id,
            "code": self.code.name,
            "code_value": self.code.value,
            "message": self.message,
            "timestamp_nanos": self.timestamp.nanos,
            "context": self.context,
        }

    def __str__(self) -> str:
        return f"[{self.code.name}] {self.message} (id={self.error_id[:8]})"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code.name}, "
            f"message={self.message!r}, "
            f"error_id={self.error_id!r})"
        )


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================
@dataclass
class ConfigurationError(CacheStoreError):
    """
    Invalid store configuration.

    Raised at construction time; an unparsable URL is not one of these,
    it is recovered by falling back to explicit fields.
    """

    @classmethod
    def invalid(cls, field_name: str, value: Any, reason: str) -> ConfigurationError:
        return cls(
            code=ErrorCode.CONFIG_INVALID,
            message=f"Invalid configuration for '{field_name}': {reason}",
            context={"field": field_name, "value": repr(value)[:100]},
        )


# =============================================================================
# POOL ERRORS
# =============================================================================
@dataclass
class PoolError(CacheStoreError):
    """
    Connection acquisition failures.

    Covers unreachable servers, authentication failures, an exhausted
    pool and use after close.
    """

    @classmethod
    def connection_failed(
        cls,
        host: str,
        port: int,
        cause: Optional[BaseException] = None,
    ) -> PoolError:
        """Opening or validating a session failed."""
        return cls(
            code=ErrorCode.POOL_CONNECTION_FAILED,
            message=f"Failed to connect to redis at {host}:{port}: {cause}",
            cause=cause,
            context={"host": host, "port": port},
        )

    @classmethod
    def exhausted(cls, max_size: int, waited_ms: int) -> PoolError:
        """No session became free within the acquire timeout."""
        return cls(
            code=ErrorCode.POOL_EXHAUSTED,
            message=f"Connection pool exhausted ({max_size} in use) after {waited_ms}ms",
            context={"max_size": max_size, "waited_ms": waited_ms},
        )

    @classmethod
    def select_failed(cls, db: int, cause: BaseException) -> PoolError:
        """Switching a session to the requested database failed."""
        return cls(
            code=ErrorCode.POOL_SELECT_FAILED,
            message=f"Failed to select database {db}: {cause}",
            cause=cause,
            context={"db": db},
        )

    @classmethod
    def closed(cls) -> PoolError:
        return cls(
            code=ErrorCode.POOL_CLOSED,
            message="Connection pool is closed",
        )


# =============================================================================
# VALIDATION ERRORS
# =============================================================================
@dataclass
class ValidationError(CacheStoreError):
    """Value rejected by the cacheable-value predicate."""

    @classmethod
    def not_cacheable(cls, key: str, value: Any) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_NOT_CACHEABLE,
            message=f"value cannot be {value!r}",
            context={"key": key, "value": repr(value)[:100]},
        )

    @classmethod
    def predicate_failed(cls, key: str, cause: BaseException) -> ValidationError:
        return cls(
            code=ErrorCode.VALIDATION_PREDICATE_FAILED,
            message=f"Cacheable-value predicate raised for key '{key}': {cause!r}",
            cause=cause,
            context={"key": key},
        )


# =============================================================================
# CODEC ERRORS
# =============================================================================
@dataclass
class CodecError(CacheStoreError):
    """Serialization, compression or their inverse failed."""

    @classmethod
    def encode_failed(cls, key: str, cause: BaseException) -> CodecError:
        return cls(
            code=ErrorCode.CODEC_ENCODE_FAILED,
            message=f"Failed to encode value for key '{key}': {cause}",
            cause=cause,
            context={"key": key},
        )

    @classmethod
    def decode_failed(cls, key: str, cause: BaseException) -> CodecError:
        return cls(
            code=ErrorCode.CODEC_DECODE_FAILED,
            message=f"Failed to decode value for key '{key}': {cause}",
            cause=cause,
            context={"key": key},
        )


# =============================================================================
# COMMAND ERRORS
# =============================================================================
@dataclass
class CommandError(CacheStoreError):
    """The server rejected a command or the session failed mid-command."""

    @classmethod
    def command_failed(
        cls,
        command: str,
        cause: BaseException,
        connection_lost: bool = False,
    ) -> CommandError:
        code = (
            ErrorCode.COMMAND_CONNECTION_LOST
            if connection_lost
            else ErrorCode.COMMAND_FAILED
        )
        return cls(
            code=code,
            message=f"Redis {command} failed: {cause}",
            cause=cause,
            context={"command": command},
        )

    @property
    def connection_lost(self) -> bool:
        return self.code == ErrorCode.COMMAND_CONNECTION_LOST
