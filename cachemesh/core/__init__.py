"""
Core module: Type definitions and error hierarchy.

This module provides the foundational abstractions for the store:
- Result/Either monads for zero-exception control flow
- Error hierarchy distinguishing pool, validation, codec and command failures
- Centralized constants
"""

from cachemesh.core.types import (
    Result,
    Ok,
    Err,
    Timestamp,
    STORED_NULL,
)
from cachemesh.core.errors import (
    ErrorCode,
    CacheStoreError,
    ConfigurationError,
    PoolError,
    ValidationError,
    CodecError,
    CommandError,
)

__all__ = [
    "Result",
    "Ok",
    "Err",
    "Timestamp",
    "STORED_NULL",
    "ErrorCode",
    "CacheStoreError",
    "ConfigurationError",
    "PoolError",
    "ValidationError",
    "CodecError",
    "CommandError",
]
