"""
Observability module: structured logging for the cache store.
"""

from cachemesh.observability.logging import (
    StructuredLogger,
    JsonFormatter,
    KeyValueFormatter,
    LogLevel,
    setup_logging,
)

__all__ = [
    "StructuredLogger",
    "JsonFormatter",
    "KeyValueFormatter",
    "LogLevel",
    "setup_logging",
]
