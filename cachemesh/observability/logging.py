"""
Structured Logging for the Cache Store

Every module logs through `StructuredLogger("cachemesh.<module>")`:

    DEBUG    acquire/release, URL fallback, scan and batch summaries
    INFO     store lifecycle
    WARNING  unreachable server, discarded sessions
    ERROR    failing error-channel subscribers and callbacks

Records render as one JSON object per line. Keyword fields become
top-level keys; a CacheStoreError passed as a field is expanded through
its to_dict() so log pipelines can group on `code` and `error_id`.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Optional, TextIO

from cachemesh.core.errors import CacheStoreError


class LogLevel(IntEnum):
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


# Fields bound with StructuredLogger.context(), e.g. store host or db
_bound_fields: ContextVar[Dict[str, Any]] = ContextVar("cachemesh_log_fields", default={})

# Attributes every logging.LogRecord carries; anything else came from `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _render_value(value: Any) -> Any:
    if isinstance(value, CacheStoreError):
        return value.to_dict()
    return value


def _record_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = dict(_bound_fields.get())
    fields.update(
        (key, _render_value(value))
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS
    )
    return fields


class JsonFormatter(logging.Formatter):
    """One JSON object per record: envelope keys first, then fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    """Human-readable variant: `ts | LEVEL | logger | message key=value ...`."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _record_fields(record)
        if fields:
            line += " " + " ".join(f"{k}={v!r}" for k, v in fields.items())
        return line


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger taking fields as keyword arguments.

    Usage:
        logger = StructuredLogger("cachemesh.pool")

        with logger.context(db=2):
            logger.debug("Acquired connection", lease_id=7)
    """

    __slots__ = ("_logger", "_fields")

    def __init__(self, name: str, level: Optional[LogLevel] = None) -> None:
        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(level.value)
        self._fields: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, /, **fields: Any) -> None:
        self._emit(LogLevel.DEBUG, msg, fields)

    def info(self, msg: str, /, **fields: Any) -> None:
        self._emit(LogLevel.INFO, msg, fields)

    def warning(self, msg: str, /, **fields: Any) -> None:
        self._emit(LogLevel.WARNING, msg, fields)

    def error(self, msg: str, /, **fields: Any) -> None:
        self._emit(LogLevel.ERROR, msg, fields)

    def critical(self, msg: str, /, **fields: Any) -> None:
        self._emit(LogLevel.CRITICAL, msg, fields)

    def exception(self, msg: str, /, **fields: Any) -> None:
        """ERROR with the exception currently being handled attached."""
        self._emit(LogLevel.ERROR, msg, fields, exc_info=True)

    def _emit(
        self,
        level: LogLevel,
        msg: str,
        fields: Dict[str, Any],
        /,
        exc_info: bool = False,
    ) -> None:
        if not self._logger.isEnabledFor(level.value):
            return
        merged = {**self._fields, **fields}
        # logging refuses extras that shadow LogRecord attributes
        extra = {
            (f"field_{key}" if key in _RECORD_ATTRS else key): value
            for key, value in merged.items()
        }
        self._logger.log(level.value, msg, exc_info=exc_info, extra=extra)

    def with_extra(self, **fields: Any) -> StructuredLogger:
        """Child logger that adds fields to every record."""
        child = StructuredLogger(self._logger.name)
        child._fields = {**self._fields, **fields}
        return child

    @staticmethod
    def context(**fields: Any) -> _BoundFields:
        """Bind fields to every record logged inside the `with` block."""
        return _BoundFields(fields)


class _BoundFields:
    __slots__ = ("_fields", "_token")

    def __init__(self, fields: Dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _BoundFields:
        self._token = _bound_fields.set({**_bound_fields.get(), **self._fields})
        return self

    def __exit__(self, *exc: Any) -> None:
        if self._token is not None:
            _bound_fields.reset(self._token)
            self._token = None


def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Route all records to one stream handler on the root logger.

    Args:
        level: Minimum level for the root logger and handler.
        json_output: JsonFormatter when True, KeyValueFormatter otherwise.
        stream: Destination; defaults to stderr.
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level.value)
    handler.setFormatter(JsonFormatter() if json_output else KeyValueFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.value)

    # redis-py reports every reconnect attempt
    for noisy in ("redis", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
