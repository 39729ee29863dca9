"""
Structured logging tests.
"""

from __future__ import annotations

import io
import json
import logging

import pytest

from cachemesh.core.errors import PoolError
from cachemesh.observability.logging import LogLevel, StructuredLogger, setup_logging


@pytest.fixture
def stream():
    buffer = io.StringIO()
    setup_logging(LogLevel.DEBUG, json_output=True, stream=buffer)
    yield buffer
    logging.getLogger().handlers.clear()


def records(buffer: io.StringIO):
    return [json.loads(line) for line in buffer.getvalue().splitlines() if line]


def test_json_record_carries_fields(stream):
    StructuredLogger("cachemesh.pool").info("Acquired connection", lease_id=7, db=2)
    (record,) = records(stream)
    assert record["message"] == "Acquired connection"
    assert record["logger"] == "cachemesh.pool"
    assert record["level"] == "INFO"
    assert (record["lease_id"], record["db"]) == (7, 2)


def test_context_fields_are_merged(stream):
    logger = StructuredLogger("cachemesh.store")
    with logger.context(store="redis"):
        logger.warning("Discarded connection")
    logger.warning("Outside")
    inside, outside = records(stream)
    assert inside["store"] == "redis"
    assert "store" not in outside


def test_reserved_names_do_not_break_logging(stream):
    StructuredLogger("cachemesh.config").debug("Ignoring unparsable redis url", name="x", message="y")
    (record,) = records(stream)
    assert record["field_name"] == "x"
    assert record["field_message"] == "y"


def test_with_extra_adds_default_fields(stream):
    StructuredLogger("cachemesh.store").with_extra(host="h").error("Operation failed")
    assert records(stream)[0]["host"] == "h"


def test_exception_includes_traceback(stream):
    try:
        raise RuntimeError("subscriber bug")
    except RuntimeError:
        StructuredLogger("cachemesh.pool").exception("Error channel subscriber failed")
    (record,) = records(stream)
    assert "RuntimeError: subscriber bug" in record["exception"]


def test_redis_logger_is_quieted(stream):
    assert logging.getLogger("redis").level == logging.WARNING


def test_store_errors_are_expanded(stream):
    error = PoolError.exhausted(max_size=4, waited_ms=100)
    StructuredLogger("cachemesh.store").debug("Operation failed", op="get", error=error)
    (record,) = records(stream)
    assert record["error"]["code"] == "POOL_EXHAUSTED"
    assert record["error"]["error_id"] == error.error_id
    assert record["op"] == "get"


def test_key_value_output():
    buffer = io.StringIO()
    setup_logging(LogLevel.INFO, json_output=False, stream=buffer)
    try:
        StructuredLogger("cachemesh.store").info("Redis cache store open", db=2)
    finally:
        logging.getLogger().handlers.clear()
    line = buffer.getvalue().strip()
    assert "| INFO     | cachemesh.store | Redis cache store open" in line
    assert line.endswith("db=2")


@pytest.mark.parametrize("method", ["debug", "info", "warning", "error", "critical", "exception"])
def test_message_and_msg_fields_on_every_level(stream, method):
    getattr(StructuredLogger("cachemesh.store"), method)("Operation failed", message="m", msg="x")
    (record,) = records(stream)
    assert record["message"] == "Operation failed"
    assert (record["field_message"], record["field_msg"]) == ("m", "x")
