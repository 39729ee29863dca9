"""
Completion adapters: one internal Result, two caller styles.

    awaiting:  value = await store.get("k")          # Err is raised
    callback:  store.get("k", callback=on_done)      # on_done(err, value)

In callback style the returned task never raises; the callback owns
the outcome, including unexpected exceptions from the operation. An
exception raised by the callback itself is logged.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, Set, TypeVar

from cachemesh.core.errors import CacheStoreError
from cachemesh.core.types import Result
from cachemesh.observability.logging import StructuredLogger


logger = StructuredLogger("cachemesh.completion")

T = TypeVar("T")
Callback = Callable[[Optional[BaseException], Any], Any]

# The event loop keeps only weak references to tasks
_background: Set[asyncio.Task] = set()


def spawn(operation: Awaitable[Any]) -> asyncio.Task:
    """Schedule operation as a task that stays referenced until it finishes."""
    task = asyncio.ensure_future(operation)
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


def settle(
    operation: Awaitable[Result[T, CacheStoreError]],
    callback: Optional[Callback] = None,
) -> asyncio.Task:
    """
    Schedule operation and adapt its Result to the caller's style.

    Must be called with a running event loop.
    """
    return spawn(_complete(operation, callback))


async def _complete(
    operation: Awaitable[Result[T, CacheStoreError]],
    callback: Optional[Callback],
) -> Any:
    if callback is None:
        result = await operation
        if result.is_err():
            raise result.error
        return result.value

    try:
        result = await operation
    except Exception as e:
        logger.exception("Operation raised outside its result")
        error, value = e, None
    else:
        error, value = (result.error, None) if result.is_err() else (None, result.value)

    try:
        callback(error, value)
    except Exception:
        logger.exception("Completion callback raised")
    return value
