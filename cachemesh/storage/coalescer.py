"""
Read Coalescer: Same-Tick GETs Merged into One MGET

get() calls issued within one event-loop iteration are collected and
served by a single MGET over their distinct keys, on a single pooled
session. Every caller receives the raw payload for its own key and
decodes it with its own compression policy.

Timeline:
    tick N     get(a), get(b), get(a)   -> queued, flush scheduled once
    tick N+1   flush                    -> MGET a b
    ...        reply                    -> each future resolved from the snapshot

A failure (pool or command) is delivered to every caller of the batch.
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Tuple, Union

from cachemesh.core import constants as C
from cachemesh.core.errors import CacheStoreError, CommandError, PoolError
from cachemesh.core.types import Result, Ok, Err
from cachemesh.observability.logging import StructuredLogger
from cachemesh.storage.pool import ConnectionPool, is_connectivity_error


logger = StructuredLogger("cachemesh.coalescer")

WireKey = Union[str, bytes]
_Pending = Tuple[bytes, asyncio.Future]


def _normalize(key: WireKey) -> bytes:
    return key if isinstance(key, bytes) else key.encode(C.KEY_ENCODING, C.KEY_ENCODING_ERRORS)


class ReadCoalescer:
    """
    Batches concurrent reads against one pool.

    Example:
        >>> coalescer = ReadCoalescer(pool)
        >>> a, b = await asyncio.gather(coalescer.fetch("a"), coalescer.fetch("b"))
    """

    __slots__ = ("_pool", "_pending", "_scheduled", "_inflight", "batches")

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool
        self._pending: List[_Pending] = []
        self._scheduled = False
        self._inflight: set[asyncio.Task] = set()
        self.batches = 0

    async def fetch(self, key: WireKey) -> Result[Optional[bytes], CacheStoreError]:
        """Queue a read for key and wait for the batch it lands in."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._pending.append((_normalize(key), future))
        if not self._scheduled:
            self._scheduled = True
            loop.call_soon(self._flush)
        return await future

    def _flush(self) -> None:
        batch, self._pending = self._pending, []
        self._scheduled = False
        if not batch:
            return
        task = asyncio.ensure_future(self._run(batch))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, batch: List[_Pending]) -> None:
        unique = list(dict.fromkeys(key for key, _ in batch))
        self.batches += 1

        outcome: Result[Dict[bytes, Optional[bytes]], CacheStoreError]
        try:
            async with self._pool.connection() as conn:
                values = await conn.client.mget(unique)
            outcome = Ok(dict(zip(unique, values)))
        except PoolError as e:
            outcome = Err(e)
        except Exception as e:
            # a batch never leaves its callers waiting
            outcome = Err(CommandError.command_failed(
                "MGET", e, connection_lost=is_connectivity_error(e),
            ))

        logger.debug("Coalesced read batch", callers=len(batch), keys=len(unique))

        for key, future in batch:
            if future.done():
                continue
            if outcome.is_err():
                future.set_result(outcome)
            else:
                future.set_result(Ok(outcome.value[key]))
