"""
Key-Scan Iterator: Cursor-Driven, Deduplicated Key Enumeration

State machine:
    START     cursor = 0
    FETCHING  SCAN cursor MATCH pattern COUNT hint
              -> yield keys not seen before, adopt returned cursor
              -> cursor == 0 ? DONE : FETCHING
    FAILED    any step error aborts the scan

SCAN may return the same key in more than one batch (rehashing,
sharded keyspaces); the seen-set guarantees each key is reported once.
Termination relies on the server returning cursor 0 after a finite
number of steps over a static keyspace.

Complexity: O(N) over the keyspace, O(k) memory for k matching keys.
"""

from __future__ import annotations

from typing import AsyncIterator, List, Set, Union

from redis.asyncio import Redis
from redis.exceptions import RedisError

from cachemesh.core import constants as C
from cachemesh.core.errors import CommandError
from cachemesh.core.types import Result, Ok, Err
from cachemesh.storage.pool import is_connectivity_error


def _as_text(key: Union[bytes, str]) -> str:
    return key.decode(C.KEY_ENCODING, C.KEY_ENCODING_ERRORS) if isinstance(key, bytes) else key


class KeyScanner:
    """
    Drives SCAN to completion on one borrowed session.

    Each call starts a fresh scan; scans are not resumable.

    Example:
        >>> scanner = KeyScanner(count=500)
        >>> async for key in scanner.iter_keys(conn.client, "user:*"):
        ...     print(key)
    """

    __slots__ = ("count", "steps")

    def __init__(self, count: int = C.DEFAULT_SCAN_COUNT) -> None:
        self.count = count
        self.steps = 0

    async def iter_keys(
        self,
        client: Redis,
        pattern: str = C.DEFAULT_SCAN_PATTERN,
    ) -> AsyncIterator[str]:
        """
        Yield each key matching pattern exactly once, in discovery order.

        Raises:
            RedisError: From the failing SCAN step; no further steps run.
        """
        seen: Set[str] = set()
        cursor = C.SCAN_INITIAL_CURSOR
        self.steps = 0

        while True:
            cursor, batch = await client.scan(cursor=cursor, match=pattern, count=self.count)
            cursor = int(cursor)
            self.steps += 1

            for raw in batch:
                key = _as_text(raw)
                if key not in seen:
                    seen.add(key)
                    yield key

            if cursor == C.SCAN_INITIAL_CURSOR:
                break

    async def collect(
        self,
        client: Redis,
        pattern: str = C.DEFAULT_SCAN_PATTERN,
    ) -> Result[List[str], CommandError]:
        """Run the whole scan and return the deduplicated key list."""
        keys: List[str] = []
        try:
            async for key in self.iter_keys(client, pattern):
                keys.append(key)
        except (RedisError, OSError) as e:
            return Err(CommandError.command_failed(
                "SCAN", e, connection_lost=is_connectivity_error(e),
            ))
        return Ok(keys)
