"""
Shared fixtures: an in-memory Redis server behind redis-py's own pool.

FakeRedisServer holds the keyspace. FakeConnection replaces the socket
layer of redis.asyncio.connection.Connection and answers with raw
replies, so BlockingConnectionPool, the Redis client and its response
parsing all run unchanged on top of it.

Failure switches:
    server.down            connecting fails
    server.drop_on         commands that lose the connection
    server.reject_on       commands answered with an error reply
"""

from __future__ import annotations

import fnmatch
import math
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Set, Tuple, Union

import pytest
import pytest_asyncio
from redis.asyncio import BlockingConnectionPool, Redis
from redis.asyncio.connection import Connection
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from cachemesh.core import constants as C
from cachemesh.storage.config import StoreConfig
from cachemesh.storage.redis_store import RedisCacheStore


KeyLike = Union[str, bytes]
Entry = Tuple[bytes, Optional[float]]


def _b(value: Any) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class FakeRedisServer:
    """Keyspace shared by all connections: db -> key -> (payload, expires_at)."""

    def __init__(self, scan_batch: int = 3, scan_overlap: int = 1) -> None:
        self.data: Dict[int, Dict[bytes, Entry]] = {}
        self.scan_batch = scan_batch
        self.scan_overlap = scan_overlap
        self.down = False
        self.drop_on: Set[str] = set()
        self.reject_on: Set[str] = set()
        self.commands: List[Tuple[str, Tuple[Any, ...]]] = []
        self.connects = 0

    def pool_factory(self, config: StoreConfig) -> BlockingConnectionPool:
        kwargs = config.get_pool_kwargs()
        kwargs["connection_class"] = FakeConnection
        return BlockingConnectionPool(server=self, **kwargs)

    def keyspace(self, db: int) -> Dict[bytes, Entry]:
        space = self.data.setdefault(db, {})
        now = time.monotonic()
        for key in [k for k, (_, exp) in space.items() if exp is not None and exp <= now]:
            del space[key]
        return space

    def count(self, command: str) -> int:
        return sum(1 for name, _ in self.commands if name == command)

    def execute(self, db: int, name: str, args: Tuple[Any, ...]) -> Any:
        """Raw reply for one command, as a server would send it."""
        space = self.keyspace(db)
        if name == "PING":
            return b"PONG"
        if name == "GET":
            entry = space.get(_b(args[0]))
            return entry[0] if entry else None
        if name == "MGET":
            return [space[_b(k)][0] if _b(k) in space else None for k in args]
        if name == "SET":
            space[_b(args[0])] = (_b(args[1]), None)
            return b"OK"
        if name == "SETEX":
            space[_b(args[0])] = (_b(args[2]), time.monotonic() + int(args[1]))
            return b"OK"
        if name == "DEL":
            return sum(1 for key in args if space.pop(_b(key), None) is not None)
        if name == "FLUSHDB":
            space.clear()
            return b"OK"
        if name == "TTL":
            entry = space.get(_b(args[0]))
            if entry is None:
                return C.TTL_MISSING_KEY
            if entry[1] is None:
                return C.TTL_NO_EXPIRY
            return math.ceil(entry[1] - time.monotonic())
        if name == "SCAN":
            return self._scan(space, args)
        return ResponseError(f"ERR unknown command '{name}'")

    def _scan(self, space: Dict[bytes, Entry], args: Tuple[Any, ...]) -> List[Any]:
        """Fixed-size batches that re-send the tail of the previous one."""
        cursor = int(args[0])
        options = {_b(args[i]).upper(): args[i + 1] for i in range(1, len(args) - 1, 2)}
        pattern = _b(options.get(b"MATCH", "*")).decode("utf-8")
        ordered = sorted(space)
        start = max(0, cursor - self.scan_overlap) if cursor else 0
        end = cursor + self.scan_batch
        matched = [
            key for key in ordered[start:end]
            if fnmatch.fnmatchcase(key.decode("utf-8", "surrogateescape"), pattern)
        ]
        next_cursor = end if end < len(ordered) else 0
        return [str(next_cursor).encode(), matched]


class FakeConnection(Connection):
    """A redis-py connection whose socket is FakeRedisServer."""

    def __init__(self, *, server: FakeRedisServer, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.server = server
        self.selected = int(self.db)
        self._open = False
        self._replies: Deque[Any] = deque()

    @property
    def is_connected(self) -> bool:
        return self._open

    async def connect(self, *args: Any, **kwargs: Any) -> None:
        if self._open:
            return
        if self.server.down:
            raise RedisConnectionError("Error 111 connecting to 127.0.0.1:6379. Connection refused.")
        self._open = True
        self.selected = int(self.db)
        self.server.connects += 1

    async def disconnect(self, *args: Any, **kwargs: Any) -> None:
        self._open = False
        self._replies.clear()

    async def can_read(self, *args: Any, **kwargs: Any) -> bool:
        return False

    async def can_read_destructive(self, *args: Any, **kwargs: Any) -> bool:
        return False

    async def send_command(self, *args: Any, **kwargs: Any) -> None:
        await self.connect()
        # what pack_command would put on the wire
        args = tuple(self.encoder.encode(arg) for arg in args)
        name = args[0].decode("utf-8").upper()
        self.server.commands.append((name, args[1:]))
        if name in self.server.drop_on:
            self._open = False
            raise RedisConnectionError(f"connection lost during {name}")
        if name in self.server.reject_on:
            self._replies.append(ResponseError(f"ERR {name} rejected"))
        elif name == "SELECT":
            self.selected = int(args[1])
            self._replies.append(b"OK")
        else:
            self._replies.append(self.server.execute(self.selected, name, tuple(args[1:])))

    async def read_response(self, *args: Any, **kwargs: Any) -> Any:
        reply = self._replies.popleft()
        if isinstance(reply, Exception):
            raise reply
        return reply


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def server() -> FakeRedisServer:
    return FakeRedisServer()


@pytest_asyncio.fixture
async def make_store(server: FakeRedisServer):
    """Build stores wired to the fake server; all are closed at teardown."""
    created: List[RedisCacheStore] = []

    def factory(**options: Any) -> RedisCacheStore:
        options.setdefault("acquire_timeout_ms", 200)
        store = RedisCacheStore(StoreConfig(**options), pool_factory=server.pool_factory)
        created.append(store)
        return store

    yield factory

    for store in created:
        await store.close()


@pytest_asyncio.fixture
async def store(make_store) -> RedisCacheStore:
    return make_store(ttl=60)


@pytest_asyncio.fixture
async def seed(server: FakeRedisServer):
    """Write keys straight into db 0 and return a raw client on it."""
    redis_pool = server.pool_factory(StoreConfig())

    def factory(*keys: KeyLike) -> Redis:
        space = server.keyspace(0)
        for key in keys:
            space[_b(key)] = (b'"v"', None)
        return Redis(connection_pool=redis_pool)

    yield factory

    await redis_pool.disconnect()
