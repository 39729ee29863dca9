"""
Connection Pool: Exclusive Sessions over redis-py's BlockingConnectionPool
==========================================================================

redis-py owns the sockets: a BlockingConnectionPool bounded by pool_max
hands each connection to one borrower at a time and makes acquire()
wait up to acquire_timeout_ms for a free one. This module adds what a
cache store needs on top of it:

    lease     -> a single-connection Redis client pinned to one pool
                 connection until release()
    db        -> SELECT when the borrower asks for another database
    warm-up   -> open() connects pool_min sessions up front
    discard   -> a session that failed at the socket level is
                 disconnected on release; the pool reconnects it lazily
    errors    -> connectivity failures broadcast on `pool.errors`

Thread Safety:
--------------
Single event loop only. acquire() and release() both suspend on the
redis-py pool's condition.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import (
    Any, AsyncIterator, Callable, List, Optional, Set, Union,
)

from redis.asyncio import BlockingConnectionPool, Redis
from redis.asyncio.connection import AbstractConnection
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from cachemesh.core.errors import CacheStoreError, PoolError
from cachemesh.core.types import Result, Ok, Err, Timestamp
from cachemesh.observability.logging import StructuredLogger
from cachemesh.storage.config import StoreConfig


logger = StructuredLogger("cachemesh.pool")

PoolFactory = Callable[[StoreConfig], BlockingConnectionPool]
ErrorHandler = Callable[[CacheStoreError], Any]


def default_pool_factory(config: StoreConfig) -> BlockingConnectionPool:
    """Build the redis-py pool from the resolved configuration."""
    return BlockingConnectionPool(**config.get_pool_kwargs())


# =============================================================================
# POOLED CONNECTION
# =============================================================================

@dataclass(eq=False, slots=True)
class PooledConnection:
    """
    One borrowed session.

    Attributes:
        client: Redis client bound to `connection` for the whole lease.
        connection: The redis-py pool connection underneath.
        lease_id: Monotonic id, unique within the pool.
        db: Database index the session currently has selected.
        leased_at: When the session was handed out.
    """
    client: Redis
    connection: AbstractConnection
    lease_id: int
    db: int
    leased_at: Timestamp = field(default_factory=Timestamp.now)

    def __repr__(self) -> str:
        return f"PooledConnection(lease={self.lease_id}, db={self.db})"


# =============================================================================
# ERROR CHANNEL
# =============================================================================

class ErrorChannel:
    """
    Broadcast channel for pool-level connectivity errors.

    Example:
        >>> unsubscribe = pool.errors.subscribe(lambda err: alerts.append(err))
        >>> ...
        >>> unsubscribe()
    """

    __slots__ = ("_handlers",)

    def __init__(self) -> None:
        self._handlers: List[ErrorHandler] = []

    def subscribe(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register a handler; returns a function that removes it again."""
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, error: CacheStoreError) -> int:
        """
        Deliver error to every subscriber.

        A failing subscriber is logged and skipped.

        Returns:
            Number of handlers that received the error.
        """
        delivered = 0
        for handler in list(self._handlers):
            try:
                handler(error)
                delivered += 1
            except Exception:
                logger.exception("Error channel subscriber failed", error=error)
        return delivered

    def __len__(self) -> int:
        return len(self._handlers)


# =============================================================================
# CONNECTION POOL
# =============================================================================

class ConnectionPool:
    """
    Bounded pool of Redis sessions with acquire/release discipline.

    Example:
        >>> pool = ConnectionPool(StoreConfig(pool_max=4))
        >>> async with pool.connection(db=0) as conn:
        ...     await conn.client.get("key")
        >>> await pool.close()
    """

    __slots__ = (
        "_config",
        "_pool_factory",
        "_redis_pool",
        "_in_use",
        "_seen",
        "_waiting",
        "_next_id",
        "_closed",
        "errors",
    )

    def __init__(
        self,
        config: StoreConfig,
        pool_factory: Optional[PoolFactory] = None,
    ) -> None:
        self._config = config
        self._pool_factory = pool_factory or default_pool_factory
        self._redis_pool: Optional[BlockingConnectionPool] = None
        self._in_use: Set[PooledConnection] = set()
        self._seen: Set[AbstractConnection] = set()
        self._waiting = 0
        self._next_id = 0
        self._closed = False
        self.errors = ErrorChannel()

    # -------------------------------------------------------------------------
    # STATS
    # -------------------------------------------------------------------------

    @property
    def size(self) -> int:
        """Connected sessions, idle and in use."""
        return sum(1 for connection in self._seen if connection.is_connected)

    @property
    def idle(self) -> int:
        return self.size - self.in_use

    @property
    def in_use(self) -> int:
        return len(self._in_use)

    @property
    def waiting(self) -> int:
        """Acquirers currently blocked on the redis-py pool."""
        return self._waiting

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def open(self) -> Result[None, PoolError]:
        """
        (Re)open the pool and connect pool_min sessions.

        Returns:
            Ok(None), or the first connection error encountered.
        """
        self._closed = False
        warm: List[PooledConnection] = []
        outcome: Result[None, PoolError] = Ok(None)
        while len(warm) < self._config.pool_min:
            acquired = await self.acquire()
            if acquired.is_err():
                outcome = acquired
                break
            warm.append(acquired.value)
        for conn in warm:
            await self.release(conn)
        logger.debug("Connection pool open", size=self.size)
        return outcome

    async def close(self) -> None:
        """
        Disconnect idle sessions.

        Sessions currently in use are disconnected when they are
        released. Safe to call multiple times.
        """
        self._closed = True
        redis_pool, self._redis_pool = self._redis_pool, None
        if redis_pool is not None:
            try:
                await redis_pool.disconnect(inuse_connections=False)
            except (RedisError, OSError) as e:
                logger.debug("Error while disconnecting redis pool", reason=str(e))
        self._seen = {connection for connection in self._seen if connection.is_connected}
        logger.debug("Connection pool closed", in_use=len(self._in_use))

    # -------------------------------------------------------------------------
    # ACQUIRE / RELEASE
    # -------------------------------------------------------------------------

    async def acquire(self, db: Optional[int] = None) -> Result[PooledConnection, PoolError]:
        """
        Borrow a session switched to database `db` (default: configured db).

        Never returns a session that is already checked out. Fails with
        PoolError instead of waiting longer than acquire_timeout_ms.
        """
        if self._closed:
            return Err(PoolError.closed())

        target_db = self._config.db if db is None else db
        client = Redis(connection_pool=self._ensure_pool(), single_connection_client=True)

        self._waiting += 1
        try:
            await client.initialize()
        except (RedisError, OSError) as e:
            return Err(self._acquire_failed(e))
        finally:
            self._waiting -= 1

        self._next_id += 1
        conn = PooledConnection(
            client=client,
            connection=client.connection,
            lease_id=self._next_id,
            db=self._config.db,
        )
        self._in_use.add(conn)
        self._seen.add(conn.connection)

        if self._closed:
            # closed while this acquirer was waiting
            await self.release(conn)
            return Err(PoolError.closed())

        if target_db != conn.db:
            try:
                await client.execute_command("SELECT", target_db)
            except asyncio.CancelledError:
                await self.release(conn, discard=True)
                raise
            except (RedisError, OSError) as e:
                await self.release(conn, discard=True)
                return Err(PoolError.select_failed(target_db, e))
            conn.db = target_db

        logger.debug("Acquired connection", lease_id=conn.lease_id, db=target_db)
        return Ok(conn)

    async def release(self, conn: Optional[PooledConnection], *, discard: bool = False) -> None:
        """
        Return a borrowed session.

        Tolerates None and sessions that are not checked out, so cleanup
        paths can call it unconditionally. `discard=True` disconnects
        the session before it goes back to redis-py's pool.
        """
        if conn is None or conn not in self._in_use:
            logger.debug("Ignoring release of a connection that is not checked out")
            return

        self._in_use.discard(conn)
        # the next borrower expects the configured database
        disconnect = discard or self._closed or conn.db != self._config.db

        try:
            if disconnect:
                await conn.connection.disconnect()
        except (RedisError, OSError) as e:
            logger.debug("Error while disconnecting redis session", reason=str(e))
        finally:
            await conn.client.aclose()

        if discard:
            logger.warning(
                "Discarded connection",
                lease_id=conn.lease_id,
                held_ms=round(conn.leased_at.age_ms()),
            )
        else:
            logger.debug("Released connection", lease_id=conn.lease_id)

    @asynccontextmanager
    async def connection(self, db: Optional[int] = None) -> AsyncIterator[PooledConnection]:
        """
        Scoped acquisition: the session is released exactly once on exit.

        A redis connection or timeout error inside the block discards the
        session and is broadcast on the error channel before propagating.

        Raises:
            PoolError: If no session could be acquired.
        """
        result = await self.acquire(db)
        if result.is_err():
            raise result.error
        conn = result.unwrap()
        discard = False
        try:
            yield conn
        except (RedisError, OSError) as e:
            discard = is_connectivity_error(e)
            if discard:
                self.errors.emit(
                    PoolError.connection_failed(self._config.host, self._config.port, e)
                )
            raise
        finally:
            await self.release(conn, discard=discard)

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _ensure_pool(self) -> BlockingConnectionPool:
        if self._redis_pool is None:
            self._redis_pool = self._pool_factory(self._config)
        return self._redis_pool

    def _acquire_failed(self, cause: BaseException) -> PoolError:
        # BlockingConnectionPool reports its wait timeout as a ConnectionError
        if isinstance(cause.__cause__, asyncio.TimeoutError):
            return PoolError.exhausted(self._config.pool_max, self._config.acquire_timeout_ms)

        error = PoolError.connection_failed(self._config.host, self._config.port, cause)
        logger.warning(
            "Redis unreachable",
            host=self._config.host,
            port=self._config.port,
            reason=str(cause),
        )
        self.errors.emit(error)
        return error


def is_connectivity_error(error: Union[BaseException, None]) -> bool:
    """True for failures that mean the session itself is unusable."""
    return isinstance(
        error,
        (RedisConnectionError, RedisTimeoutError, ConnectionError, TimeoutError, OSError),
    )
