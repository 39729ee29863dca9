"""
Redis Cache Store: Pooled Backing Store for a Generic Caching Layer

Exposes the store contract a caching layer drives (get/set/del/reset/
ttl/keys) on top of a bounded pool of Redis sessions.

Architecture:
    ┌──────────────────────────────────────────────────────────────┐
    │                      RedisCacheStore                          │
    │  public op ──► settle() ──► Task / callback(err, value)       │
    │      │                                                        │
    │      ▼                                                        │
    │  _observe ──► _get/_set/... ──► Result[T, CacheStoreError]    │
    │                   │        │                                  │
    │           ValueCodec   ConnectionPool ◄── ReadCoalescer       │
    │                            │                                  │
    │                     redis.asyncio sessions                    │
    └──────────────────────────────────────────────────────────────┘

Failure Semantics:
    - Acquisition failure, remote failure and codec failure each come
      back as the operation's error; nothing is retried.
    - The borrowed session is released before the outcome is delivered.
    - Connectivity failures are also broadcast on `store.events`.

Example:
    >>> store = create_store(host="cache.internal", ttl=600, compress=True)
    >>> async with store:
    ...     await store.set("user:1", {"name": "ada"})
    ...     await store.get("user:1")
    {'name': 'ada'}
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, fields
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from redis.asyncio import Redis
from redis.exceptions import RedisError

from cachemesh.core import constants as C
from cachemesh.core.errors import (
    CacheStoreError,
    CodecError,
    CommandError,
    ConfigurationError,
    PoolError,
    ValidationError,
)
from cachemesh.core.types import Result, Ok, Err
from cachemesh.observability.logging import StructuredLogger
from cachemesh.storage.codec import CompressionPolicy, ValueCodec, resolve_compression
from cachemesh.storage.coalescer import ReadCoalescer
from cachemesh.storage.completion import Callback, settle, spawn
from cachemesh.storage.config import OperationOptions, StoreConfig, resolve_config
from cachemesh.storage.pool import (
    ConnectionPool,
    ErrorChannel,
    ErrorHandler,
    PoolFactory,
    PooledConnection,
    is_connectivity_error,
)
from cachemesh.storage.scan import KeyScanner


logger = StructuredLogger("cachemesh.store")

OptionsArg = Union[OperationOptions, Mapping[str, Any], int, None]


# =============================================================================
# METRICS COLLECTOR
# =============================================================================

@dataclass(slots=True)
class StoreMetrics:
    """
    Nanosecond-precision counters for store operations.

    Plain increments; safe on a single event loop.
    """
    get_count: int = 0
    set_count: int = 0
    delete_count: int = 0
    reset_count: int = 0
    ttl_count: int = 0
    keys_count: int = 0

    hits: int = 0
    misses: int = 0

    # Latency sums (nanoseconds)
    get_latency_sum_ns: int = 0
    set_latency_sum_ns: int = 0

    # Error counters
    connection_errors: int = 0
    command_errors: int = 0
    codec_errors: int = 0
    validation_errors: int = 0

    def record(self, op: str, latency_ns: int, error: Optional[CacheStoreError] = None) -> None:
        """Count one finished operation and classify its error, if any."""
        counter = f"{op}_count"
        setattr(self, counter, getattr(self, counter) + 1)
        if op == "get":
            self.get_latency_sum_ns += latency_ns
        elif op == "set":
            self.set_latency_sum_ns += latency_ns

        if error is None:
            return
        if isinstance(error, PoolError):
            self.connection_errors += 1
        elif isinstance(error, CommandError):
            self.command_errors += 1
            if error.connection_lost:
                self.connection_errors += 1
        elif isinstance(error, CodecError):
            self.codec_errors += 1
        elif isinstance(error, ValidationError):
            self.validation_errors += 1

    def record_lookup(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1

    def get_avg_get_latency_ms(self) -> float:
        """Average GET latency in milliseconds."""
        if self.get_count == 0:
            return 0.0
        return (self.get_latency_sum_ns / self.get_count) / C.NS_PER_MS

    def get_avg_set_latency_ms(self) -> float:
        """Average SET latency in milliseconds."""
        if self.set_count == 0:
            return 0.0
        return (self.set_latency_sum_ns / self.set_count) / C.NS_PER_MS

    def snapshot(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        data["avg_get_latency_ms"] = self.get_avg_get_latency_ms()
        data["avg_set_latency_ms"] = self.get_avg_set_latency_ms()
        return data


# =============================================================================
# CLIENT LEASE
# =============================================================================

class ClientLease:
    """
    A raw session borrowed through get_client().

    done() returns the session to the pool and then calls the callback.
    Only the first release returns the session; later done() calls only
    forward to their callback. Also usable as `async with lease as client:`.
    """

    __slots__ = ("client", "_conn", "_pool", "_released")

    def __init__(self, conn: PooledConnection, pool: ConnectionPool) -> None:
        self.client: Redis = conn.client
        self._conn = conn
        self._pool = pool
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def done(self, callback: Optional[Callable[..., Any]] = None, *args: Any) -> asyncio.Task:
        """Release in the background, then call callback(*args)."""
        return spawn(self._done(callback, args))

    async def release(self, discard: bool = False) -> None:
        if not self._released:
            self._released = True
            await self._pool.release(self._conn, discard=discard)

    async def _done(self, callback: Optional[Callable[..., Any]], args: Tuple[Any, ...]) -> None:
        await self.release()
        if callable(callback):
            try:
                callback(*args)
            except Exception:
                logger.exception("Lease callback raised", lease_id=self._conn.lease_id)

    async def __aenter__(self) -> Redis:
        return self.client

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.release(discard=is_connectivity_error(exc))


# =============================================================================
# REDIS CACHE STORE
# =============================================================================

class RedisCacheStore:
    """
    Cache store backed by a pooled Redis connection set.

    Every operation returns an asyncio Task. Awaiting it yields the
    value or raises the CacheStoreError; passing `callback=` delivers
    `callback(error, value)` instead and the task never raises.

    Thread Safety:
        Single event loop. The pool is the only shared mutable state.
    """

    name = "redis"

    __slots__ = (
        "_config",
        "_pool",
        "_codec",
        "_coalescer",
        "_metrics",
    )

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        *,
        pool_factory: Optional[PoolFactory] = None,
    ) -> None:
        self._config = resolve_config(config or StoreConfig())
        # fail fast on a malformed store-wide compression setting
        resolve_compression(None, self._config.compress)
        self._pool = ConnectionPool(self._config, pool_factory)
        self._codec = ValueCodec()
        self._coalescer = ReadCoalescer(self._pool) if self._config.coalesce_reads else None
        self._metrics = StoreMetrics()

    # -------------------------------------------------------------------------
    # PROPERTIES
    # -------------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        """Resolved configuration (URL applied)."""
        return self._config

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def events(self) -> ErrorChannel:
        """Connectivity errors, delivered independently of any operation."""
        return self._pool.errors

    @property
    def metrics(self) -> StoreMetrics:
        return self._metrics

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Subscribe to connectivity errors; returns the unsubscribe function."""
        return self._pool.errors.subscribe(handler)

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        Warm the pool up to pool_min sessions.

        Optional: sessions are otherwise opened on first use.

        Raises:
            PoolError: If a warm-up session cannot be established.
        """
        result = await self._pool.open()
        if result.is_err():
            raise result.error
        logger.info(
            "Redis cache store open",
            host=self._config.host,
            port=self._config.port,
            db=self._config.db,
        )

    async def close(self) -> None:
        """
        Close every pooled session.

        Safe to call multiple times. Operations afterwards fail with
        PoolError until open() is called again.
        """
        await self._pool.close()

    async def __aenter__(self) -> RedisCacheStore:
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.close()

    async def health_check(self) -> Dict[str, Any]:
        """PING through the pool plus pool and metrics snapshots."""
        result = await self._execute("PING", lambda client: client.ping())
        return {
            "connected": result.is_ok(),
            "error": None if result.is_ok() else str(result.error),
            "pool": {
                "size": self._pool.size,
                "idle": self._pool.idle,
                "max": self._config.pool_max,
                "in_use": self._pool.in_use,
                "waiting": self._pool.waiting,
            },
            "metrics": self._metrics.snapshot(),
        }

    # -------------------------------------------------------------------------
    # PUBLIC OPERATIONS
    # -------------------------------------------------------------------------

    def is_cacheable_value(self, value: Any) -> bool:
        """
        Whether value may be stored.

        The configured predicate wins; by default everything except None
        is cacheable, including 0, "", False and empty containers.
        """
        predicate = self._config.is_cacheable_value
        if predicate is not None:
            return bool(predicate(value))
        return value is not None

    def get(
        self,
        key: str,
        options: OptionsArg = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[Any]:
        """Value stored under key, None when missing, STORED_NULL for a stored null."""
        return settle(self._observe("get", self._get(key, options)), callback)

    def set(
        self,
        key: str,
        value: Any,
        options: OptionsArg = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[str]:
        """
        Store value under key; resolves to "OK".

        An int options argument is a ttl in seconds. ttl=0 stores without
        expiry; no ttl falls back to the store default.
        """
        return settle(self._observe("set", self._set(key, value, options)), callback)

    def delete(
        self,
        key: Union[str, Sequence[str]],
        options: OptionsArg = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[int]:
        """
        Delete one key or a list of keys in a single DEL.

        Resolves to the number of keys removed.
        """
        return settle(self._observe("delete", self._delete(key)), callback)

    del_ = delete

    def reset(
        self,
        options: OptionsArg = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[str]:
        """FLUSHDB on the configured database."""
        return settle(self._observe("reset", self._reset()), callback)

    def ttl(self, key: str, *, callback: Optional[Callback] = None) -> Awaitable[int]:
        """Remaining seconds; -1 without expiry, -2 for a missing key."""
        return settle(self._observe("ttl", self._ttl(key)), callback)

    def keys(
        self,
        pattern: str = "*",
        options: OptionsArg = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[List[str]]:
        """Every key matching pattern, each exactly once."""
        return settle(self._observe("keys", self._keys(pattern, options)), callback)

    def get_client(self, *, callback: Optional[Callback] = None) -> Awaitable[ClientLease]:
        """
        Borrow a raw session.

        Example:
            >>> lease = await store.get_client()
            >>> try:
            ...     await lease.client.get("k")
            ... finally:
            ...     lease.done()
        """
        return settle(self._lease(), callback)

    # -------------------------------------------------------------------------
    # OPERATION BODIES
    # -------------------------------------------------------------------------

    async def _get(self, key: str, options: OptionsArg) -> Result[Any, CacheStoreError]:
        prepared = self._prepare(options)
        if prepared.is_err():
            return prepared
        _, policy = prepared.value
        wire_key = self._codec.wire_key(key, policy)

        if self._coalescer is not None:
            fetched = await self._coalescer.fetch(wire_key)
        else:
            fetched = await self._execute("GET", lambda client: client.get(wire_key))
        if fetched.is_err():
            return fetched

        self._metrics.record_lookup(hit=fetched.value is not None)
        return self._codec.decode(key, fetched.value, policy)

    async def _set(self, key: str, value: Any, options: OptionsArg) -> Result[str, CacheStoreError]:
        try:
            cacheable = self.is_cacheable_value(value)
        except Exception as e:
            return Err(ValidationError.predicate_failed(key, e))
        if not cacheable:
            return Err(ValidationError.not_cacheable(key, value))

        prepared = self._prepare(options)
        if prepared.is_err():
            return prepared
        opts, policy = prepared.value

        encoded = self._codec.encode(key, value, policy)
        if encoded.is_err():
            return encoded
        payload = encoded.value
        wire_key = self._codec.wire_key(key, policy)

        ttl = opts.ttl if opts.ttl is not None else self._config.ttl
        if ttl:
            result = await self._execute(
                "SETEX", lambda client: client.setex(wire_key, ttl, payload)
            )
        else:
            result = await self._execute("SET", lambda client: client.set(wire_key, payload))
        return result.map(lambda _: "OK")

    async def _delete(self, key: Union[str, Sequence[str]]) -> Result[int, CacheStoreError]:
        if isinstance(key, (str, bytes)):
            keys = [key]
        else:
            keys = list(key)
            if not keys:
                return Ok(0)
        return await self._execute("DEL", lambda client: client.delete(*keys))

    async def _reset(self) -> Result[str, CacheStoreError]:
        result = await self._execute("FLUSHDB", lambda client: client.flushdb())
        return result.map(lambda _: "OK")

    async def _ttl(self, key: str) -> Result[int, CacheStoreError]:
        return await self._execute("TTL", lambda client: client.ttl(key))

    async def _keys(self, pattern: str, options: OptionsArg) -> Result[List[str], CacheStoreError]:
        prepared = self._prepare(options)
        if prepared.is_err():
            return prepared
        opts, _ = prepared.value
        scanner = KeyScanner(opts.scan_count)

        acquired = await self._pool.acquire()
        if acquired.is_err():
            return acquired
        conn = acquired.value

        lost = False
        try:
            collected = await scanner.collect(conn.client, pattern or "*")
            lost = collected.is_err() and collected.error.connection_lost
        finally:
            # one session for the whole scan, released exactly once
            await self._pool.release(conn, discard=lost)

        if lost:
            self._report_lost(collected.error.cause)
        else:
            logger.debug("Scan complete", pattern=pattern, steps=scanner.steps)
        return collected

    async def _lease(self) -> Result[ClientLease, PoolError]:
        acquired = await self._pool.acquire()
        return acquired.map(lambda conn: ClientLease(conn, self._pool))

    # -------------------------------------------------------------------------
    # INTERNALS
    # -------------------------------------------------------------------------

    def _prepare(
        self,
        options: OptionsArg,
    ) -> Result[Tuple[OperationOptions, Optional[CompressionPolicy]], ConfigurationError]:
        try:
            opts = OperationOptions.coerce(options)
            policy = resolve_compression(opts.compress, self._config.compress)
        except ConfigurationError as e:
            return Err(e)
        return Ok((opts, policy))

    async def _execute(
        self,
        command: str,
        call: Callable[[Redis], Awaitable[Any]],
    ) -> Result[Any, CacheStoreError]:
        """Run one command on a borrowed session; the session is back in the pool on return."""
        try:
            async with self._pool.connection() as conn:
                return Ok(await call(conn.client))
        except PoolError as e:
            return Err(e)
        except (RedisError, OSError) as e:
            return Err(CommandError.command_failed(
                command, e, connection_lost=is_connectivity_error(e),
            ))

    async def _observe(
        self,
        op: str,
        operation: Awaitable[Result[Any, CacheStoreError]],
    ) -> Result[Any, CacheStoreError]:
        start_ns = time.perf_counter_ns()
        result = await operation
        latency_ns = time.perf_counter_ns() - start_ns
        error = result.error if result.is_err() else None
        self._metrics.record(op, latency_ns, error)
        if error is not None:
            logger.debug("Operation failed", op=op, error=error)
        return result

    def _report_lost(self, cause: Optional[BaseException]) -> None:
        self._pool.errors.emit(
            PoolError.connection_failed(self._config.host, self._config.port, cause)
        )

    def __repr__(self) -> str:
        return (
            f"RedisCacheStore(host={self._config.host!r}, port={self._config.port}, "
            f"db={self._config.db}, pool={self._pool.size}/{self._config.pool_max})"
        )


# =============================================================================
# FACTORY
# =============================================================================

def create_store(
    config: Union[StoreConfig, Mapping[str, Any], None] = None,
    **options: Any,
) -> RedisCacheStore:
    """
    Build a store from a StoreConfig or from cache-manager style options.

    Example:
        >>> create_store(url="redis://cache.internal:6380/2", compress=True)
        >>> create_store({"host": "127.0.0.1", "max": 20, "auth_pass": "s3cret"})
    """
    pool_factory = options.pop("pool_factory", None)
    if isinstance(config, StoreConfig):
        if options:
            raise ConfigurationError.invalid(
                "options", sorted(options), "cannot be combined with a StoreConfig"
            )
        resolved = config
    else:
        resolved = StoreConfig.from_mapping({**(config or {}), **options})
    return RedisCacheStore(resolved, pool_factory=pool_factory)
