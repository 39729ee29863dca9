"""
Store Configuration Module
==========================

Type-safe, immutable configuration for the Redis cache store plus the
per-operation option struct.

Design Principles:
------------------
1. **Immutability**: configs are frozen; resolution returns a new instance
2. **Validation**: pool and timeout pre-conditions checked at construction
3. **URL precedence**: a parsable connection URL beats explicit fields
4. **Silent fallback**: an unparsable URL leaves explicit fields in effect

Example:
    >>> config = resolve_config(StoreConfig(
    ...     url="redis://:secret@cache.internal:6380/2?ttl=600",
    ...     host="ignored",
    ... ))
    >>> (config.host, config.port, config.db, config.ttl)
    ('cache.internal', 6380, 2, 600)
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union, TYPE_CHECKING

from redis.asyncio.connection import Connection, SSLConnection
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff
from redis.connection import parse_url

from cachemesh.core import constants as C
from cachemesh.core.errors import ConfigurationError
from cachemesh.observability.logging import StructuredLogger

if TYPE_CHECKING:
    from cachemesh.storage.codec import CompressionPolicy


logger = StructuredLogger("cachemesh.config")

# bool, CompressionPolicy or {"type": ..., "params": {...}}
CompressSetting = Union[bool, "CompressionPolicy", Mapping[str, Any], None]
CacheablePredicate = Callable[[Any], bool]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


# =============================================================================
# STORE CONFIGURATION
# =============================================================================

@dataclass(frozen=True, slots=True)
class StoreConfig:
    """
    Redis cache store configuration.

    Attributes:
        host: Redis server hostname or IP address.
        port: Redis server port.
        db: Logical database index selected on every borrowed session.
        ttl: Default time-to-live in seconds. None or 0 stores without expiry.
        password: Optional authentication credential.
        compress: Store-wide compression policy (see codec.resolve_compression).
        pool_min: Sessions opened eagerly by open().
        pool_max: Upper bound on live sessions. Must be > 0.
        acquire_timeout_ms: How long acquire() waits for a free session.
        connect_timeout_ms: TCP connect timeout per session.
        socket_timeout_ms: Socket read/write timeout per session.
        ssl: Enable TLS (set by rediss:// URLs).
        coalesce_reads: Merge same-tick get() calls into one MGET.
        is_cacheable_value: Predicate overriding the default policy.
        url: Connection string redis://[:password@]host[:port][/db][?ttl=N].
    """
    host: str = C.DEFAULT_HOST
    port: int = C.DEFAULT_PORT
    db: int = C.DEFAULT_DB
    ttl: Optional[int] = None
    password: Optional[str] = None
    compress: CompressSetting = None
    pool_min: int = C.POOL_MIN
    pool_max: int = C.POOL_MAX
    acquire_timeout_ms: int = C.ACQUIRE_TIMEOUT_MS
    connect_timeout_ms: int = C.CONNECT_TIMEOUT_MS
    socket_timeout_ms: int = C.SOCKET_TIMEOUT_MS
    ssl: bool = False
    coalesce_reads: bool = False
    is_cacheable_value: Optional[CacheablePredicate] = None
    url: Optional[str] = None

    def __post_init__(self) -> None:
        """
        Validate configuration invariants.

        Pre-conditions (enforced):
        - pool_max > 0
        - 0 <= pool_min <= pool_max
        - all timeouts > 0
        - ttl is None or an int >= 0

        Raises:
            ConfigurationError: If any invariant is violated.
        """
        if self.pool_max <= 0:
            raise ConfigurationError.invalid("pool_max", self.pool_max, "must be > 0")
        if not (0 <= self.pool_min <= self.pool_max):
            raise ConfigurationError.invalid(
                "pool_min", self.pool_min, f"must be in [0, {self.pool_max}]"
            )
        for name in ("acquire_timeout_ms", "connect_timeout_ms", "socket_timeout_ms"):
            if getattr(self, name) <= 0:
                raise ConfigurationError.invalid(name, getattr(self, name), "must be > 0")
        if self.ttl is not None and not (_is_int(self.ttl) and self.ttl >= 0):
            raise ConfigurationError.invalid("ttl", self.ttl, "must be an int >= 0")
        if self.is_cacheable_value is not None and not callable(self.is_cacheable_value):
            raise ConfigurationError.invalid(
                "is_cacheable_value", self.is_cacheable_value, "must be callable"
            )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> StoreConfig:
        """
        Build a configuration from caching-layer style keyword options.

        Accepts both the snake_case field names and the option names
        used by cache-manager stores (`auth_pass`, `min`, `max`,
        `isCacheableValue`). Unknown keys are ignored.
        """
        aliases = {
            "auth_pass": "password",
            "min": "pool_min",
            "max": "pool_max",
            "isCacheableValue": "is_cacheable_value",
            "coalesceReads": "coalesce_reads",
        }
        known = {f.name for f in dataclasses.fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in options.items():
            name = aliases.get(key, key)
            if name in known and value is not None:
                # explicit password wins over the deprecated auth_pass
                if key == "auth_pass" and options.get("password") is not None:
                    continue
                kwargs[name] = value
        return cls(**kwargs)

    def get_pool_kwargs(self) -> Dict[str, Any]:
        """
        Generate kwargs for redis-py's BlockingConnectionPool.

        Connections return raw bytes; the codec owns all decoding.
        Retries are disabled so every failure reaches the caller once.
        """
        kwargs: Dict[str, Any] = {
            "max_connections": self.pool_max,
            "timeout": self.acquire_timeout_ms / C.SECOND_MS,
            "connection_class": SSLConnection if self.ssl else Connection,
            "host": self.host,
            "port": self.port,
            "db": self.db,
            "socket_connect_timeout": self.connect_timeout_ms / C.SECOND_MS,
            "socket_timeout": self.socket_timeout_ms / C.SECOND_MS,
            "decode_responses": False,
            "encoding": C.KEY_ENCODING,
            "encoding_errors": C.KEY_ENCODING_ERRORS,
            "retry": Retry(NoBackoff(), 0),
        }
        if self.password:
            kwargs["password"] = self.password
        return kwargs


def resolve_config(config: StoreConfig) -> StoreConfig:
    """
    Apply the connection URL on top of explicit fields.

    Returns a new StoreConfig; the input is never modified. When the URL
    parses, host, port, db and password come from it (defaults where the
    URL omits them) and ttl comes from its `ttl` query parameter when
    present. When it does not parse, the explicit fields stay in effect.
    """
    if not isinstance(config.url, str):
        return config

    try:
        parsed = parse_url(config.url)
        ttl = int(parsed["ttl"]) if "ttl" in parsed else config.ttl
        overrides: Dict[str, Any] = {
            "host": parsed.get("host", C.DEFAULT_HOST),
            "port": int(parsed.get("port", C.DEFAULT_PORT)),
            "db": int(parsed.get("db", C.DEFAULT_DB)),
            "password": parsed.get("password"),
            "ttl": ttl,
        }
        if config.url.startswith("rediss://"):
            overrides["ssl"] = True
    except (ValueError, TypeError, KeyError) as e:
        logger.debug("Ignoring unparsable redis url", reason=str(e))
        return config

    return dataclasses.replace(config, **overrides)


# =============================================================================
# PER-OPERATION OPTIONS
# =============================================================================

@dataclass(frozen=True, slots=True)
class OperationOptions:
    """
    Options recognised by individual store operations.

    Attributes:
        ttl: Seconds to live for set(). None uses the store default,
            0 stores without expiry.
        compress: Per-call compression override; False always disables.
        scan_count: SCAN COUNT hint for keys().
    """
    ttl: Optional[int] = None
    compress: CompressSetting = None
    scan_count: int = C.DEFAULT_SCAN_COUNT

    def __post_init__(self) -> None:
        if self.ttl is not None and not (_is_int(self.ttl) and self.ttl >= 0):
            raise ConfigurationError.invalid("ttl", self.ttl, "must be an int >= 0")
        if not (_is_int(self.scan_count) and self.scan_count > 0):
            raise ConfigurationError.invalid("scan_count", self.scan_count, "must be an int > 0")

    @classmethod
    def coerce(
        cls,
        options: Union[OperationOptions, Mapping[str, Any], int, None],
    ) -> OperationOptions:
        """
        Normalise what callers pass as options.

        A bare int is a ttl; mappings may use `scanCount` or `scan_count`.
        """
        if options is None:
            return _DEFAULT_OPTIONS
        if isinstance(options, OperationOptions):
            return options
        if isinstance(options, bool):
            raise ConfigurationError.invalid("options", options, "unsupported options type")
        if isinstance(options, int):
            return cls(ttl=options)
        if isinstance(options, Mapping):
            scan_count = options.get("scan_count", options.get("scanCount"))
            return cls(
                ttl=options.get("ttl"),
                compress=options.get("compress"),
                scan_count=scan_count if scan_count is not None else C.DEFAULT_SCAN_COUNT,
            )
        raise ConfigurationError.invalid("options", options, "unsupported options type")


_DEFAULT_OPTIONS = OperationOptions()
