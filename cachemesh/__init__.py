"""
cachemesh: Redis Backing Store for Generic Caching Layers

A pooled Redis cache-store adapter:
- Bounded pool of persistent sessions with graceful degradation
- JSON codec with optional LZ4/GZIP compression
- get/set/del/reset/ttl/keys with awaitable or callback completion
- Connection URL support: redis://[:password@]host[:port][/db][?ttl=N]

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from cachemesh.core.types import (
    Result,
    Ok,
    Err,
    STORED_NULL,
)
from cachemesh.core.errors import (
    ErrorCode,
    CacheStoreError,
    ConfigurationError,
    PoolError,
    ValidationError,
    CodecError,
    CommandError,
)
from cachemesh.storage import (
    StoreConfig,
    OperationOptions,
    CompressionPolicy,
    CompressionType,
    CacheStoreProtocol,
    ClientLease,
    RedisCacheStore,
    StoreMetrics,
    create_store,
)
from cachemesh.observability import setup_logging

__all__ = [
    "__version__",
    "Result",
    "Ok",
    "Err",
    "STORED_NULL",
    "ErrorCode",
    "CacheStoreError",
    "ConfigurationError",
    "PoolError",
    "ValidationError",
    "CodecError",
    "CommandError",
    "StoreConfig",
    "OperationOptions",
    "CompressionPolicy",
    "CompressionType",
    "CacheStoreProtocol",
    "ClientLease",
    "RedisCacheStore",
    "StoreMetrics",
    "create_store",
    "setup_logging",
]
