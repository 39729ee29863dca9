"""
Storage Module: Pooled Redis Cache Store
========================================

Provides:
- Store configuration and URL resolution
- Bounded connection pool with an error channel
- Value codec with optional LZ4/GZIP compression
- Deduplicating key scanner and optional read coalescing
- The RedisCacheStore façade and its factory

Example:
    >>> from cachemesh.storage import create_store
    >>> store = create_store(url="redis://127.0.0.1:6379/0?ttl=600")
"""

from __future__ import annotations

from cachemesh.storage.config import (
    StoreConfig,
    OperationOptions,
    resolve_config,
)
from cachemesh.storage.codec import (
    CompressionType,
    CompressionPolicy,
    ValueCodec,
    resolve_compression,
)
from cachemesh.storage.pool import (
    ConnectionPool,
    ErrorChannel,
    PooledConnection,
    PoolFactory,
    default_pool_factory,
)
from cachemesh.storage.scan import KeyScanner
from cachemesh.storage.coalescer import ReadCoalescer
from cachemesh.storage.completion import settle
from cachemesh.storage.protocols import CacheStoreProtocol
from cachemesh.storage.redis_store import (
    ClientLease,
    RedisCacheStore,
    StoreMetrics,
    create_store,
)

__all__ = [
    "StoreConfig",
    "OperationOptions",
    "resolve_config",
    "CompressionType",
    "CompressionPolicy",
    "ValueCodec",
    "resolve_compression",
    "ConnectionPool",
    "ErrorChannel",
    "PooledConnection",
    "PoolFactory",
    "default_pool_factory",
    "KeyScanner",
    "ReadCoalescer",
    "settle",
    "CacheStoreProtocol",
    "ClientLease",
    "RedisCacheStore",
    "StoreMetrics",
    "create_store",
]
