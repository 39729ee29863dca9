"""
Configuration tests: URL precedence, option aliases, validation.

Run: python -m pytest cachemesh/tests/test_config.py -v
"""

from __future__ import annotations

import pytest
from redis.asyncio.connection import Connection, SSLConnection

from cachemesh.core.errors import ConfigurationError, ErrorCode
from cachemesh.storage.codec import CompressionPolicy, CompressionType
from cachemesh.storage.config import OperationOptions, StoreConfig, resolve_config


# =============================================================================
# URL RESOLUTION
# =============================================================================

class TestResolveConfig:

    def test_url_overrides_conflicting_explicit_fields(self):
        config = StoreConfig(
            url="redis://:pw@cache.internal:1234/2?ttl=600",
            host="explicit-host",
            port=9999,
            db=7,
            ttl=5,
            password="explicit",
        )
        resolved = resolve_config(config)
        assert resolved.host == "cache.internal"
        assert resolved.port == 1234
        assert resolved.db == 2
        assert resolved.ttl == 600
        assert resolved.password == "pw"

    def test_resolution_returns_new_config(self):
        config = StoreConfig(url="redis://cache.internal:1234/2", host="explicit-host")
        resolved = resolve_config(config)
        assert resolved is not config
        assert config.host == "explicit-host"

    def test_url_without_ttl_keeps_explicit_ttl(self):
        resolved = resolve_config(StoreConfig(url="redis://cache.internal/1", ttl=30))
        assert resolved.ttl == 30
        assert resolved.port == 6379
        assert resolved.db == 1

    def test_negative_url_ttl_is_rejected(self):
        with pytest.raises(ConfigurationError) as info:
            resolve_config(StoreConfig(url="redis://cache.internal/0?ttl=-1"))
        assert info.value.context["field"] == "ttl"

    def test_unparsable_url_falls_back_to_explicit_fields(self):
        config = StoreConfig(url="not a url at all", host="explicit-host", port=7000, db=3)
        resolved = resolve_config(config)
        assert (resolved.host, resolved.port, resolved.db) == ("explicit-host", 7000, 3)

    def test_no_url_is_identity(self):
        config = StoreConfig(host="explicit-host")
        assert resolve_config(config) is config

    def test_rediss_enables_tls(self):
        assert resolve_config(StoreConfig(url="rediss://cache.internal:6380/0")).ssl is True

    def test_predicate_survives_resolution(self):
        predicate = lambda value: True
        resolved = resolve_config(StoreConfig(url="redis://h:1/0", is_cacheable_value=predicate))
        assert resolved.is_cacheable_value is predicate


# =============================================================================
# STORE CONFIG
# =============================================================================

class TestStoreConfig:

    def test_defaults(self):
        config = StoreConfig()
        assert (config.host, config.port, config.db) == ("127.0.0.1", 6379, 0)
        assert config.ttl is None
        assert config.coalesce_reads is False

    @pytest.mark.parametrize("field_name,value", [
        ("pool_max", 0),
        ("pool_min", -1),
        ("pool_min", 11),
        ("acquire_timeout_ms", 0),
        ("socket_timeout_ms", -5),
        ("is_cacheable_value", "not callable"),
        ("ttl", -5),
        ("ttl", "60"),
    ])
    def test_invalid_values_raise(self, field_name, value):
        with pytest.raises(ConfigurationError) as info:
            StoreConfig(**{field_name: value})
        assert info.value.code is ErrorCode.CONFIG_INVALID
        assert info.value.context["field"] == field_name

    def test_from_mapping_accepts_cache_manager_options(self):
        predicate = lambda value: value != "skip"
        config = StoreConfig.from_mapping({
            "host": "cache.internal",
            "auth_pass": "secret",
            "min": 1,
            "max": 20,
            "isCacheableValue": predicate,
            "store": "ignored",
        })
        assert config.password == "secret"
        assert (config.pool_min, config.pool_max) == (1, 20)
        assert config.is_cacheable_value is predicate

    def test_password_wins_over_auth_pass(self):
        config = StoreConfig.from_mapping({"auth_pass": "old", "password": "new"})
        assert config.password == "new"

    def test_explicit_none_password_keeps_auth_pass(self):
        config = StoreConfig.from_mapping({"auth_pass": "pw", "password": None})
        assert config.password == "pw"

    def test_pool_kwargs(self):
        kwargs = StoreConfig(
            host="h", port=1, db=2, password="pw", pool_max=4, acquire_timeout_ms=250,
        ).get_pool_kwargs()
        assert kwargs["max_connections"] == 4
        assert kwargs["timeout"] == 0.25
        assert kwargs["connection_class"] is Connection
        assert kwargs["decode_responses"] is False
        assert kwargs["socket_timeout"] == 5.0
        assert kwargs["password"] == "pw"
        assert "password" not in StoreConfig().get_pool_kwargs()

    def test_tls_uses_ssl_connections(self):
        assert StoreConfig(ssl=True).get_pool_kwargs()["connection_class"] is SSLConnection


# =============================================================================
# OPERATION OPTIONS
# =============================================================================

class TestOperationOptions:

    def test_bare_int_is_ttl(self):
        assert OperationOptions.coerce(30).ttl == 30

    def test_none_is_default(self):
        options = OperationOptions.coerce(None)
        assert options.ttl is None
        assert options.scan_count == 100

    def test_mapping_with_camel_case_scan_count(self):
        options = OperationOptions.coerce({"ttl": 0, "scanCount": 500, "compress": False})
        assert options.ttl == 0
        assert options.scan_count == 500
        assert options.compress is False

    def test_existing_instance_passes_through(self):
        options = OperationOptions(ttl=5)
        assert OperationOptions.coerce(options) is options

    @pytest.mark.parametrize("bad", [
        True,
        "60",
        -1,
        {"scan_count": 0},
        {"ttl": "60"},
        {"scanCount": "10"},
        {"ttl": 1.5},
    ])
    def test_rejects_bad_options(self, bad):
        with pytest.raises(ConfigurationError):
            OperationOptions.coerce(bad)

    def test_compress_setting_may_be_policy(self):
        policy = CompressionPolicy(CompressionType.GZIP, {"level": 9})
        assert OperationOptions(compress=policy).compress is policy
