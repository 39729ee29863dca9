"""
Store-Wide Constants

All magic numbers and configuration defaults centralized here.
"""

from typing import Final

# =============================================================================
# TIME UNITS
# =============================================================================
SECOND_MS: Final[int] = 1000
NS_PER_MS: Final[int] = 1_000_000

# =============================================================================
# SERVER DEFAULTS
# =============================================================================
DEFAULT_HOST: Final[str] = "127.0.0.1"
DEFAULT_PORT: Final[int] = 6379
DEFAULT_DB: Final[int] = 0

# Non-UTF-8 key bytes survive a str round trip (SCAN result back into DEL)
KEY_ENCODING: Final[str] = "utf-8"
KEY_ENCODING_ERRORS: Final[str] = "surrogateescape"

# TTL reply sentinels
TTL_NO_EXPIRY: Final[int] = -1
TTL_MISSING_KEY: Final[int] = -2

# =============================================================================
# POOL
# =============================================================================
POOL_MIN: Final[int] = 0
POOL_MAX: Final[int] = 10
ACQUIRE_TIMEOUT_MS: Final[int] = 10 * SECOND_MS
CONNECT_TIMEOUT_MS: Final[int] = 2 * SECOND_MS
SOCKET_TIMEOUT_MS: Final[int] = 5 * SECOND_MS

# =============================================================================
# SCAN
# =============================================================================
SCAN_INITIAL_CURSOR: Final[int] = 0
DEFAULT_SCAN_COUNT: Final[int] = 100
DEFAULT_SCAN_PATTERN: Final[str] = "*"

# =============================================================================
# CODEC
# =============================================================================
# Stored in place of a null value so it reads back distinct from a missing key
NULL_PLACEHOLDER: Final[bytes] = b"undefined"

LZ4_FAST_LEVEL: Final[int] = 0
GZIP_FAST_LEVEL: Final[int] = 1
