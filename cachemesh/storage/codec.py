"""
Value Codec: JSON Serialization with Optional Compression

Converts application values to the bytes stored in Redis and back.

Wire format:
    uncompressed:  compact JSON text (UTF-8)
    compressed:    compress(compact JSON text)
    stored null:   b"undefined" (compressed too when a policy is active)

Compression algorithms:
    LZ4   lz4.frame, params: compression_level (0 = fastest)
    GZIP  gzip member, params: level (1 = fastest, 9 = smallest)

The reader must use the same compression setting the writer used;
decoding a payload with a different setting fails with CodecError.
"""

from __future__ import annotations

import gzip
import json
import zlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

import lz4.frame

from cachemesh.core import constants as C
from cachemesh.core.errors import CodecError, ConfigurationError
from cachemesh.core.types import Result, Ok, Err, STORED_NULL


# =============================================================================
# COMPRESSION POLICY
# =============================================================================

class CompressionType(Enum):
    """Supported payload compression algorithms."""
    LZ4 = "lz4"
    GZIP = "gzip"


@dataclass(frozen=True, slots=True)
class CompressionPolicy:
    """
    Compression algorithm plus its tuning parameters.

    Attributes:
        type: Algorithm to apply.
        params: Algorithm knobs; `compression_level` for LZ4, `level` for GZIP.
    """
    type: CompressionType = CompressionType.LZ4
    params: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def fastest(cls) -> CompressionPolicy:
        """What `compress=True` expands to."""
        return cls(CompressionType.LZ4, {"compression_level": C.LZ4_FAST_LEVEL})

    @classmethod
    def from_mapping(cls, setting: Mapping[str, Any]) -> CompressionPolicy:
        """Parse the `{"type": "gzip", "params": {"level": 9}}` form."""
        type_ = CompressionType(str(setting.get("type", CompressionType.LZ4.value)).lower())
        return cls(type_, dict(setting.get("params") or {}))

    def compress(self, data: bytes) -> bytes:
        if self.type is CompressionType.GZIP:
            return gzip.compress(data, compresslevel=self.params.get("level", C.GZIP_FAST_LEVEL))
        return lz4.frame.compress(
            data,
            compression_level=self.params.get("compression_level", C.LZ4_FAST_LEVEL),
        )

    def decompress(self, data: bytes) -> bytes:
        if self.type is CompressionType.GZIP:
            return gzip.decompress(data)
        return lz4.frame.decompress(data)


def resolve_compression(
    per_call: Union[bool, CompressionPolicy, Mapping[str, Any], None],
    store_default: Union[bool, CompressionPolicy, Mapping[str, Any], None],
) -> Optional[CompressionPolicy]:
    """
    Decide the compression policy for one operation.

    The per-call setting wins whenever it is given; an explicit False
    disables compression even if the store enables it. None means "not
    specified" and defers to the store default.
    """
    setting = per_call if per_call is not None else store_default
    if setting is None or setting is False:
        return None
    if setting is True:
        return CompressionPolicy.fastest()
    if isinstance(setting, CompressionPolicy):
        return setting
    if isinstance(setting, Mapping):
        try:
            return CompressionPolicy.from_mapping(setting)
        except ValueError as e:
            raise ConfigurationError.invalid("compress", setting, str(e)) from e
    raise ConfigurationError.invalid("compress", setting, "expected bool, mapping or CompressionPolicy")


# =============================================================================
# VALUE CODEC
# =============================================================================

class ValueCodec:
    """
    Stateless encoder/decoder between values and Redis payloads.

    Example:
        >>> codec = ValueCodec()
        >>> policy = CompressionPolicy.fastest()
        >>> payload = codec.encode("k", {"a": 1}, policy).unwrap()
        >>> codec.decode("k", payload, policy).unwrap()
        {'a': 1}
    """

    __slots__ = ()

    def encode(
        self,
        key: str,
        value: Any,
        policy: Optional[CompressionPolicy],
    ) -> Result[bytes, CodecError]:
        try:
            if value is None:
                payload = C.NULL_PLACEHOLDER
            else:
                payload = json.dumps(value, separators=(",", ":")).encode("utf-8")
            if policy is not None:
                payload = policy.compress(payload)
        except (TypeError, ValueError, RuntimeError, OSError) as e:
            return Err(CodecError.encode_failed(key, e))
        return Ok(payload)

    def decode(
        self,
        key: str,
        payload: Optional[bytes],
        policy: Optional[CompressionPolicy],
    ) -> Result[Any, CodecError]:
        """
        Inverse of encode. A None payload (missing key) decodes to None.
        """
        if payload is None:
            return Ok(None)
        try:
            if policy is not None:
                payload = policy.decompress(payload)
            if payload == C.NULL_PLACEHOLDER:
                return Ok(STORED_NULL)
            return Ok(json.loads(payload))
        except (ValueError, RuntimeError, OSError, EOFError, zlib.error) as e:
            return Err(CodecError.decode_failed(key, e))

    @staticmethod
    def wire_key(key: str, policy: Optional[CompressionPolicy]) -> Union[str, bytes]:
        """Keys travel as raw bytes when the payload is binary."""
        if policy is not None:
            return key.encode(C.KEY_ENCODING, C.KEY_ENCODING_ERRORS)
        return key
