"""
Cache Store Protocol: Structural Contract for Caching Layers

A generic caching layer (get/set/del/wrap, multi-tier) accepts any
object satisfying CacheStoreProtocol. The Redis store is one such
implementation; an in-process store would be another.

Design Principles:
    - Protocol classes for structural subtyping (no inheritance needed)
    - Every operation returns an awaitable and accepts `callback=`
    - Missing keys read back as None, never as an error
"""

from __future__ import annotations

from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

Callback = Callable[[Optional[BaseException], Any], Any]


@runtime_checkable
class CacheStoreProtocol(Protocol):
    """Operations a caching layer calls on its backing store."""

    name: str

    def get(
        self, key: str, options: Any = None, *, callback: Optional[Callback] = None,
    ) -> Awaitable[Any]:
        """Value stored under key, or None."""
        ...

    def set(
        self, key: str, value: Any, options: Any = None, *, callback: Optional[Callback] = None,
    ) -> Awaitable[Any]:
        ...

    def delete(
        self,
        key: Union[str, Sequence[str]],
        options: Any = None,
        *,
        callback: Optional[Callback] = None,
    ) -> Awaitable[int]:
        ...

    def reset(self, options: Any = None, *, callback: Optional[Callback] = None) -> Awaitable[Any]:
        ...

    def ttl(self, key: str, *, callback: Optional[Callback] = None) -> Awaitable[int]:
        ...

    def keys(
        self, pattern: str = "*", options: Any = None, *, callback: Optional[Callback] = None,
    ) -> Awaitable[List[str]]:
        ...

    def is_cacheable_value(self, value: Any) -> bool:
        ...
