"""
nscache: namespaced caching and secondary indexing on Valkey.

Store objects under logical keys, read them one at a time or in bulk,
build inverted indexes over object fields, and get notified when a key or
a family of keys changes.
"""

from .cache import (
    CacheManager,
    ValkeyConfig,
    ValkeyClient,
    ObjectCodec,
    CacheKeyBuilder,
    StoreKey,
    CacheError,
    ValidationError,
    StoreError,
    StoreConnectionError,
    CodecError,
)
from .services import IndexEngine, NotificationRouter, ListenerRegistry, Subscription

__version__ = "0.1.0"

__all__ = [
    "CacheManager",
    "ValkeyConfig",
    "ValkeyClient",
    "ObjectCodec",
    "CacheKeyBuilder",
    "StoreKey",
    "CacheError",
    "ValidationError",
    "StoreError",
    "StoreConnectionError",
    "CodecError",
    "IndexEngine",
    "NotificationRouter",
    "ListenerRegistry",
    "Subscription",
]
