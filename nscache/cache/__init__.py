"""
Caching layer: configuration, store adapter, codecs and the cache manager.
"""

from .config import ValkeyConfig, DEFAULT_NAMESPACE
from .errors import (
    CacheError,
    ValidationError,
    StoreError,
    StoreConnectionError,
    CodecError,
)
from .utils import CacheKeyBuilder, StoreKey, KEY_SEPARATOR
from .serializers import ObjectCodec, collect_lenient
from .client import ValkeyClient
from .manager import CacheManager

__all__ = [
    # Configuration
    "ValkeyConfig",
    "DEFAULT_NAMESPACE",

    # Errors
    "CacheError",
    "ValidationError",
    "StoreError",
    "StoreConnectionError",
    "CodecError",

    # Keys and codecs
    "CacheKeyBuilder",
    "StoreKey",
    "KEY_SEPARATOR",
    "ObjectCodec",
    "collect_lenient",

    # Client and manager
    "ValkeyClient",
    "CacheManager",
]
