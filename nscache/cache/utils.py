"""
Cache key utilities for namespaced key generation.

Every key sent to the store is a StoreKey: the namespace followed by
colon-separated segments. Logical keys supplied by callers are resolved
once, at the CacheManager boundary, and StoreKey values flow through the
rest of the package without being inspected again.
"""

import json
from typing import Any, Optional

KEY_SEPARATOR = ":"
INDEXES_SEGMENT = "indexes"


class StoreKey(str):
    """A fully namespaced key, exactly as sent to the store."""

    __slots__ = ()


def _format_part(part: Any) -> str:
    """Render one key segment; non-string values use their JSON text."""
    if isinstance(part, str):
        return part
    return json.dumps(part, default=str)


class CacheKeyBuilder:
    """
    Builder class for namespaced cache keys.

    Example:
        CacheKeyBuilder.resolve("app", "users:42")      # "app:users:42"
        CacheKeyBuilder.resolve("app", "app:users:42")  # "app:users:42"
        CacheKeyBuilder.join("app", "indexes", "people", "age", 30)
        # "app:indexes:people:age:30"
    """

    @staticmethod
    def segment(part: Any) -> str:
        """Render one key segment or member id; non-strings use their JSON text."""
        return _format_part(part)

    @staticmethod
    def is_namespaced(namespace: str, key: str) -> bool:
        """Return True if the first segment of key equals namespace."""
        return key.split(KEY_SEPARATOR, 1)[0] == namespace

    @staticmethod
    def resolve(namespace: str, key: str) -> StoreKey:
        """
        Turn a logical key into a store key.

        Args:
            namespace: Namespace of the owning cache
            key: Logical key, bare or already namespaced

        Returns:
            StoreKey: key unchanged if already namespaced, otherwise prefixed
        """
        if isinstance(key, StoreKey):
            return key
        key = _format_part(key)
        if CacheKeyBuilder.is_namespaced(namespace, key):
            return StoreKey(key)
        return StoreKey(f"{namespace}{KEY_SEPARATOR}{key}")

    @staticmethod
    def join(namespace: str, *parts: Any) -> StoreKey:
        """Prefix namespace and join every part with the key separator."""
        return StoreKey(KEY_SEPARATOR.join([namespace, *(_format_part(p) for p in parts)]))

    @staticmethod
    def child(key: StoreKey, *parts: Any) -> StoreKey:
        """Append segments to an already resolved store key."""
        return StoreKey(KEY_SEPARATOR.join([key, *(_format_part(p) for p in parts)]))

    @staticmethod
    def build_pattern(key: str, *parts: str) -> str:
        """
        Build a glob pattern for KEYS/PSUBSCRIBE.

        Example:
            build_pattern("app:users")  # "app:users:*"
        """
        return KEY_SEPARATOR.join([key, *(parts or ("*",))])

    @staticmethod
    def parent_key(key: str) -> str:
        """Strip the last segment, e.g. "app:users:*" -> "app:users"."""
        return key.rsplit(KEY_SEPARATOR, 1)[0]

    @staticmethod
    def relative_key(key: str, prefix: str) -> str:
        """Return key with "prefix:" removed, or key unchanged if it lacks the prefix."""
        head = f"{prefix}{KEY_SEPARATOR}"
        return key[len(head):] if key.startswith(head) else key

    @staticmethod
    def index_prefix(namespace: str, index_key: Optional[str] = None) -> StoreKey:
        """Store key under which every entry of an index (or of all indexes) lives."""
        if index_key:
            return CacheKeyBuilder.join(namespace, INDEXES_SEGMENT, index_key)
        return CacheKeyBuilder.join(namespace, INDEXES_SEGMENT)
