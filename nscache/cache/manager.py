"""
Namespaced cache manager.

This module provides the façade callers use: a value cache storing whole
JSON blobs, a hash-object cache storing one JSON string per field, bulk
operations batched into single round trips, secondary indexes, and change
notifications delivered through a dedicated subscription connection.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Set

from .client import ValkeyClient
from .config import ValkeyConfig, check_namespace
from .errors import StoreError, ValidationError, require_sequence
from .serializers import ObjectCodec, collect_lenient
from .utils import CacheKeyBuilder, StoreKey
from ..services.index_engine import IndexEngine
from ..services.notifications import Listener, ListenerRegistry, NotificationRouter, Subscription

logger = logging.getLogger(__name__)


class CacheManager:
    """
    Namespaced cache over Valkey with secondary indexes and change feeds.

    Features:
    - Every logical key is resolved once into a namespaced StoreKey
    - Whole-value (JSON blob) and field-wise (hash) storage
    - Multi-key writes committed as one MULTI/EXEC batch
    - Lenient bulk reads: one undecodable member never fails the call
    - Exact-key and pattern change listeners that always receive a fresh re-read

    Example::

        async with CacheManager(namespace="app") as cache:
            await cache.set("profile", {"name": "A"})
            profile = await cache.get("profile")
    """

    def __init__(
        self,
        config: Optional[ValkeyConfig] = None,
        namespace: Optional[str] = None,
        client: Optional[ValkeyClient] = None,
    ):
        """
        Initialize cache manager.

        Args:
            config: ValkeyConfig for both connections, defaults to environment
            namespace: Overrides config.namespace
            client: Pre-built store adapter (for tests or custom connections)
        """
        self.config = config or (client.config if client else ValkeyConfig.from_env())
        self.namespace = check_namespace(namespace or self.config.namespace)
        self.store = client or ValkeyClient(self.config)
        self.listeners = ListenerRegistry()
        self.indexes = IndexEngine(self.store, self.namespace)
        self.router: Optional[NotificationRouter] = None

        logger.info(f"CacheManager initialized with namespace: {self.namespace}")

    async def initialize(self) -> None:
        """Connect both connections and attach the notification router."""
        await self.store.connect()
        if self.router is None:
            self.router = NotificationRouter(
                self.store.pubsub(),
                self.listeners,
                fetch_value=self.get,
                fetch_hash=self.hm_get_one,
            )
        logger.info("CacheManager successfully connected to Valkey")

    connect = initialize

    def _key(self, key: str) -> StoreKey:
        return CacheKeyBuilder.resolve(self.namespace, key)

    def _router(self) -> NotificationRouter:
        if self.router is None:
            raise StoreError("CacheManager not initialized. Call initialize() first.")
        return self.router

    async def _publish(self, key: StoreKey) -> None:
        """Signal a change on key. Delivery is best effort."""
        try:
            await self.store.publish(key)
        except StoreError as e:
            logger.warning(f"Change notification for {key} not published: {e}")

    # Value cache

    async def set(self, key: str, value: Any, listener: Optional[Listener] = None) -> bool:
        """
        Store a value as one JSON blob.

        Args:
            key: Logical key
            value: JSON-serializable value
            listener: Optional callable registered for changes of this key

        Returns:
            True once the value is written

        Raises:
            CodecError: If value cannot be encoded
            StoreError: If the write fails, or the listener cannot be subscribed
                (nothing is written then)
        """
        store_key = self._key(key)
        payload = ObjectCodec.encode_value(value)
        if listener is not None:
            await self._router().subscribe(store_key, listener)
        await self.store.set(store_key, payload)
        logger.debug(f"Cache SET: {store_key}")
        await self._publish(store_key)
        return True

    async def get(self, key: str) -> Any:
        """
        Read and decode a value. A missing key returns None.

        Raises:
            CodecError: If the stored blob is not valid JSON
        """
        store_key = self._key(key)
        value = ObjectCodec.decode_value(await self.store.get(store_key))
        logger.debug(f"Cache {'HIT' if value is not None else 'MISS'}: {store_key}")
        return value

    async def _get_many(self, keys: List[str], operation: str) -> List[Any]:
        if not keys:
            return []
        pipe = self.store.pipeline(transaction=True)
        for member in keys:
            pipe.get(member)
        replies = await self.store.execute(pipe, operation, raise_on_error=False)
        return collect_lenient(replies, ObjectCodec.decode_value, label=f"{operation} member")

    async def get_all(self, key: str) -> List[Any]:
        """
        Read every value stored under ``key:*`` in one batch.

        Members that fail to decode, or vanish between listing and reading,
        are dropped from the result.
        """
        store_key = self._key(key)
        members = await self.store.keys(CacheKeyBuilder.build_pattern(store_key))
        return await self._get_many(members, f"get_all({store_key})")

    async def get_by_ids(self, key: str, ids: Sequence[Any]) -> List[Any]:
        """
        Read ``key:id`` for every id in one batch, in the order of ids.

        Missing or undecodable members are dropped.
        """
        require_sequence(ids, "ids")
        store_key = self._key(key)
        members = [CacheKeyBuilder.child(store_key, identifier) for identifier in ids]
        return await self._get_many(members, f"get_by_ids({store_key})")

    async def set_all(self, key: str, items: Sequence[Any], identifier_fn: Callable[[Any], Any]) -> bool:
        """
        Store every item at ``key:<id>`` and record the member ids in a hash at ``key``.

        All writes are committed as one MULTI/EXEC batch. A single change
        notification is published on ``key`` afterwards.

        Raises:
            ValidationError: If items is not a list or tuple
            CodecError: If an item cannot be encoded (nothing is written)
            StoreError: If the batch fails (nothing is published)
        """
        require_sequence(items, "items")
        store_key = self._key(key)

        pipe = self.store.pipeline(transaction=True)
        member_ids: Dict[str, str] = {}
        for item in items:
            identifier = CacheKeyBuilder.segment(identifier_fn(item))
            pipe.set(CacheKeyBuilder.child(store_key, identifier), ObjectCodec.encode_value(item))
            member_ids[identifier] = identifier
        if member_ids:
            pipe.hset(store_key, mapping=member_ids)
        await self.store.execute(pipe, f"set_all({store_key})")

        logger.debug(f"Cache SET ALL: {store_key} ({len(member_ids)} items)")
        await self._publish(store_key)
        return True

    # Hash-object cache

    async def hm_set_one(self, key: str, obj: Any, listener: Optional[Listener] = None) -> bool:
        """
        Store a mapping as a hash, one JSON string per field.

        Fields are merged into any hash already stored at the key. A listener
        passed here receives the re-read hash object on every write.

        Raises:
            TypeError: If obj is not a mapping or pydantic model
            ValidationError: If obj has no fields
            StoreError: If the write fails
        """
        store_key = self._key(key)
        fields = ObjectCodec.encode_fields(obj)
        if not fields:
            raise ValidationError(f"Cannot store an object without fields at {store_key}")
        if listener is not None:
            await self._router().subscribe(store_key, listener, fetch=self.hm_get_one)
        await self.store.hset(store_key, fields)
        logger.debug(f"Cache HSET: {store_key}")
        await self._publish(store_key)
        return True

    async def hm_set_all(self, key: str, items: Sequence[Any], identifier_fn: Callable[[Any], Any]) -> bool:
        """Hash-object counterpart of set_all: every item becomes a hash at ``key:<id>``."""
        require_sequence(items, "items")
        store_key = self._key(key)

        pipe = self.store.pipeline(transaction=True)
        member_ids: Dict[str, str] = {}
        for item in items:
            identifier = CacheKeyBuilder.segment(identifier_fn(item))
            fields = ObjectCodec.encode_fields(item)
            if not fields:
                raise ValidationError(f"Item {identifier} under {store_key} has no fields")
            pipe.hset(CacheKeyBuilder.child(store_key, identifier), mapping=fields)
            member_ids[identifier] = identifier
        if member_ids:
            pipe.hset(store_key, mapping=member_ids)
        await self.store.execute(pipe, f"hm_set_all({store_key})")

        logger.debug(f"Cache HSET ALL: {store_key} ({len(member_ids)} items)")
        await self._publish(store_key)
        return True

    async def hm_get_one(self, key: str) -> Dict[str, Any]:
        """
        Read a hash and decode every field.

        Raises:
            TypeError: If no hash is stored at the key
        """
        store_key = self._key(key)
        raw = await self.store.hgetall(store_key)
        if not raw:
            raise TypeError(f"No hash object stored at {store_key}")
        return ObjectCodec.decode_fields(raw)

    @staticmethod
    def _decode_hash(raw: Any) -> Optional[Dict[str, Any]]:
        return ObjectCodec.decode_fields(raw) if raw else None

    async def _hm_get_many(self, keys: List[str], operation: str) -> List[Dict[str, Any]]:
        if not keys:
            return []
        pipe = self.store.pipeline(transaction=True)
        for member in keys:
            pipe.hgetall(member)
        replies = await self.store.execute(pipe, operation, raise_on_error=False)
        return collect_lenient(replies, self._decode_hash, label=f"{operation} member")

    async def hm_get_by_ids(self, key: str, ids: Sequence[Any]) -> List[Dict[str, Any]]:
        """Read the hash at ``key:id`` for every id, in the order of ids."""
        require_sequence(ids, "ids")
        store_key = self._key(key)
        members = [CacheKeyBuilder.child(store_key, identifier) for identifier in ids]
        return await self._hm_get_many(members, f"hm_get_by_ids({store_key})")

    async def hm_get_all(self, key: str) -> List[Dict[str, Any]]:
        """Read every hash stored under ``key:*``."""
        store_key = self._key(key)
        members = await self.store.keys(CacheKeyBuilder.build_pattern(store_key))
        return await self._hm_get_many(members, f"hm_get_all({store_key})")

    # Secondary indexes

    async def index_by_fields(
        self,
        index_key: str,
        items: Sequence[Any],
        field_names: Sequence[str],
        identifier_fn: Callable[[Any], Any],
    ) -> bool:
        """Rebuild index ``index_key`` over field_names. See IndexEngine.index_by_fields."""
        return await self.indexes.index_by_fields(index_key, items, field_names, identifier_fn)

    async def get_index_by_fields(self, index_key: str, field_names: Sequence[str]) -> Dict[str, Set[str]]:
        return await self.indexes.get_index_by_fields(index_key, field_names)

    async def get_all_indexes(self, index_key: Optional[str] = None) -> Dict[str, Set[str]]:
        return await self.indexes.get_all_indexes(index_key)

    async def drop_index(self, index_key: str) -> int:
        return await self.indexes.drop_index(index_key)

    # Change notifications

    async def key_change(self, key: str, listener: Listener) -> Subscription:
        """
        Call listener with the current value of key whenever it is written.

        Replaces any listener already registered for the key.
        """
        return await self._router().subscribe(self._key(key), listener)

    async def keys_change(self, key: str, listener: Listener) -> Subscription:
        """
        Call listener with the current hash object whenever any ``key:<id>`` is written.

        Pattern notifications re-read through hm_get_one, so they are meant
        for keys written with hm_set_one.
        """
        return await self._router().psubscribe(self._key(key), listener)

    # Lifecycle

    async def expire(self, key: str, seconds: int) -> bool:
        """Set a time-to-live on key. Returns False if the key does not exist."""
        return await self.store.expire(self._key(key), seconds)

    async def delete(self, key: str) -> int:
        """Delete one key."""
        return await self.store.delete(self._key(key))

    async def clear(self, key: Optional[str] = None) -> int:
        """
        Delete key and everything under ``key:*``, or the whole namespace.

        Returns:
            int: Number of keys deleted
        """
        if key is None:
            targets = await self.store.keys(CacheKeyBuilder.build_pattern(self.namespace))
        else:
            store_key = self._key(key)
            targets = [store_key, *await self.store.keys(CacheKeyBuilder.build_pattern(store_key))]
        deleted = await self.store.delete(*targets)
        if deleted:
            logger.info(f"Cache CLEAR: {key or self.namespace} ({deleted} keys)")
        return deleted

    async def close(self) -> None:
        """Stop notifications and close both connections."""
        if self.router is not None:
            await self.router.close()
            self.router = None
        await self.store.disconnect()
        logger.info("CacheManager closed")

    quit = close

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
