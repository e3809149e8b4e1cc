"""
Valkey store adapter.

This module provides a thin asynchronous façade over the two Valkey
connections a CacheManager owns: a command connection for every read and
write, and a dedicated subscription connection that only ever hands out
pub/sub objects. Valkey failures are translated into StoreError.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import valkey.asyncio as valkey
from valkey.exceptions import ValkeyError

from .config import ValkeyConfig
from .errors import StoreConnectionError, StoreError

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Store adapter over a command connection and a subscription connection.

    Both connections are built from the same ValkeyConfig unless injected,
    which is how tests supply in-memory fakes.
    """

    def __init__(
        self,
        config: Optional[ValkeyConfig] = None,
        client: Optional[valkey.Valkey] = None,
        subscriber: Optional[valkey.Valkey] = None,
    ):
        """
        Initialize the adapter.

        Args:
            config: ValkeyConfig instance, defaults to environment-based config
            client: Optional pre-built command connection
            subscriber: Optional pre-built subscription connection
        """
        self.config = config or ValkeyConfig.from_env()
        self._client = client
        self._subscriber = subscriber
        self._is_connected = False

        logger.info(f"Initializing Valkey store adapter: {self.config}")

    async def connect(self) -> None:
        """
        Create both connections and check the command connection with PING.

        Raises:
            StoreConnectionError: If the server cannot be reached
        """
        if self._is_connected:
            return

        kwargs = self.config.to_connection_kwargs()
        if self._client is None:
            self._client = valkey.Valkey(**kwargs)
        if self._subscriber is None:
            self._subscriber = valkey.Valkey(**kwargs)

        try:
            if not await self._client.ping():
                raise StoreConnectionError("Ping returned False")
        except (ValkeyError, OSError) as e:
            raise StoreConnectionError(f"Failed to connect to Valkey: {e}") from e

        self._is_connected = True
        logger.info("Successfully connected to Valkey server")

    async def disconnect(self) -> None:
        """Close the subscription connection, then the command connection."""
        for name, connection in (("subscriber", self._subscriber), ("client", self._client)):
            if connection is None:
                continue
            try:
                await connection.aclose()
            except ValkeyError as e:
                logger.warning(f"Error closing Valkey {name} connection: {e}")
        self._client = None
        self._subscriber = None
        self._is_connected = False
        logger.info("Disconnected from Valkey server")

    @property
    def is_connected(self) -> bool:
        """Check if the adapter is currently connected."""
        return self._is_connected and self._client is not None

    @property
    def client(self) -> valkey.Valkey:
        """
        Get the command connection.

        Raises:
            StoreConnectionError: If connect() has not been called
        """
        if self._client is None or not self._is_connected:
            raise StoreConnectionError("Client not connected. Call connect() first.")
        return self._client

    def pubsub(self):
        """Create a pub/sub object on the subscription connection."""
        if self._subscriber is None or not self._is_connected:
            raise StoreConnectionError("Client not connected. Call connect() first.")
        return self._subscriber.pubsub()

    @contextmanager
    def _store_errors(self, operation: str, key: Any = None):
        try:
            yield
        except ValkeyError as e:
            target = f" on {key}" if key is not None else ""
            logger.debug(f"Store {operation} failed{target}: {e}")
            raise StoreError(f"{operation} failed{target}: {e}") from e

    async def get(self, key: str) -> Any:
        with self._store_errors("GET", key):
            return await self.client.get(key)

    async def set(self, key: str, value: str) -> bool:
        with self._store_errors("SET", key):
            return bool(await self.client.set(key, value))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        with self._store_errors("DEL", keys[0]):
            return await self.client.delete(*keys)

    async def expire(self, key: str, seconds: int) -> bool:
        with self._store_errors("EXPIRE", key):
            return bool(await self.client.expire(key, seconds))

    async def keys(self, pattern: str) -> List[str]:
        with self._store_errors("KEYS", pattern):
            return list(await self.client.keys(pattern))

    async def hset(self, key: str, mapping: Dict[str, Any]) -> int:
        with self._store_errors("HSET", key):
            return await self.client.hset(key, mapping=mapping)

    async def hgetall(self, key: str) -> Dict[str, Any]:
        with self._store_errors("HGETALL", key):
            return await self.client.hgetall(key)

    async def smembers(self, key: str) -> set:
        with self._store_errors("SMEMBERS", key):
            return await self.client.smembers(key)

    async def publish(self, channel: str, message: str = "message") -> int:
        with self._store_errors("PUBLISH", channel):
            return await self.client.publish(channel, message)

    def pipeline(self, transaction: bool = True):
        """
        Start a command batch.

        With transaction=True the batch is sent as MULTI/EXEC and commits
        all-or-nothing in one round trip.
        """
        return self.client.pipeline(transaction=transaction)

    async def execute(self, pipe, operation: str, raise_on_error: bool = True) -> List[Any]:
        """
        Execute a batch built with pipeline().

        Args:
            pipe: Pipeline with queued commands
            operation: Name used in logs and error messages
            raise_on_error: When False, failed commands come back as
                exception instances in the result list

        Raises:
            StoreError: If the batch as a whole fails
        """
        with self._store_errors(operation):
            return await pipe.execute(raise_on_error=raise_on_error)
