"""
Change notifications over Valkey pub/sub.

A NotificationRouter owns the pub/sub object of the subscription
connection. Published messages carry no data: they only signal that a key
changed, and the router re-reads the current value before calling the
listener, so a listener never sees a value older than the notification.

Exact-key subscriptions re-read through the value cache; pattern
subscriptions (``key:*``) re-read through the hash-object cache.
"""

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from valkey.exceptions import ValkeyError

from ..cache.errors import StoreError
from ..cache.utils import CacheKeyBuilder

logger = logging.getLogger(__name__)

Listener = Callable[[Any], Any]
Fetcher = Callable[[str], Awaitable[Any]]


def _to_str(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value or ""


class ListenerRegistry:
    """
    Per-cache registry of change listeners.

    One listener per key; registering again for the same key replaces the
    previous listener. Each registration may carry the coroutine that
    re-reads the changed key before the listener is called.
    """

    def __init__(self):
        self._listeners: Dict[str, Tuple[Listener, Optional[Fetcher]]] = {}

    def register(self, key: str, listener: Listener, fetch: Optional[Fetcher] = None) -> None:
        if key in self._listeners and self._listeners[key][0] is not listener:
            logger.debug(f"Replacing listener for {key}")
        self._listeners[key] = (listener, fetch)

    def get(self, key: str) -> Optional[Listener]:
        entry = self._listeners.get(key)
        return entry[0] if entry else None

    def fetcher(self, key: str) -> Optional[Fetcher]:
        entry = self._listeners.get(key)
        return entry[1] if entry else None

    def remove(self, key: str, listener: Listener) -> bool:
        """Remove the registration only if listener is still the one registered."""
        if self.get(key) is listener:
            del self._listeners[key]
            return True
        return False

    def clear(self) -> None:
        self._listeners.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._listeners

    def __len__(self) -> int:
        return len(self._listeners)


class Subscription:
    """
    Handle for one listener registration.

    Registrations live until the cache is closed. cancel() is available for
    callers that want to stop receiving notifications earlier.
    """

    def __init__(self, router: "NotificationRouter", key: str, listener: Listener, pattern: bool):
        self.router = router
        self.key = key
        self.listener = listener
        self.pattern = pattern
        self.cancelled = False

    async def cancel(self) -> bool:
        """
        Remove this registration and drop the channel subscription.

        Returns:
            bool: False if the registration had already been replaced or cancelled
        """
        if self.cancelled:
            return False
        self.cancelled = True
        return await self.router.unsubscribe(self.key, self.listener, pattern=self.pattern)

    def __repr__(self) -> str:
        kind = "pattern" if self.pattern else "key"
        return f"Subscription({kind}={self.key!r}, cancelled={self.cancelled})"


class NotificationRouter:
    """
    Dispatches channel events to registered listeners.

    Args:
        pubsub: Pub/sub object created on the subscription connection
        registry: Listener registry owned by the cache
        fetch_value: Coroutine re-reading a value-cache key
        fetch_hash: Coroutine re-reading a hash-object key
    """

    def __init__(self, pubsub, registry: ListenerRegistry, fetch_value: Fetcher, fetch_hash: Fetcher):
        self.pubsub = pubsub
        self.registry = registry
        self.fetch_value = fetch_value
        self.fetch_hash = fetch_hash
        self._listener_task: Optional[asyncio.Task] = None
        self._closed = False

    async def _channel_command(self, command, target: str) -> None:
        try:
            await command(target)
        except ValkeyError as e:
            raise StoreError(f"{command.__name__.upper()} failed on {target}: {e}") from e

    async def subscribe(self, key: str, listener: Listener, fetch: Optional[Fetcher] = None) -> Subscription:
        """
        Register listener for exact-key events on store key ``key``.

        fetch re-reads the key on every event and defaults to the value
        cache read; hash objects pass their own reader.
        """
        await self._channel_command(self.pubsub.subscribe, key)
        self.registry.register(key, listener, fetch or self.fetch_value)
        self._ensure_listening()
        logger.info(f"Subscribed to {key}")
        return Subscription(self, key, listener, pattern=False)

    async def psubscribe(self, key: str, listener: Listener, fetch: Optional[Fetcher] = None) -> Subscription:
        """Register listener for events on every key under store key ``key``."""
        pattern = CacheKeyBuilder.build_pattern(key)
        await self._channel_command(self.pubsub.psubscribe, pattern)
        self.registry.register(key, listener, fetch or self.fetch_hash)
        self._ensure_listening()
        logger.info(f"Subscribed to pattern {pattern}")
        return Subscription(self, key, listener, pattern=True)

    async def unsubscribe(self, key: str, listener: Listener, pattern: bool = False) -> bool:
        if not self.registry.remove(key, listener):
            return False
        if pattern:
            await self._channel_command(self.pubsub.punsubscribe, CacheKeyBuilder.build_pattern(key))
        else:
            await self._channel_command(self.pubsub.unsubscribe, key)
        logger.info(f"Unsubscribed from {key}")
        return True

    def _ensure_listening(self) -> None:
        if self._closed:
            return
        if self._listener_task is None or self._listener_task.done():
            self._listener_task = asyncio.create_task(self._listen())

    async def _listen(self) -> None:
        """Background task consuming the subscription connection."""
        try:
            async for message in self.pubsub.listen():
                if self._closed:
                    break
                await self.dispatch(message)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Notification listener stopped")

    async def dispatch(self, message: Dict[str, Any]) -> None:
        """
        Handle one raw pub/sub message.

        Subscribe confirmations are ignored. Any failure while re-reading or
        inside the listener is logged and ends this dispatch only.
        """
        kind = message.get("type")
        channel = _to_str(message.get("channel"))
        if kind == "message":
            listener_key, default_fetch = channel, self.fetch_value
        elif kind == "pmessage":
            listener_key = CacheKeyBuilder.parent_key(_to_str(message.get("pattern")))
            default_fetch = self.fetch_hash
        else:
            return

        listener = self.registry.get(listener_key)
        if listener is None:
            logger.debug(f"No listener for {listener_key}")
            return
        fetch = self.registry.fetcher(listener_key) or default_fetch

        try:
            data = await fetch(channel)
            result = listener(data)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Listener for {listener_key} failed on {channel}")

    async def close(self) -> None:
        """Stop the background task and release the pub/sub object."""
        self._closed = True
        if self._listener_task is not None:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        await self.pubsub.aclose()
        self.registry.clear()
        logger.info("Notification router closed")
