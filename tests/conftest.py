"""
Shared fixtures: an in-memory stand-in for a Valkey server.

FakeValkey mimics the asynchronous command client, its pipelines and its
pub/sub objects closely enough for the cache to run without a live server.
Failures are injected through ``fail_commands`` and ``fail_exec``.
"""

import asyncio
import fnmatch

import pytest
import pytest_asyncio
from valkey.exceptions import ResponseError

from nscache import CacheManager, ValkeyClient, ValkeyConfig

WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class FakeValkeyServer:
    """Keyspace and channels shared by every FakeValkey connection."""

    def __init__(self):
        self.data = {}
        self.ttls = {}
        self.pubsubs = []
        self.published = []
        self.commands = []
        self.fail_commands = set()
        self.fail_exec = False

    def _typed(self, key, kind):
        value = self.data.get(key)
        if value is not None and not isinstance(value, kind):
            raise ResponseError(WRONGTYPE)
        return value

    def call(self, name, *args, **kwargs):
        self.commands.append((name, args))
        if name in self.fail_commands:
            raise ResponseError(f"ERR injected failure for {name}")
        return getattr(self, f"_cmd_{name}")(*args, **kwargs)

    def _cmd_ping(self):
        return True

    def _cmd_get(self, key):
        return self._typed(key, str)

    def _cmd_set(self, key, value):
        self.data[key] = str(value)
        return True

    def _cmd_delete(self, *keys):
        deleted = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                deleted += 1
        return deleted

    def _cmd_expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    def _cmd_keys(self, pattern):
        return sorted(key for key in self.data if fnmatch.fnmatchcase(key, pattern))

    def _cmd_hset(self, key, mapping=None):
        current = self._typed(key, dict)
        if current is None:
            current = self.data[key] = {}
        added = len(set(mapping) - set(current))
        for field, value in mapping.items():
            if not isinstance(value, (str, int, float, bytes)):
                raise ResponseError(f"Invalid input of type {type(value).__name__}")
            current[field] = str(value)
        return added

    def _cmd_hgetall(self, key):
        return dict(self._typed(key, dict) or {})

    def _cmd_sadd(self, key, *members):
        current = self._typed(key, set)
        if current is None:
            current = self.data[key] = set()
        before = len(current)
        current.update(str(member) for member in members)
        return len(current) - before

    def _cmd_smembers(self, key):
        return set(self._typed(key, set) or set())

    def _cmd_publish(self, channel, message):
        self.published.append(channel)
        receivers = 0
        for pubsub in self.pubsubs:
            receivers += pubsub.deliver(channel, message)
        return receivers


class FakePipeline:
    def __init__(self, server, transaction):
        self.server = server
        self.transaction = transaction
        self.queued = []

    def __getattr__(self, name):
        def queue(*args, **kwargs):
            self.queued.append((name, args, kwargs))
            return self
        return queue

    async def execute(self, raise_on_error=True):
        if self.transaction and self.fail_exec_requested():
            self.queued = []
            raise ResponseError("EXECABORT Transaction discarded because of previous errors.")
        results = []
        for name, args, kwargs in self.queued:
            try:
                results.append(self.server.call(name, *args, **kwargs))
            except ResponseError as e:
                results.append(e)
        self.queued = []
        if raise_on_error:
            for result in results:
                if isinstance(result, Exception):
                    raise result
        return results

    def fail_exec_requested(self):
        return self.server.fail_exec


class FakePubSub:
    def __init__(self, server):
        self.server = server
        self.channels = set()
        self.patterns = set()
        self.queue = asyncio.Queue()
        server.pubsubs.append(self)

    @property
    def subscribed(self):
        return bool(self.channels or self.patterns)

    def deliver(self, channel, message):
        delivered = 0
        if channel in self.channels:
            self.queue.put_nowait({"type": "message", "pattern": None, "channel": channel, "data": message})
            delivered += 1
        for pattern in self.patterns:
            if fnmatch.fnmatchcase(channel, pattern):
                self.queue.put_nowait({"type": "pmessage", "pattern": pattern, "channel": channel, "data": message})
                delivered += 1
        return delivered

    async def subscribe(self, *channels):
        if "subscribe" in self.server.fail_commands:
            raise ResponseError("ERR injected failure for subscribe")
        for channel in channels:
            self.channels.add(channel)
            self.queue.put_nowait({"type": "subscribe", "pattern": None, "channel": channel, "data": len(self.channels)})

    async def psubscribe(self, *patterns):
        if "psubscribe" in self.server.fail_commands:
            raise ResponseError("ERR injected failure for psubscribe")
        for pattern in patterns:
            self.patterns.add(pattern)
            self.queue.put_nowait({"type": "psubscribe", "pattern": None, "channel": pattern, "data": len(self.patterns)})

    async def unsubscribe(self, *channels):
        for channel in channels:
            self.channels.discard(channel)
            self.queue.put_nowait({"type": "unsubscribe", "pattern": None, "channel": channel, "data": len(self.channels)})

    async def punsubscribe(self, *patterns):
        for pattern in patterns:
            self.patterns.discard(pattern)
            self.queue.put_nowait({"type": "punsubscribe", "pattern": None, "channel": pattern, "data": len(self.patterns)})

    async def listen(self):
        while self.subscribed:
            yield await self.queue.get()

    async def aclose(self):
        self.channels.clear()
        self.patterns.clear()
        if self in self.server.pubsubs:
            self.server.pubsubs.remove(self)


class FakeValkey:
    """Asynchronous command client bound to a FakeValkeyServer."""

    def __init__(self, server):
        self.server = server
        self.closed = False

    def __getattr__(self, name):
        async def command(*args, **kwargs):
            return self.server.call(name, *args, **kwargs)
        return command

    def pipeline(self, transaction=True):
        return FakePipeline(self.server, transaction)

    def pubsub(self):
        return FakePubSub(self.server)

    async def aclose(self):
        self.closed = True


@pytest.fixture
def server():
    """Empty in-memory keyspace."""
    return FakeValkeyServer()


@pytest.fixture
def store(server):
    """Store adapter wired to the in-memory keyspace."""
    config = ValkeyConfig(namespace="test")
    return ValkeyClient(config, client=FakeValkey(server), subscriber=FakeValkey(server))


@pytest_asyncio.fixture
async def cache(store):
    """Initialized cache manager in namespace "test"."""
    manager = CacheManager(client=store)
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def eventually():
    """Bounded wait for an asynchronous condition."""

    async def wait(predicate, timeout=1.0, interval=0.01):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() >= deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return wait
