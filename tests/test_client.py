"""
Tests for the Valkey store adapter.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from valkey.exceptions import ConnectionError

from nscache.cache.client import ValkeyClient
from nscache.cache.config import ValkeyConfig
from nscache.cache.errors import StoreConnectionError, StoreError


class TestValkeyClient:
    """Test connection handling and error translation."""

    @pytest.mark.asyncio
    async def test_connect_pings_command_connection(self, store, server):
        """Test connect() checks the command connection."""
        await store.connect()
        assert store.is_connected
        assert ("ping", ()) in server.commands

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test an unreachable server raises StoreConnectionError."""
        mock_client = Mock()
        mock_client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        store = ValkeyClient(ValkeyConfig(), client=mock_client, subscriber=Mock())

        with pytest.raises(StoreConnectionError):
            await store.connect()
        assert not store.is_connected

    def test_use_before_connect(self, store):
        """Test commands and pub/sub require connect()."""
        with pytest.raises(StoreConnectionError):
            store.client
        with pytest.raises(StoreConnectionError):
            store.pubsub()

    @pytest.mark.asyncio
    async def test_store_errors_are_translated(self, store, server):
        """Test valkey errors surface as StoreError with the cause kept."""
        await store.connect()
        server.fail_commands.add("get")

        with pytest.raises(StoreError) as excinfo:
            await store.get("test:key")
        assert "GET" in str(excinfo.value)
        assert excinfo.value.__cause__ is not None

    @pytest.mark.asyncio
    async def test_failed_batch_raises(self, store, server):
        """Test a failed MULTI/EXEC batch raises StoreError."""
        await store.connect()
        server.fail_exec = True

        pipe = store.pipeline()
        pipe.set("test:a", "1")
        with pytest.raises(StoreError):
            await store.execute(pipe, "batch")
        assert "test:a" not in server.data

    @pytest.mark.asyncio
    async def test_tolerant_batch_returns_errors(self, store, server):
        """Test raise_on_error=False returns per-command errors in place."""
        await store.connect()
        server.data["test:hash"] = {"a": "1"}

        pipe = store.pipeline()
        pipe.get("test:hash")
        pipe.get("test:missing")
        results = await store.execute(pipe, "batch", raise_on_error=False)
        assert isinstance(results[0], Exception)
        assert results[1] is None

    @pytest.mark.asyncio
    async def test_delete_without_keys(self, store, server):
        """Test deleting nothing issues no command."""
        await store.connect()
        count = len(server.commands)
        assert await store.delete() == 0
        assert len(server.commands) == count

    @pytest.mark.asyncio
    async def test_disconnect_closes_both_connections(self, store):
        """Test both connections are closed."""
        await store.connect()
        client, subscriber = store._client, store._subscriber
        await store.disconnect()
        assert client.closed and subscriber.closed
        assert not store.is_connected
