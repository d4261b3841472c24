"""Tests for the shared progress store backends."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from clipstack.config import Settings
from clipstack.exceptions import TransientInfraError
from clipstack.services.progress_store import (
    MemoryProgressStore,
    RedisProgressStore,
    create_progress_store,
    job_key,
    lease_key,
)


class TestKeys:
    def test_key_namespaces(self):
        assert job_key("abc") == "job:abc"
        assert lease_key("abc") == "lease:abc"


class TestMemoryProgressStore:
    """Tests for the in-process store."""

    @pytest.mark.asyncio
    async def test_set_and_get(self, memory_store):
        await memory_store.set("job:1", {"status": "running"}, 300)

        assert await memory_store.get("job:1") == {"status": "running"}

    @pytest.mark.asyncio
    async def test_missing_key(self, memory_store):
        assert await memory_store.get("job:none") is None

    @pytest.mark.asyncio
    async def test_value_expires(self, memory_store, clock):
        await memory_store.set("job:1", {"status": "running"}, 300)
        clock.advance(299)
        assert await memory_store.get("job:1") is not None

        clock.advance(1)
        assert await memory_store.get("job:1") is None

    @pytest.mark.asyncio
    async def test_returned_value_is_a_copy(self, memory_store):
        await memory_store.set("job:1", {"status": "running"}, 300)
        value = await memory_store.get("job:1")
        value["status"] = "tampered"

        assert (await memory_store.get("job:1"))["status"] == "running"

    @pytest.mark.asyncio
    async def test_acquire_is_exclusive_until_release(self, memory_store):
        assert await memory_store.acquire("lease:1", {"workerId": "a"}, 60) is True
        assert await memory_store.acquire("lease:1", {"workerId": "b"}, 60) is False

        await memory_store.release("lease:1")
        assert await memory_store.acquire("lease:1", {"workerId": "b"}, 60) is True

    @pytest.mark.asyncio
    async def test_acquire_after_expiry(self, memory_store, clock):
        await memory_store.acquire("lease:1", {"workerId": "a"}, 60)
        clock.advance(61)

        assert await memory_store.acquire("lease:1", {"workerId": "b"}, 60) is True

    @pytest.mark.asyncio
    async def test_extend_keeps_lease_alive(self, memory_store, clock):
        await memory_store.acquire("lease:1", {"workerId": "a"}, 60)
        clock.advance(50)

        assert await memory_store.extend("lease:1", 60) is True
        clock.advance(50)
        assert await memory_store.acquire("lease:1", {"workerId": "b"}, 60) is False

    @pytest.mark.asyncio
    async def test_extend_expired_key(self, memory_store, clock):
        await memory_store.acquire("lease:1", {"workerId": "a"}, 60)
        clock.advance(61)

        assert await memory_store.extend("lease:1", 60) is False
        assert await memory_store.get("lease:1") is None


class TestRedisProgressStore:
    """Tests for the Redis store against a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.get = AsyncMock(return_value=None)
        client.set = AsyncMock(return_value=True)
        client.delete = AsyncMock(return_value=1)
        client.expire = AsyncMock(return_value=True)
        client.aclose = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_set_writes_json_with_ttl(self, client):
        store = RedisProgressStore(client)
        await store.set("job:1", {"status": "done", "code": 0}, 600)

        client.set.assert_awaited_once_with("job:1", json.dumps({"status": "done", "code": 0}), ex=600)

    @pytest.mark.asyncio
    async def test_get_decodes_json(self, client):
        client.get.return_value = '{"status": "running", "time": "00:00:01.00"}'
        store = RedisProgressStore(client)

        assert await store.get("job:1") == {"status": "running", "time": "00:00:01.00"}

    @pytest.mark.asyncio
    async def test_malformed_value_ignored(self, client):
        client.get.return_value = "not json"
        store = RedisProgressStore(client)

        assert await store.get("job:1") is None

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx(self, client):
        client.set.return_value = None
        store = RedisProgressStore(client)

        assert await store.acquire("lease:1", {"workerId": "a"}, 60) is False
        client.set.assert_awaited_once_with("lease:1", json.dumps({"workerId": "a"}), ex=60, nx=True)

    @pytest.mark.asyncio
    async def test_extend_uses_expire(self, client):
        client.expire.return_value = False
        store = RedisProgressStore(client)

        assert await store.extend("lease:1", 300) is False
        client.expire.assert_awaited_once_with("lease:1", 300)

    @pytest.mark.asyncio
    async def test_redis_errors_become_transient(self, client):
        client.get.side_effect = RedisConnectionError("connection refused")
        store = RedisProgressStore(client)

        with pytest.raises(TransientInfraError) as exc_info:
            await store.get("job:1")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_close(self, client):
        await RedisProgressStore(client).close()

        client.aclose.assert_awaited_once()


class TestCreateProgressStore:
    def test_memory_without_redis_url(self):
        assert isinstance(create_progress_store(Settings(redis_url="")), MemoryProgressStore)

    def test_redis_with_url(self):
        store = create_progress_store(Settings(redis_url="redis://localhost:6379/0"))

        assert isinstance(store, RedisProgressStore)
