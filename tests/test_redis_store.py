"""Tests for RedisStore against an in-process fake Redis server."""

import asyncio
import json

import fakeredis
import pytest
import pytest_asyncio

from errors import CacheError
from memory_manager import ConversationMemory
from stores import RedisStore


@pytest.fixture
def server():
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def store(server):
    store = RedisStore(fakeredis.FakeAsyncRedis(server=server, decode_responses=True))
    yield store
    await store.close()


@pytest.fixture
def other_client(server):
    """A second, synchronous connection to the same server."""
    return fakeredis.FakeRedis(server=server, decode_responses=True)


class TestBasics:

    @pytest.mark.asyncio
    async def test_set_get_with_expiry(self, store):
        await store.set("user:555", '{"phone": "555"}', 300)

        assert await store.get("user:555") == '{"phone": "555"}'
        assert 0 < await store.r.ttl("user:555") <= 300

    @pytest.mark.asyncio
    async def test_missing_key(self, store):
        assert await store.get("user:nobody") is None

    @pytest.mark.asyncio
    async def test_ping(self, store):
        assert await store.ping() is True

    @pytest.mark.asyncio
    async def test_connection_failure_becomes_cache_error(self, store, server):
        server.connected = False

        with pytest.raises(CacheError):
            await store.get("user:555")
        with pytest.raises(CacheError):
            await store.set("user:555", "{}", 300)
        assert await store.ping() is False


class TestAtomicUpdate:

    @pytest.mark.asyncio
    async def test_creates_missing_key(self, store):
        seen = []

        def mutate(raw):
            seen.append(raw)
            return json.dumps(["a"])

        assert await store.atomic_update("session:42", mutate, 60) == '["a"]'
        assert seen == [None]
        assert 0 < await store.r.ttl("session:42") <= 60

    @pytest.mark.asyncio
    async def test_reapplies_after_concurrent_write(self, store, other_client):
        other_client.set("session:42", json.dumps(["first"]))
        seen = []

        def mutate(raw):
            seen.append(raw)
            if len(seen) == 1:
                # another client writes between our WATCH and EXEC
                other_client.set("session:42", json.dumps(["first", "other"]))
            return json.dumps(json.loads(raw) + ["mine"])

        written = await store.atomic_update("session:42", mutate, 60)

        assert len(seen) == 2
        assert json.loads(written) == ["first", "other", "mine"]
        assert json.loads(other_client.get("session:42")) == ["first", "other", "mine"]

    @pytest.mark.asyncio
    async def test_concurrent_atomic_appends_keep_every_message(self, store):
        conversations = ConversationMemory(store, atomic_append=True)

        await asyncio.gather(*(
            conversations.append("42", {"text": str(i)}) for i in range(10)
        ))

        memory = await conversations.get_memory("42")
        assert sorted(int(m["text"]) for m in memory) == list(range(10))
