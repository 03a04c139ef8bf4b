from datetime import datetime

import pytest

from dsync.domain.presence.registry import MemoryLastSeenStore, PresenceRegistry, RedisLastSeenStore


@pytest.mark.asyncio
async def test_user_goes_offline_only_after_last_connection(registry):
    await registry.init()

    assert await registry.connect("sid-1", "user-a") is True
    assert await registry.connect("sid-2", "user-a") is False
    assert registry.sids_for("user-a") == {"sid-1", "sid-2"}

    assert await registry.disconnect("sid-1") is None
    assert registry.is_online("user-a")

    departure = await registry.disconnect("sid-2")
    assert departure.user_id == "user-a"
    assert not registry.is_online("user-a")
    assert await registry.last_seen("user-a") == departure.last_seen


@pytest.mark.asyncio
async def test_rebinding_a_connection_moves_it_to_the_new_user(registry):
    await registry.init()
    await registry.connect("sid-1", "user-a")

    assert await registry.connect("sid-1", "user-b") is True

    assert registry.online_users() == {"user-b"}
    assert registry.user_for("sid-1") == "user-b"


@pytest.mark.asyncio
async def test_unknown_connection_disconnect_is_noop(registry):
    assert await registry.disconnect("ghost") is None


@pytest.mark.asyncio
async def test_shutdown_disconnects_everyone():
    last_seen = MemoryLastSeenStore()
    registry = PresenceRegistry(last_seen)
    await registry.init()
    await registry.connect("sid-1", "user-a")
    await registry.connect("sid-2", "user-a")
    await registry.connect("sid-3", "user-b")

    departures = await registry.shutdown()

    assert sorted(d.user_id for d in departures) == ["user-a", "user-b"]
    assert registry.online_users() == set()
    assert registry.running is False
    assert set(last_seen.values) == {"user-a", "user-b"}


@pytest.mark.asyncio
async def test_last_seen_failure_does_not_block_disconnect():
    class BrokenStore(MemoryLastSeenStore):
        async def save(self, user_id, at):
            raise ConnectionError("redis down")

    registry = PresenceRegistry(BrokenStore())
    await registry.connect("sid-1", "user-a")

    departure = await registry.disconnect("sid-1")

    assert departure is not None
    assert not registry.is_online("user-a")


@pytest.mark.asyncio
async def test_redis_last_seen_store_roundtrip(fake_redis):
    store = RedisLastSeenStore()
    at = datetime(2024, 1, 2, 3, 4, 5)

    await store.save("user-a", at)

    assert await fake_redis.hget("presence:user-a", "last_seen") == at.isoformat()
    assert await store.get("user-a") == at
    assert await store.get("user-b") is None
