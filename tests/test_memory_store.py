"""MemoryStore mirrors the Redis semantics the services rely on."""
import threading

import pytest

from conftest import FakeClock
from sessionkeeper.service.errors import InfrastructureError
from sessionkeeper.storage.memory import MemoryStore


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryStore(clock=clock)


async def test_set_with_expiry(store, clock):
    await store.set("k", "v", ex=10)
    assert await store.get("k") == "v"
    assert await store.ttl("k") == 10
    clock.advance(10)
    assert await store.get("k") is None
    assert await store.exists("k") == 0
    assert await store.ttl("k") == -2


async def test_set_without_expiry_clears_previous_ttl(store):
    await store.set("k", "v", ex=10)
    await store.set("k", "w")
    assert await store.ttl("k") == -1


async def test_incr_and_pexpire(store, clock):
    assert await store.incr("counter") == 1
    assert await store.incr("counter") == 2
    assert await store.pexpire("counter", 1500) is True
    clock.advance(1.4)
    assert await store.get("counter") == "2"
    clock.advance(0.2)
    assert await store.incr("counter") == 1


async def test_incr_non_integer_raises(store):
    await store.set("k", "abc")
    with pytest.raises(InfrastructureError):
        await store.incr("k")


async def test_expire_missing_key_returns_false(store):
    assert await store.expire("missing", 10) is False
    assert await store.pexpire("missing", 10) is False


async def test_expire_non_positive_deletes(store):
    await store.set("k", "v")
    assert await store.expire("k", 0) is True
    assert await store.exists("k") == 0


async def test_delete_counts_existing_keys(store):
    await store.set("a", "1")
    await store.hset("b", "f", "1")
    assert await store.delete("a", "b", "c") == 2
    assert await store.delete() == 0


async def test_hash_operations(store):
    assert await store.hset("h", "f1", "a") == 1
    assert await store.hset("h", "f1", "b") == 0
    assert await store.hset("h", "f2", "c") == 1
    assert await store.hget("h", "f1") == "b"
    assert await store.hgetall("h") == {"f1": "b", "f2": "c"}
    assert await store.hlen("h") == 2
    assert await store.hdel("h", "f1", "missing") == 1
    assert await store.hlen("h") == 1


async def test_removing_last_field_removes_key(store):
    await store.hset("h", "f", "v")
    await store.expire("h", 100)
    await store.hdel("h", "f")
    assert await store.exists("h") == 0
    assert await store.hgetall("h") == {}
    assert await store.hget("h", "f") is None


async def test_wrong_type_raises(store):
    await store.set("k", "v")
    with pytest.raises(InfrastructureError):
        await store.hset("k", "f", "v")
    await store.hset("h", "f", "v")
    with pytest.raises(InfrastructureError):
        await store.get("h")


async def test_hset_capped_enforces_limit(store):
    assert await store.hset_capped("h", "a", "1", max_fields=2, ttl_seconds=60) == (True, 1)
    assert await store.hset_capped("h", "b", "1", max_fields=2, ttl_seconds=60) == (True, 2)
    assert await store.hset_capped("h", "c", "1", max_fields=2, ttl_seconds=60) == (False, 2)
    assert await store.hgetall("h") == {"a": "1", "b": "1"}


async def test_hset_capped_evicts_before_counting(store):
    await store.hset_capped("h", "a", "1", max_fields=2, ttl_seconds=60)
    await store.hset_capped("h", "b", "1", max_fields=2, ttl_seconds=60)
    assert await store.hset_capped(
        "h", "c", "1", max_fields=2, ttl_seconds=60, evict=["a", "missing"]
    ) == (True, 2)
    assert await store.hgetall("h") == {"b": "1", "c": "1"}


async def test_hset_capped_overwrite_at_capacity(store):
    await store.hset_capped("h", "a", "1", max_fields=1, ttl_seconds=60)
    assert await store.hset_capped("h", "a", "2", max_fields=1, ttl_seconds=60) == (True, 1)
    assert await store.hget("h", "a") == "2"


async def test_hset_capped_resets_ttl(store, clock):
    await store.hset_capped("h", "a", "1", max_fields=5, ttl_seconds=60)
    clock.advance(50)
    await store.hset_capped("h", "b", "1", max_fields=5, ttl_seconds=60)
    assert await store.ttl("h") == 60
    clock.advance(59)
    assert await store.hlen("h") == 2


async def test_expired_hash_frees_capacity(store, clock):
    await store.hset_capped("h", "a", "1", max_fields=1, ttl_seconds=60)
    clock.advance(60)
    assert await store.hset_capped("h", "b", "1", max_fields=1, ttl_seconds=60) == (True, 1)


def test_hset_capped_is_atomic_across_threads():
    import asyncio

    store = MemoryStore()
    results = []

    def worker(i):
        results.append(
            asyncio.run(store.hset_capped("h", f"f{i}", "v", max_fields=10, ttl_seconds=60))
        )

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sum(1 for stored, _ in results if stored) == 10
    assert asyncio.run(store.hlen("h")) == 10


async def test_ping(store):
    assert await store.ping() is True
    await store.close()
