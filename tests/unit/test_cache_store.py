import pytest

from tariffsim.cache.store import KeyedCacheStore
from tariffsim.config.cache import DEFAULT_TTLS, ttl_for
from conftest import FakeClock


@pytest.fixture
def store(clock):
    return KeyedCacheStore(capacity=3, clock=clock)


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        KeyedCacheStore(capacity=0)


def test_lru_eviction_order(store):
    for key in ["a", "b", "c", "d"]:
        store.set(key, key.upper(), "p", ttl_seconds=60)

    assert store.keys() == ["b", "c", "d"]
    assert store.get("a", "p") is None
    assert store.evictions == 1


def test_read_refreshes_recency(store):
    for key in ["a", "b", "c"]:
        store.set(key, 1, "p", ttl_seconds=60)
    store.get("a", "p")
    store.set("d", 1, "p", ttl_seconds=60)

    # b was least recently used after a was read
    assert store.keys() == ["c", "a", "d"]


def test_peek_does_not_refresh_recency(store):
    for key in ["a", "b", "c"]:
        store.set(key, 1, "p", ttl_seconds=60)
    assert store.peek("a", "p") is not None
    store.set("d", 1, "p", ttl_seconds=60)

    assert "a" not in store.keys()


def test_overwrite_does_not_evict(store):
    for key in ["a", "b", "c"]:
        store.set(key, 1, "p", ttl_seconds=60)
    store.set("a", 2, "p", ttl_seconds=60)

    assert len(store) == 3
    assert store.evictions == 0
    assert store.get("a", "p") == 2


def test_ttl_boundary(clock, store):
    store.set("a", 1, "p", ttl_seconds=10)

    clock.now = 9.999
    assert store.get("a", "p") == 1

    clock.now = 10.0
    assert store.get("a", "p") is None
    assert len(store) == 0


def test_ttl_must_be_positive(store):
    with pytest.raises(ValueError):
        store.set("a", 1, "p", ttl_seconds=0)


def test_ttl_is_not_extended_by_reads(clock, store):
    store.set("a", 1, "p", ttl_seconds=10)
    clock.advance(8)
    store.get("a", "p")
    clock.advance(3)
    assert store.get("a", "p") is None


def test_partitions_are_independent(store):
    store.set("k", "market", "market", ttl_seconds=60)
    store.set("k", "query", "query", ttl_seconds=60)

    assert store.get("k", "market") == "market"
    assert store.clear_partition("market") == 1
    assert store.get("k", "market") is None
    assert store.get("k", "query") == "query"


def test_purge_expired(clock):
    store = KeyedCacheStore(capacity=10, clock=clock)
    store.set("short", 1, "p", ttl_seconds=5)
    store.set("long", 1, "p", ttl_seconds=50)
    clock.advance(10)

    assert ("p", "short") not in store
    assert store.purge_expired() == 1
    assert store.keys() == ["long"]


def test_delete(store):
    store.set("a", 1, "p", ttl_seconds=60)
    assert store.delete("a", "p") is True
    assert store.delete("a", "p") is False


def test_get_entry_tracks_access_time():
    clock = FakeClock(100.0)
    store = KeyedCacheStore(capacity=2, clock=clock)
    store.set("a", 1, "p", ttl_seconds=60)
    clock.advance(5)

    entry = store.get_entry("a", "p")
    assert entry.inserted_at == 100.0
    assert entry.last_accessed_at == 105.0
    assert entry.expires_at == 160.0


def test_default_ttls():
    assert ttl_for("market") == 15 * 60
    assert ttl_for("unknown") == DEFAULT_TTLS["default"]
