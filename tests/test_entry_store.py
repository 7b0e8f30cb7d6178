"""
tests/test_entry_store.py - Bounded TTL store behaviour
"""
from __future__ import annotations

import threading
from datetime import date, datetime

import pytest

from catalog_admin.core import events
from catalog_admin.core.entry_store import EntryStore


@pytest.fixture
def store(observer, clock) -> EntryStore:
    return EntryStore("templates", ttl_seconds=300, capacity=3, observer=observer, clock=clock)


def test_list_visible_until_ttl_then_absent(store, clock):
    assert store.get("k1") is None
    assert store.set("k1", ["a", "b", "c"])

    clock.advance(299)
    assert store.get("k1") == ["a", "b", "c"]

    clock.advance(2)
    assert store.get("k1") is None


def test_entry_absent_exactly_at_ttl(store, clock):
    store.set("k", {"v": 1})
    clock.advance(300)
    assert store.get("k") is None


def test_expired_read_removes_entry_and_emits(store, clock, observer):
    store.set("k", 1)
    clock.advance(301)
    assert store.get("k") is None
    assert "k" not in store.keys()
    assert observer.of(events.EXPIRED)[0]["key"] == "k"


def test_zero_and_negative_ttl_are_already_expired(store):
    assert store.set("zero", 1, ttl_seconds=0)
    assert store.set("neg", 1, ttl_seconds=-5)
    assert store.get("zero") is None
    assert store.get("neg") is None


def test_values_are_snapshots(store):
    payload = [{"id": 1, "name": "a"}]
    store.set("k", payload)
    payload[0]["name"] = "mutated"

    first = store.get("k")
    assert first == [{"id": 1, "name": "a"}]
    first.append("reader mutation")
    assert store.get("k") == [{"id": 1, "name": "a"}]


def test_set_failures_return_false(store, observer):
    assert store.set("k", object()) is False
    assert store.set("k", None) is False
    assert store.set("", 1) is False
    assert store.get("k") is None
    assert len(observer.of(events.ERROR)) == 3


def test_oversized_entry_not_cached(observer, clock):
    small = EntryStore("t", 60, 5, observer=observer, clock=clock, max_entry_bytes=20)
    assert small.set("k", "x" * 100) is False
    assert "k" not in small


def test_capacity_evicts_oldest(store, clock, observer):
    for i in range(3):
        store.set(f"k{i}", i)
        clock.advance(1)
    store.set("k3", 3)

    assert store.keys() == ["k1", "k2", "k3"]
    assert observer.of(events.EVICTED)[0]["key"] == "k0"


def test_capacity_prefers_expired_entries(store, clock):
    store.set("short", 1, ttl_seconds=1)
    store.set("a", 2)
    store.set("b", 3)
    clock.advance(2)
    store.set("c", 4)

    assert set(store.keys()) == {"a", "b", "c"}


def test_overwrite_at_capacity_does_not_evict(store):
    for i in range(3):
        store.set(f"k{i}", i)
    store.set("k0", "new")
    assert len(store) == 3
    assert store.get("k0") == "new"


def test_delete_is_idempotent_and_reports_live_removal(store, clock):
    store.set("k", 1)
    assert store.delete("k") is True
    assert store.delete("k") is False

    store.set("old", 1)
    clock.advance(400)
    assert store.delete("old") is False


def test_delete_matching(store):
    store.set("dashboard:v1:t:id=1", 1)
    store.set("dashboard:v1:t:id=2", 2)
    store.set("other", 3)
    removed = store.delete_matching(lambda key: key.startswith("dashboard:"))
    assert removed == 2
    assert store.keys() == ["other"]


def test_delete_matching_with_failing_predicate_is_noop(store, observer):
    store.set("k", 1)

    def boom(key):
        raise RuntimeError("bad predicate")

    assert store.delete_matching(boom) == 0
    assert "k" in store
    assert observer.of(events.ERROR)


def test_clear_and_purge(store, clock):
    store.set("a", 1, ttl_seconds=10)
    store.set("b", 2)
    clock.advance(11)
    assert store.purge_expired() == 1
    assert store.clear() == 1
    assert len(store) == 0


def test_stats_track_hits_and_misses(store):
    store.set("k", [1, 2])
    store.get("k")
    store.get("k")
    store.get("missing")
    stats = store.stats()
    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(0.6667, abs=1e-4)
    assert stats.entries == 1
    assert stats.bytes == len("[1,2]")
    assert stats.efficiency == "good"


def test_hit_miss_set_events(store, observer):
    store.get("k")
    store.set("k", "v")
    store.get("k")
    assert observer.names() == [events.MISS, events.SET, events.HIT]
    assert observer.of(events.SET)[0]["size"] == len('"v"')
    assert observer.of(events.SET)[0]["cache"] == "templates"


def test_failing_observer_never_breaks_cache(clock):
    class Exploding:
        def emit(self, event_name, payload):
            raise RuntimeError("observer down")

    store = EntryStore("t", 60, 5, observer=Exploding(), clock=clock)
    assert store.set("k", 1)
    assert store.get("k") == 1


def test_get_or_set_caches_success_only(store):
    calls = []

    def fetch():
        calls.append(1)
        return ["row"]

    assert store.get_or_set("k", fetch) == ["row"]
    assert store.get_or_set("k", fetch) == ["row"]
    assert len(calls) == 1


def test_get_or_set_does_not_cache_errors_or_none(store):
    def failing():
        raise ConnectionError("db down")

    with pytest.raises(ConnectionError):
        store.get_or_set("k", failing)
    assert "k" not in store

    assert store.get_or_set("n", lambda: None) is None
    assert "n" not in store


def test_concurrent_sets_leave_one_whole_value(clock):
    store = EntryStore("t", 60, 10, clock=clock)
    value_a = {"items": list(range(200)), "tag": "A"}
    value_b = {"items": list(range(200, 400)), "tag": "B"}
    barrier = threading.Barrier(8)

    def writer(value):
        barrier.wait()
        for _ in range(50):
            store.set("k", value)

    threads = [
        threading.Thread(target=writer, args=(value_a if i % 2 else value_b,))
        for i in range(8)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get("k") in (value_a, value_b)
    assert store.set("k", "after")
    assert store.get("k") == "after"
    assert len(store) == 1


def test_invalid_capacity_rejected(clock):
    with pytest.raises(ValueError):
        EntryStore("t", 60, 0, clock=clock)


def test_hit_returns_exactly_what_was_stored(store):
    stamped = {"at": datetime(2024, 1, 1, 9, 30)}
    store.set("int_keys", {1: "x", 2: "y"})
    store.set("pair", (1, 2))
    store.set("stamped", stamped)

    assert store.get("int_keys") == {1: "x", 2: "y"}
    assert store.get("pair") == (1, 2)
    assert store.get("stamped") == stamped
    assert store.get("stamped") is not stamped


def test_get_or_set_same_value_on_miss_and_hit(store):
    loaded = {"rows": (1, 2), "at": date(2024, 5, 1)}
    first = store.get_or_set("k", lambda: loaded)
    second = store.get_or_set("k", lambda: pytest.fail("fetched twice"))
    assert first == second == loaded


def test_events_carry_entity(observer, clock):
    tagged = EntryStore("templates", 60, 5, observer=observer, clock=clock, entity="template")
    tagged.set("k", 1)
    tagged.get("k")
    assert observer.of(events.SET)[0]["entity"] == "template"
    assert observer.of(events.HIT)[0]["entity"] == "template"
