"""
catalog_admin/core/entry_store.py - Bounded TTL store for one dashboard cache

Values are stored as deep-copied snapshots: a caller mutating its object
after set() cannot change what later readers see, and every reader gets its
own copy of exactly what was stored. The JSON encoding is only used to
measure an entry and to refuse values that have no JSON form.
An entry is visible only while now < expires_at. Expired entries are removed
lazily on read, swept before eviction, and by purge_expired().
"""
from __future__ import annotations

import copy
import json
import threading
import time
from collections import OrderedDict
from datetime import date, datetime
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import BaseModel

from catalog_admin.core import events
from catalog_admin.core.events import CacheObserver, NullObserver
from catalog_admin.models import (
    CacheEntry,
    CacheError,
    CacheEvent,
    CacheLookup,
    CacheOutcome,
    CacheResult,
    StoreStats,
)

Clock = Callable[[], float]

DEFAULT_MAX_ENTRY_BYTES = 2 * 1024 * 1024

_OUTCOME_EVENTS = {
    CacheOutcome.HIT: events.HIT,
    CacheOutcome.MISS: events.MISS,
    CacheOutcome.SET: events.SET,
    CacheOutcome.EXPIRED: events.EXPIRED,
    CacheOutcome.EVICTED: events.EVICTED,
    CacheOutcome.DELETE: events.DELETE,
    CacheOutcome.CLEAR: events.CLEAR,
    CacheOutcome.ERROR: events.ERROR,
}


def efficiency_label(hit_rate: float, requests: int) -> str:
    if requests == 0:
        return "no-data"
    if hit_rate >= 0.8:
        return "excellent"
    if hit_rate >= 0.6:
        return "good"
    if hit_rate >= 0.4:
        return "fair"
    return "poor"


def _json_default(value: Any) -> Any:
    """Size measurement only; the stored snapshot keeps the original types."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"{type(value).__name__} is not JSON serializable")


class EntryStore:
    def __init__(
        self,
        name: str,
        ttl_seconds: float,
        capacity: int,
        observer: Optional[CacheObserver] = None,
        clock: Clock = time.monotonic,
        max_entry_bytes: int = DEFAULT_MAX_ENTRY_BYTES,
        entity: Optional[str] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1 for cache {name!r}")
        self.name = name
        # Catalog entity whose records this store holds; tagged on every event
        self.entity = entity
        self.ttl_seconds = ttl_seconds
        self.capacity = capacity
        self.max_entry_bytes = max_entry_bytes
        self._observer = observer or NullObserver()
        self._clock = clock
        self._lock = threading.Lock()
        # Insertion order == created_at order; overwrites re-insert at the end
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._hits = 0
        self._misses = 0

    # ── Event plumbing ────────────────────────────────────────────────────────

    def _event(
        self,
        outcome: CacheOutcome,
        key: Optional[str] = None,
        size: Optional[int] = None,
        count: Optional[int] = None,
        error: Optional[str] = None,
    ) -> tuple[str, dict[str, Any]]:
        payload = CacheEvent(
            cache=self.name, entity=self.entity, key=key, outcome=outcome,
            size=size, count=count, error=error,
        ).model_dump(mode="json")
        return _OUTCOME_EVENTS[outcome], payload

    def _dispatch(self, pending: list[tuple[str, dict[str, Any]]]) -> None:
        """Called after the lock is released."""
        for event_name, payload in pending:
            try:
                self._observer.emit(event_name, payload)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"Cache observer failed on {event_name}: {exc}")

    def _fail(self, operation: str, key: Optional[str], reason: str) -> CacheError:
        error = CacheError(cache=self.name, operation=operation, key=key, reason=reason)
        logger.warning(
            f"Cache {self.name} {operation} failed for key={key}: {reason}"
        )
        self._dispatch([self._event(CacheOutcome.ERROR, key=key, error=reason)])
        return error

    # ── Reads ─────────────────────────────────────────────────────────────────

    def lookup(self, key: str) -> CacheLookup:
        pending: list[tuple[str, dict[str, Any]]] = []
        entry: Optional[CacheEntry] = None
        with self._lock:
            now = self._clock()
            entry = self._entries.get(key)
            if entry is not None and entry.is_expired(now):
                del self._entries[key]
                pending.append(self._event(CacheOutcome.EXPIRED, key=key))
                entry = None
            if entry is None:
                self._misses += 1
                pending.append(self._event(CacheOutcome.MISS, key=key))
            else:
                self._hits += 1
                pending.append(self._event(CacheOutcome.HIT, key=key, size=entry.size))
        self._dispatch(pending)

        if entry is None:
            return CacheLookup(hit=False)
        # Stored snapshots are never mutated, so copying outside the lock is safe
        return CacheLookup(hit=True, value=copy.deepcopy(entry.value))

    def get(self, key: str) -> Any:
        """Return a fresh copy of the cached value, or None when absent."""
        return self.lookup(key).value

    # ── Writes ────────────────────────────────────────────────────────────────

    def try_set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
    ) -> CacheResult:
        if not key:
            return CacheResult(ok=False, error=self._fail("set", key, "empty key"))
        if value is None:
            return CacheResult(ok=False, error=self._fail("set", key, "refusing to cache None"))
        try:
            encoded = json.dumps(value, default=_json_default, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            return CacheResult(ok=False, error=self._fail("set", key, f"serialization failed: {exc}"))
        try:
            snapshot = copy.deepcopy(value)
        except Exception as exc:  # noqa: BLE001
            return CacheResult(ok=False, error=self._fail("set", key, f"snapshot failed: {exc}"))

        size = len(encoded.encode("utf-8"))
        if size > self.max_entry_bytes:
            return CacheResult(
                ok=False,
                error=self._fail(
                    "set", key, f"entry of {size} bytes exceeds limit {self.max_entry_bytes}"
                ),
            )

        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        pending: list[tuple[str, dict[str, Any]]] = []
        with self._lock:
            now = self._clock()
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.capacity:
                pending.extend(self._make_room(now))
            self._entries[key] = CacheEntry(
                key=key,
                value=snapshot,
                size=size,
                created_at=now,
                expires_at=now + ttl,
            )
            pending.append(self._event(CacheOutcome.SET, key=key, size=size))
        self._dispatch(pending)
        return CacheResult(ok=True, size=size)

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> bool:
        """Store a snapshot of value. False means "proceed without caching"."""
        return self.try_set(key, value, ttl_seconds).ok

    def _make_room(self, now: float) -> list[tuple[str, dict[str, Any]]]:
        """Sweep expired entries, then evict oldest until one slot is free. Lock held."""
        pending = [
            self._event(CacheOutcome.EXPIRED, key=k)
            for k in self._drop_expired(now)
        ]
        while len(self._entries) >= self.capacity:
            old_key, _ = self._entries.popitem(last=False)
            pending.append(self._event(CacheOutcome.EVICTED, key=old_key))
        return pending

    def _drop_expired(self, now: float) -> list[str]:
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        return expired

    def get_or_set(
        self,
        key: str,
        fetch: Callable[[], Any],
        ttl_seconds: Optional[float] = None,
    ) -> Any:
        """
        Read-through. A fetch exception propagates and nothing is cached;
        a None result is returned but not cached.
        """
        cached = self.lookup(key)
        if cached.hit:
            return cached.value
        value = fetch()
        if value is not None:
            self.set(key, value, ttl_seconds)
        return value

    # ── Removal ───────────────────────────────────────────────────────────────

    def delete(self, key: str) -> bool:
        """Idempotent. True only when a live entry was removed."""
        with self._lock:
            entry = self._entries.pop(key, None)
            live = entry is not None and not entry.is_expired(self._clock())
        if live:
            self._dispatch([self._event(CacheOutcome.DELETE, key=key)])
        return live

    def delete_matching(self, predicate: Callable[[str], bool]) -> int:
        """Remove every entry whose key satisfies predicate. Returns live count removed."""
        removed: list[str] = []
        reason = ""
        with self._lock:
            now = self._clock()
            try:
                matched = [k for k in self._entries if predicate(k)]
            except Exception as exc:  # noqa: BLE001
                reason = f"predicate raised {type(exc).__name__}: {exc}"
                matched = None
            else:
                for k in matched:
                    entry = self._entries.pop(k)
                    if not entry.is_expired(now):
                        removed.append(k)
        if matched is None:
            self._fail("delete_matching", None, reason)
            return 0
        self._dispatch([self._event(CacheOutcome.DELETE, key=k) for k in removed])
        return len(removed)

    def clear(self) -> int:
        with self._lock:
            now = self._clock()
            live = sum(1 for e in self._entries.values() if not e.is_expired(now))
            self._entries.clear()
        self._dispatch([self._event(CacheOutcome.CLEAR, count=live)])
        return live

    def purge_expired(self) -> int:
        with self._lock:
            expired = self._drop_expired(self._clock())
        self._dispatch([self._event(CacheOutcome.EXPIRED, key=k) for k in expired])
        return len(expired)

    # ── Introspection ─────────────────────────────────────────────────────────

    def keys(self) -> list[str]:
        """Live keys, oldest first."""
        with self._lock:
            now = self._clock()
            return [k for k, e in self._entries.items() if not e.is_expired(now)]

    def __len__(self) -> int:
        return len(self.keys())

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.is_expired(self._clock())

    def stats(self) -> StoreStats:
        with self._lock:
            now = self._clock()
            live = [e for e in self._entries.values() if not e.is_expired(now)]
            hits, misses = self._hits, self._misses
        requests = hits + misses
        hit_rate = round(hits / requests, 4) if requests else 0.0
        return StoreStats(
            name=self.name,
            entries=len(live),
            bytes=sum(e.size for e in live),
            capacity=self.capacity,
            ttl_seconds=self.ttl_seconds,
            hits=hits,
            misses=misses,
            hit_rate=hit_rate,
            efficiency=efficiency_label(hit_rate, requests),
        )

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0
