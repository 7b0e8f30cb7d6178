"""
catalog_admin/core/events.py - In-process cache event bus
Observers are injected into EntryStore / CacheRegistry. Dispatch is
synchronous and a failing handler is logged and dropped, never raised
into the cache operation that emitted the event.
"""
from __future__ import annotations

import threading
from collections import defaultdict
from typing import Any, Callable, Protocol

from loguru import logger

from catalog_admin.core.logging import log_cache_event, log_invalidation

Handler = Callable[[dict[str, Any]], None]

# ── Event names ───────────────────────────────────────────────────────────────
HIT = "cache.hit"
MISS = "cache.miss"
SET = "cache.set"
EXPIRED = "cache.expired"
EVICTED = "cache.evicted"
DELETE = "cache.delete"
CLEAR = "cache.clear"
INVALIDATE = "cache.invalidate"
ERROR = "cache.error"

ALL_EVENTS = (HIT, MISS, SET, EXPIRED, EVICTED, DELETE, CLEAR, INVALIDATE, ERROR)


class CacheObserver(Protocol):
    def emit(self, event_name: str, payload: dict[str, Any]) -> None: ...


class NullObserver:
    """Discards every event."""

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        return None


class CacheEventBus:
    """Named-event pub/sub with on/off/once semantics."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """Subscribe; returns a callable that unsubscribes the handler."""
        with self._lock:
            self._handlers[event_name].append(handler)
        return lambda: self.off(event_name, handler)

    def off(self, event_name: str, handler: Handler) -> bool:
        with self._lock:
            handlers = self._handlers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)
                return True
        return False

    def once(self, event_name: str, handler: Handler) -> Callable[[], None]:
        def _wrapper(payload: dict[str, Any]) -> None:
            self.off(event_name, _wrapper)
            handler(payload)

        return self.on(event_name, _wrapper)

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            handlers = list(self._handlers.get(event_name, ()))
        for handler in handlers:
            try:
                handler(payload)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    f"Cache event handler failed for {event_name}: "
                    f"{type(exc).__name__}: {exc}"
                )

    def handler_count(self, event_name: str | None = None) -> int:
        with self._lock:
            if event_name is not None:
                return len(self._handlers.get(event_name, ()))
            return sum(len(h) for h in self._handlers.values())


# ──────────────────────────────────────────────────────────────────────────────
# Logging observer
# ──────────────────────────────────────────────────────────────────────────────

def _log_store_event(payload: dict[str, Any]) -> None:
    log_cache_event(
        cache=payload.get("cache"),
        entity=payload.get("entity"),
        outcome=str(payload.get("outcome")),
        key=payload.get("key"),
        size=payload.get("size"),
        error=payload.get("error"),
    )


def _log_invalidate_event(payload: dict[str, Any]) -> None:
    log_invalidation(
        entity=str(payload.get("entity")),
        entity_id=payload.get("entity_id"),
        invalidated=payload.get("count") or 0,
        caches=payload.get("caches") or [],
    )


def attach_logging_observer(bus: CacheEventBus) -> list[Callable[[], None]]:
    """Subscribe structured-log handlers for every cache event."""
    unsubscribers = [
        bus.on(name, _log_store_event)
        for name in (HIT, MISS, SET, EXPIRED, EVICTED, DELETE, CLEAR, ERROR)
    ]
    unsubscribers.append(bus.on(INVALIDATE, _log_invalidate_event))
    return unsubscribers
