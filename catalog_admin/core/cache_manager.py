"""
catalog_admin/core/cache_manager.py - Dashboard cache coordinator
One EntryStore per dashboard cache, built once at startup and kept on
app.state. Exposes key building, entity invalidation (broad or by id),
Cache-Control headers and aggregated stats.
"""
from __future__ import annotations

import time
from typing import Any, Optional, Union

from loguru import logger

from catalog_admin.config import Settings, get_settings
from catalog_admin.core import events
from catalog_admin.core.cache_keys import build_key, key_encodes_id, key_for_query
from catalog_admin.core.entry_store import Clock, EntryStore, efficiency_label
from catalog_admin.core.events import CacheObserver, NullObserver
from catalog_admin.models import (
    CacheEvent,
    CacheName,
    CacheOutcome,
    CachePolicy,
    Entity,
    RegistryStats,
)


# ──────────────────────────────────────────────────────────────────────────────
# Policies - max_age doubles as the in-process TTL
# ──────────────────────────────────────────────────────────────────────────────

CACHE_POLICIES: dict[str, CachePolicy] = {
    CacheName.TEMPLATES.value: CachePolicy(
        max_age=10 * 60, stale_while_revalidate=2 * 60, s_maxage=20 * 60, capacity=200,
    ),
    CacheName.SINGLE_TEMPLATE.value: CachePolicy(
        max_age=15 * 60, stale_while_revalidate=5 * 60, s_maxage=30 * 60, capacity=400,
    ),
    CacheName.APPLICATIONS.value: CachePolicy(
        max_age=10 * 60, stale_while_revalidate=2 * 60, s_maxage=20 * 60, capacity=400,
    ),
    CacheName.SINGLE_APPLICATION.value: CachePolicy(
        max_age=15 * 60, stale_while_revalidate=5 * 60, s_maxage=30 * 60, capacity=600,
    ),
    # Payment platforms: short-lived, always revalidated
    CacheName.PLATFORMS.value: CachePolicy(
        max_age=10 * 60, stale_while_revalidate=2 * 60, must_revalidate=True, capacity=50,
    ),
    CacheName.BLOG_ARTICLES.value: CachePolicy(
        max_age=5 * 60, stale_while_revalidate=60, s_maxage=10 * 60, capacity=300,
    ),
    CacheName.SINGLE_BLOG_ARTICLE.value: CachePolicy(
        max_age=15 * 60, stale_while_revalidate=5 * 60, s_maxage=30 * 60, capacity=500,
    ),
    CacheName.EDIT_ARTICLE.value: CachePolicy(
        max_age=2 * 60, must_revalidate=True, capacity=100,
    ),
    # Orders carry financial data
    CacheName.ORDERS.value: CachePolicy(
        max_age=2 * 60, stale_while_revalidate=30, must_revalidate=True, capacity=100,
    ),
    CacheName.DASHBOARD_USERS.value: CachePolicy(
        max_age=5 * 60, stale_while_revalidate=60, must_revalidate=True, capacity=150,
    ),
    CacheName.DASHBOARD_STATS.value: CachePolicy(
        max_age=60, stale_while_revalidate=30, capacity=50,
    ),
}

# Headers-only fallback for names without a store
DASHBOARD_PAGES_POLICY = CachePolicy(max_age=30 * 60, stale_while_revalidate=10 * 60)

ENTITY_CACHES: dict[str, tuple[str, ...]] = {
    Entity.TEMPLATE.value: (CacheName.TEMPLATES.value, CacheName.SINGLE_TEMPLATE.value),
    Entity.APPLICATION.value: (
        CacheName.APPLICATIONS.value,
        CacheName.SINGLE_APPLICATION.value,
    ),
    Entity.PLATFORM.value: (CacheName.PLATFORMS.value,),
    Entity.ARTICLE.value: (
        CacheName.BLOG_ARTICLES.value,
        CacheName.SINGLE_BLOG_ARTICLE.value,
        CacheName.EDIT_ARTICLE.value,
    ),
    Entity.BLOG.value: (
        CacheName.BLOG_ARTICLES.value,
        CacheName.SINGLE_BLOG_ARTICLE.value,
        CacheName.EDIT_ARTICLE.value,
    ),
    Entity.ORDER.value: (CacheName.ORDERS.value,),
    Entity.USER.value: (CacheName.DASHBOARD_USERS.value,),
    Entity.STATS.value: (CacheName.DASHBOARD_STATS.value,),
}

# Owning entity of each store, tagged on its events. Blog caches report "article".
CACHE_ENTITY: dict[str, str] = {}
for _entity, _caches in ENTITY_CACHES.items():
    for _cache in _caches:
        CACHE_ENTITY.setdefault(_cache, _entity)


def cache_control(policy: CachePolicy) -> str:
    """Render a Cache-Control value from a policy."""
    if policy.no_store:
        return "no-store"
    directives = [f"max-age={policy.max_age}"]
    if policy.stale_while_revalidate:
        directives.append(f"stale-while-revalidate={policy.stale_while_revalidate}")
    if policy.s_maxage:
        directives.append(f"s-maxage={policy.s_maxage}")
    if policy.immutable:
        directives.append("immutable")
    if policy.must_revalidate:
        directives.append("must-revalidate")
    return ", ".join(directives)


def _name(value: Union[str, CacheName, Entity]) -> str:
    return value.value if isinstance(value, (CacheName, Entity)) else str(value)


# ──────────────────────────────────────────────────────────────────────────────
# Registry
# ──────────────────────────────────────────────────────────────────────────────

class CacheRegistry:
    """
    Owns every dashboard EntryStore.
    Stores are reachable as registry.store("templates"), registry["templates"]
    or registry.templates.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        observer: Optional[CacheObserver] = None,
        clock: Clock = time.monotonic,
        policies: Optional[dict[str, CachePolicy]] = None,
    ) -> None:
        settings = settings or get_settings()
        self.key_version = settings.cache_key_version
        self.policies = dict(policies or CACHE_POLICIES)
        self._observer = observer or NullObserver()
        self._stores: dict[str, EntryStore] = {}

        for unknown in set(settings.cache_ttl_overrides) - set(self.policies):
            logger.warning(f"Ignoring TTL override for unknown cache: {unknown}")
        for unknown in set(settings.cache_capacity_overrides) - set(self.policies):
            logger.warning(f"Ignoring capacity override for unknown cache: {unknown}")

        for name, policy in self.policies.items():
            self._stores[name] = EntryStore(
                name=name,
                ttl_seconds=settings.cache_ttl_overrides.get(name, policy.max_age),
                capacity=settings.cache_capacity_overrides.get(name, policy.capacity),
                observer=self._observer,
                clock=clock,
                max_entry_bytes=settings.cache_max_entry_bytes,
                entity=CACHE_ENTITY.get(name),
            )

    # ── Store access ──────────────────────────────────────────────────────────

    def store(self, name: Union[str, CacheName]) -> EntryStore:
        try:
            return self._stores[_name(name)]
        except KeyError:
            raise KeyError(f"Unknown dashboard cache: {_name(name)}") from None

    def __getitem__(self, name: Union[str, CacheName]) -> EntryStore:
        return self.store(name)

    def __getattr__(self, name: str) -> EntryStore:
        stores = self.__dict__.get("_stores", {})
        if name in stores:
            return stores[name]
        raise AttributeError(f"{type(self).__name__} has no cache {name!r}")

    def __iter__(self):
        return iter(self._stores.values())

    @property
    def names(self) -> list[str]:
        return list(self._stores)

    # ── Keys ──────────────────────────────────────────────────────────────────

    def get_dashboard_cache_key(
        self,
        logical_name: str,
        params: Optional[dict[str, Any]] = None,
    ) -> str:
        return build_key(logical_name, params, self.key_version)

    def key_for(self, logical_name: str, query: Any) -> str:
        return key_for_query(logical_name, query, self.key_version)

    # ── Invalidation ──────────────────────────────────────────────────────────

    def invalidate_dashboard_cache(
        self,
        entity: Union[str, Entity],
        entity_id: Optional[Any] = None,
    ) -> int:
        """
        Without an id, clear every store of the entity (list-affecting
        mutations). With an id, remove only keys whose id parameter matches.
        Returns the number of live entries removed.
        """
        entity_name = _name(entity)
        cache_names = ENTITY_CACHES.get(entity_name)
        if not cache_names:
            logger.warning(f"Cache invalidation requested for unknown entity: {entity_name}")
            return 0

        invalidated = 0
        for cache_name in cache_names:
            store = self._stores.get(cache_name)
            if store is None:
                continue
            if entity_id is None:
                invalidated += store.clear()
            else:
                invalidated += store.delete_matching(
                    lambda key: key_encodes_id(key, entity_id)
                )

        payload = CacheEvent(
            outcome=CacheOutcome.INVALIDATE,
            entity=entity_name,
            entity_id=None if entity_id is None else str(entity_id),
            count=invalidated,
        ).model_dump(mode="json")
        payload["caches"] = list(cache_names)
        try:
            self._observer.emit(events.INVALIDATE, payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Cache observer failed on {events.INVALIDATE}: {exc}")
        return invalidated

    # ── HTTP headers ──────────────────────────────────────────────────────────

    def get_cache_headers(self, name: Union[str, CacheName]) -> dict[str, str]:
        """Cache-Control for a cache name; unknown names get the dashboard page policy."""
        cache_name = _name(name)
        policy = self.policies.get(cache_name)
        if policy is None:
            policy = DASHBOARD_PAGES_POLICY
        else:
            # Reflect configured TTL overrides
            ttl = int(self._stores[cache_name].ttl_seconds)
            if ttl != policy.max_age:
                policy = policy.model_copy(update={"max_age": max(ttl, 0)})
        return {"Cache-Control": cache_control(policy)}

    # ── Maintenance ───────────────────────────────────────────────────────────

    def stats(self) -> RegistryStats:
        per_store = {name: store.stats() for name, store in self._stores.items()}
        hits = sum(s.hits for s in per_store.values())
        requests = hits + sum(s.misses for s in per_store.values())
        hit_rate = round(hits / requests, 4) if requests else 0.0
        return RegistryStats(
            caches=per_store,
            total_entries=sum(s.entries for s in per_store.values()),
            total_bytes=sum(s.bytes for s in per_store.values()),
            hit_rate=hit_rate,
            efficiency=efficiency_label(hit_rate, requests),
        )

    def purge_expired(self) -> dict[str, int]:
        removed = {name: store.purge_expired() for name, store in self._stores.items()}
        total = sum(removed.values())
        if total:
            logger.info(f"Purged {total} expired dashboard cache entries")
        return removed

    def reset(self) -> int:
        """Clear every store and zero the hit/miss counters."""
        cleared = 0
        for store in self._stores.values():
            cleared += store.clear()
            store.reset_stats()
        return cleared
