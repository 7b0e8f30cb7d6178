"""
catalog_admin/services/catalog_service.py - Cached catalog reads and invalidating writes

Reads go cache first and fall back to the data source, caching only a
successful result. Writes hit the data source first and invalidate after:
a create clears every cache of the entity, an edit or delete removes the
record's keys plus the entity's list keys. Creates, deletes and payment
changes also drop the cached dashboard stats.
"""
from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import Any, NamedTuple, Optional

from loguru import logger

from catalog_admin.clients.catalog_client import (
    CATALOG_ENTITIES,
    CatalogClient,
    normalize_entity,
)
from catalog_admin.core.cache_keys import DetailQuery, EditQuery, ListQuery, key_has_logical_name
from catalog_admin.core.cache_manager import CacheRegistry
from catalog_admin.models import CacheName, Entity


class EntityCaches(NamedTuple):
    endpoint: str
    list_cache: str
    detail_cache: str


ENTITY_CACHE_LAYOUT: dict[str, EntityCaches] = {
    Entity.TEMPLATE.value: EntityCaches(
        "templates", CacheName.TEMPLATES.value, CacheName.SINGLE_TEMPLATE.value,
    ),
    Entity.APPLICATION.value: EntityCaches(
        "applications", CacheName.APPLICATIONS.value, CacheName.SINGLE_APPLICATION.value,
    ),
    # Platforms share one store for list and detail keys
    Entity.PLATFORM.value: EntityCaches(
        "platforms", CacheName.PLATFORMS.value, CacheName.PLATFORMS.value,
    ),
    Entity.ARTICLE.value: EntityCaches(
        "blog", CacheName.BLOG_ARTICLES.value, CacheName.SINGLE_BLOG_ARTICLE.value,
    ),
    Entity.ORDER.value: EntityCaches("orders", CacheName.ORDERS.value, CacheName.ORDERS.value),
    Entity.USER.value: EntityCaches(
        "users", CacheName.DASHBOARD_USERS.value, CacheName.DASHBOARD_USERS.value,
    ),
}


def list_key_name(entity: str) -> str:
    return f"{ENTITY_CACHE_LAYOUT[entity].endpoint}_list"


def detail_key_name(entity: str) -> str:
    return f"{entity}_detail"


class CachedRead(NamedTuple):
    data: Any
    from_cache: bool


class MutationResult(NamedTuple):
    record: dict[str, Any]
    invalidated: int


class CatalogService:
    def __init__(self, registry: CacheRegistry, client: CatalogClient) -> None:
        self.registry = registry
        self.client = client

    # ── Reads ─────────────────────────────────────────────────────────────────

    def list_records(self, entity: str) -> CachedRead:
        name = normalize_entity(entity)
        layout = ENTITY_CACHE_LAYOUT[name]
        store = self.registry.store(layout.list_cache)
        key = self.registry.key_for(list_key_name(name), ListQuery(endpoint=layout.endpoint))

        cached = store.lookup(key)
        if cached.hit:
            return CachedRead(cached.value, True)

        rows = self.client.list(name)
        if not store.set(key, rows):
            logger.warning(f"Proceeding without cache for {key}")
        return CachedRead(rows, False)

    def get_record(self, entity: str, record_id: int) -> CachedRead:
        name = normalize_entity(entity)
        store = self.registry.store(ENTITY_CACHE_LAYOUT[name].detail_cache)
        key = self.registry.key_for(detail_key_name(name), DetailQuery(id=record_id))

        cached = store.lookup(key)
        if cached.hit:
            return CachedRead(cached.value, True)

        record = self.client.get(name, record_id)
        store.set(key, record)
        return CachedRead(record, False)

    def get_article_for_edit(self, record_id: int) -> CachedRead:
        """Edit view of an article, cached separately with a short TTL."""
        store = self.registry.store(CacheName.EDIT_ARTICLE)
        key = self.registry.key_for("article_edit", EditQuery(id=record_id))

        cached = store.lookup(key)
        if cached.hit:
            return CachedRead(cached.value, True)

        record = self.client.get(Entity.ARTICLE.value, record_id)
        store.set(key, record)
        return CachedRead(record, False)

    def get_dashboard_stats(self) -> CachedRead:
        """Record counts per entity, orders by payment status and paid revenue."""
        store = self.registry.store(CacheName.DASHBOARD_STATS)
        key = self.registry.get_dashboard_cache_key("dashboard_stats")

        cached = store.lookup(key)
        if cached.hit:
            return CachedRead(cached.value, True)

        tables = {entity: self.client.list(entity) for entity in CATALOG_ENTITIES}
        orders = tables[Entity.ORDER.value]
        stats = {
            "counts": {entity: len(rows) for entity, rows in tables.items()},
            "orders_by_status": dict(Counter(o.get("order_payment_status") for o in orders)),
            "revenue": sum(
                o.get("order_price") or 0
                for o in orders
                if o.get("order_payment_status") == "paid"
            ),
        }
        store.set(key, stats)
        return CachedRead(stats, False)

    # ── Mutations ─────────────────────────────────────────────────────────────

    def create_record(self, entity: str, data: dict[str, Any]) -> MutationResult:
        name = normalize_entity(entity)
        record = self.client.create(name, data)
        invalidated = self.registry.invalidate_dashboard_cache(name)
        invalidated += self.registry.invalidate_dashboard_cache(Entity.STATS)
        return MutationResult(record, invalidated)

    def update_record(self, entity: str, record_id: int, data: dict[str, Any]) -> MutationResult:
        name = normalize_entity(entity)
        record = self.client.update(name, record_id, data)
        return MutationResult(record, self._invalidate_record(name, record_id))

    def delete_record(self, entity: str, record_id: int) -> MutationResult:
        name = normalize_entity(entity)
        record = self.client.delete(name, record_id)
        invalidated = self._invalidate_record(name, record_id)
        invalidated += self.registry.invalidate_dashboard_cache(Entity.STATS)
        return MutationResult(record, invalidated)

    def update_order_payment(self, order_id: int, payment_status: str) -> MutationResult:
        """Set an order's payment status; order_paid_at follows it."""
        paid_at = datetime.utcnow().isoformat() + "Z" if payment_status == "paid" else None
        record = self.client.update(Entity.ORDER.value, order_id, {
            "order_payment_status": payment_status,
            "order_paid_at": paid_at,
        })
        invalidated = self._invalidate_record(Entity.ORDER.value, order_id)
        invalidated += self.registry.invalidate_dashboard_cache(Entity.STATS)
        return MutationResult(record, invalidated)

    def _invalidate_record(self, entity: str, record_id: int) -> int:
        invalidated = self.registry.invalidate_dashboard_cache(entity, record_id)
        list_name = list_key_name(entity)
        invalidated += self.registry.store(ENTITY_CACHE_LAYOUT[entity].list_cache).delete_matching(
            lambda key: key_has_logical_name(key, list_name)
        )
        return invalidated
