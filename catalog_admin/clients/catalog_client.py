"""
catalog_admin/clients/catalog_client.py - Catalog data source
The dashboard routes read and mutate catalog records through a
CatalogClient. InMemoryCatalogClient is the bundled implementation: a
thread-safe table per entity with a per-operation fetch counter.
"""
from __future__ import annotations

import copy
import threading
from collections import Counter
from datetime import datetime
from typing import Any, Optional, Protocol, Union

from loguru import logger

from catalog_admin.models import Entity


class DataSourceError(Exception):
    """The data source failed. Never cached; surfaced as 503."""


class NotFoundError(Exception):
    def __init__(self, entity: str, record_id: Any) -> None:
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} {record_id} not found")


CATALOG_ENTITIES = (
    Entity.TEMPLATE.value,
    Entity.APPLICATION.value,
    Entity.PLATFORM.value,
    Entity.ARTICLE.value,
    Entity.ORDER.value,
    Entity.USER.value,
)

# The blog routes address articles by their public name
_ALIASES = {Entity.BLOG.value: Entity.ARTICLE.value}


def normalize_entity(entity: Union[str, Entity]) -> str:
    name = entity.value if isinstance(entity, Entity) else str(entity)
    name = _ALIASES.get(name, name)
    if name not in CATALOG_ENTITIES:
        raise ValueError(f"Unknown catalog entity: {name}")
    return name


class CatalogClient(Protocol):
    def list(self, entity: str) -> list[dict[str, Any]]: ...
    def get(self, entity: str, record_id: int) -> dict[str, Any]: ...
    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]: ...
    def update(self, entity: str, record_id: int, data: dict[str, Any]) -> dict[str, Any]: ...
    def delete(self, entity: str, record_id: int) -> dict[str, Any]: ...


class InMemoryCatalogClient:
    def __init__(self, seed: bool = False) -> None:
        self._lock = threading.Lock()
        self._tables: dict[str, dict[int, dict[str, Any]]] = {e: {} for e in CATALOG_ENTITIES}
        self._next_id: dict[str, int] = {e: 1 for e in CATALOG_ENTITIES}
        # "list:template", "get:template", ... -> number of calls
        self.fetch_count: Counter[str] = Counter()
        # When set, every call raises it (simulated outage)
        self.fail_with: Optional[Exception] = None
        if seed:
            self._seed()

    def _check_available(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    def _insert(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        """Lock held."""
        record_id = self._next_id[entity]
        self._next_id[entity] += 1
        now = datetime.utcnow().isoformat() + "Z"
        record = {"id": record_id, **copy.deepcopy(data), "created_at": now, "updated_at": now}
        self._tables[entity][record_id] = record
        return copy.deepcopy(record)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def list(self, entity: str) -> list[dict[str, Any]]:
        """Newest first."""
        name = normalize_entity(entity)
        with self._lock:
            self.fetch_count[f"list:{name}"] += 1
            self._check_available()
            rows = sorted(self._tables[name].values(), key=lambda r: r["id"], reverse=True)
            return copy.deepcopy(rows)

    def get(self, entity: str, record_id: int) -> dict[str, Any]:
        name = normalize_entity(entity)
        with self._lock:
            self.fetch_count[f"get:{name}"] += 1
            self._check_available()
            record = self._tables[name].get(int(record_id))
            if record is None:
                raise NotFoundError(name, record_id)
            return copy.deepcopy(record)

    # ── Mutations ─────────────────────────────────────────────────────────────

    def create(self, entity: str, data: dict[str, Any]) -> dict[str, Any]:
        name = normalize_entity(entity)
        with self._lock:
            self._check_available()
            record = self._insert(name, data)
        logger.info(f"Catalog {name} {record['id']} created")
        return record

    def update(self, entity: str, record_id: int, data: dict[str, Any]) -> dict[str, Any]:
        name = normalize_entity(entity)
        with self._lock:
            self._check_available()
            record = self._tables[name].get(int(record_id))
            if record is None:
                raise NotFoundError(name, record_id)
            record.update(copy.deepcopy(data))
            record["updated_at"] = datetime.utcnow().isoformat() + "Z"
            updated = copy.deepcopy(record)
        logger.info(f"Catalog {name} {record_id} updated")
        return updated

    def delete(self, entity: str, record_id: int) -> dict[str, Any]:
        name = normalize_entity(entity)
        with self._lock:
            self._check_available()
            record = self._tables[name].pop(int(record_id), None)
        if record is None:
            raise NotFoundError(name, record_id)
        logger.info(f"Catalog {name} {record_id} deleted")
        return record

    def count(self, entity: str) -> int:
        name = normalize_entity(entity)
        with self._lock:
            return len(self._tables[name])

    # ── Seed ──────────────────────────────────────────────────────────────────

    def _seed(self) -> None:
        with self._lock:
            self._insert(Entity.TEMPLATE.value, {
                "template_name": "Storefront Classic",
                "template_price": 150000,
                "template_has_web": True,
                "template_has_mobile": False,
                "template_image": None,
                "is_active": True,
            })
            self._insert(Entity.TEMPLATE.value, {
                "template_name": "Mobile Shop",
                "template_price": 250000,
                "template_has_web": True,
                "template_has_mobile": True,
                "template_image": None,
                "is_active": True,
            })
            self._insert(Entity.APPLICATION.value, {
                "application_name": "Boutique Lina",
                "application_link": "https://boutique-lina.example.com",
                "application_fee": 300000,
                "application_rent": 25000,
                "application_template": 1,
                "application_level": "standard",
                "application_images": [],
                "is_active": True,
            })
            self._insert(Entity.PLATFORM.value, {
                "platform_name": "Orange Money",
                "platform_number": "0700000000",
                "is_active": True,
            })
            self._insert(Entity.ARTICLE.value, {
                "article_title": "Launching your first online store",
                "article_text": "A short guide to getting a catalog online.",
                "article_image": None,
                "article_category": "guides",
                "is_active": True,
            })
            self._insert(Entity.ORDER.value, {
                "order_client": "Awa Kone",
                "order_price": 300000,
                "order_application_id": 1,
                "order_platform_id": 1,
                "order_payment_status": "unpaid",
                "order_paid_at": None,
            })
            self._insert(Entity.ORDER.value, {
                "order_client": "Moussa Traore",
                "order_price": 150000,
                "order_application_id": 1,
                "order_platform_id": 1,
                "order_payment_status": "paid",
                "order_paid_at": "2024-01-15T10:00:00Z",
            })
            # Dashboard accounts; credentials live elsewhere
            self._insert(Entity.USER.value, {
                "user_name": "admin",
                "user_email": "admin@example.com",
                "user_role": "admin",
                "is_active": True,
            })
