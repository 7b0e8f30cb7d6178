"""
tests/test_cache_manager.py - CacheRegistry invalidation, headers, stats
"""
from __future__ import annotations

import pytest

from catalog_admin.config import Settings
from catalog_admin.core import events
from catalog_admin.core.cache_keys import DetailQuery, ListQuery
from catalog_admin.core.cache_manager import (
    CACHE_POLICIES,
    CacheRegistry,
    cache_control,
)
from catalog_admin.models import CacheName, CachePolicy, Entity


def test_every_policy_has_a_store(registry):
    assert set(registry.names) == set(CACHE_POLICIES)
    assert registry.store("templates") is registry["templates"] is registry.templates
    assert registry.store(CacheName.SINGLE_TEMPLATE) is registry.single_template


def test_unknown_store_raises(registry):
    with pytest.raises(KeyError):
        registry.store("nope")
    with pytest.raises(AttributeError):
        registry.nope


def test_dashboard_key_pins_configured_version(clock):
    reg = CacheRegistry(settings=Settings(cache_key_version="7"), clock=clock)
    assert reg.get_dashboard_cache_key("templates_list", {"endpoint": "templates"}) == (
        "dashboard:v7:templates_list:endpoint=templates"
    )


def test_invalidate_without_id_clears_all_entity_stores(registry, observer):
    list_key = registry.key_for("templates_list", ListQuery(endpoint="templates"))
    detail_key = registry.key_for("template_detail", DetailQuery(id=1))
    registry.templates.set(list_key, [{"id": 1}])
    registry.single_template.set(detail_key, {"id": 1})
    registry.applications.set("dashboard:v1:applications_list:default", [])

    assert registry.invalidate_dashboard_cache("template") == 2
    assert registry.templates.get(list_key) is None
    assert registry.single_template.get(detail_key) is None
    # cross-entity caches are untouched
    assert registry.applications.get("dashboard:v1:applications_list:default") == []

    event = observer.of(events.INVALIDATE)[-1]
    assert event["entity"] == "template"
    assert event["count"] == 2
    assert event["caches"] == ["templates", "single_template"]


def test_point_invalidation_only_touches_matching_id(registry):
    k1 = registry.key_for("template_detail", DetailQuery(id=1))
    k2 = registry.key_for("template_detail", DetailQuery(id=2))
    k12 = registry.key_for("template_detail", DetailQuery(id=12))
    for key, value in ((k1, {"id": 1}), (k2, {"id": 2}), (k12, {"id": 12})):
        registry.single_template.set(key, value)

    assert registry.invalidate_dashboard_cache(Entity.TEMPLATE, 1) == 1
    assert registry.single_template.get(k1) is None
    assert registry.single_template.get(k2) == {"id": 2}
    assert registry.single_template.get(k12) == {"id": 12}


def test_article_and_blog_share_caches(registry):
    key = registry.key_for("article_edit", DetailQuery(id=5))
    registry.edit_article.set(key, {"id": 5})
    assert registry.invalidate_dashboard_cache("blog", 5) == 1


def test_unknown_entity_returns_zero(registry):
    registry.templates.set("k", 1)
    assert registry.invalidate_dashboard_cache("spaceship") == 0
    assert registry.templates.get("k") == 1


def test_cache_headers_follow_policy(registry):
    headers = registry.get_cache_headers("templates")
    assert headers == {
        "Cache-Control": "max-age=600, stale-while-revalidate=120, s-maxage=1200"
    }
    assert registry.get_cache_headers("orders")["Cache-Control"] == (
        "max-age=120, stale-while-revalidate=30, must-revalidate"
    )


def test_cache_headers_fallback_for_unknown_name(registry):
    assert registry.get_cache_headers("dashboard_home")["Cache-Control"] == (
        "max-age=1800, stale-while-revalidate=600"
    )


def test_cache_control_variants():
    assert cache_control(CachePolicy(max_age=10, no_store=True)) == "no-store"
    assert cache_control(CachePolicy(max_age=604800, immutable=True)) == "max-age=604800, immutable"


def test_ttl_override_reflected_in_store_and_headers(clock):
    reg = CacheRegistry(
        settings=Settings(cache_ttl_overrides={"templates": 30}, cache_capacity_overrides={"templates": 2}),
        clock=clock,
    )
    assert reg.templates.ttl_seconds == 30
    assert reg.templates.capacity == 2
    assert reg.get_cache_headers("templates")["Cache-Control"].startswith("max-age=30,")


def test_stats_and_reset(registry):
    registry.templates.set("k", [1])
    registry.templates.get("k")
    registry.platforms.get("missing")

    stats = registry.stats()
    assert stats.total_entries == 1
    assert stats.caches["templates"].hits == 1
    assert stats.hit_rate == 0.5
    assert stats.efficiency == "fair"

    assert registry.reset() == 1
    after = registry.stats()
    assert after.total_entries == 0
    assert after.efficiency == "no-data"


def test_purge_expired_across_stores(registry, clock):
    registry.dashboard_stats.set("s", {"orders": 3})
    registry.templates.set("t", [])
    clock.advance(61)
    removed = registry.purge_expired()
    assert removed["dashboard_stats"] == 1
    assert removed["templates"] == 0


def test_store_events_name_the_owning_entity(registry, observer):
    registry.single_blog_article.set("k", {"id": 1})
    registry.orders.get("missing")
    assert observer.of(events.SET)[-1]["entity"] == "article"
    assert observer.of(events.MISS)[-1]["entity"] == "order"
