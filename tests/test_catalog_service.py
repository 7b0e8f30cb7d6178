"""
tests/test_catalog_service.py - Read-through caching and write invalidation
"""
from __future__ import annotations

import pytest

from catalog_admin.clients.catalog_client import DataSourceError, NotFoundError


def test_list_read_through_then_hit(service, catalog):
    first = service.list_records("template")
    second = service.list_records("template")
    assert not first.from_cache
    assert second.from_cache
    assert second.data == first.data
    assert catalog.fetch_count["list:template"] == 1


def test_insert_invalidates_list_and_next_read_refetches(service, catalog, registry):
    service.list_records("template")
    assert len(registry.templates) == 1

    result = service.create_record("template", {"template_name": "New One", "template_price": 10})
    assert result.invalidated == 1
    assert len(registry.templates) == 0

    fresh = service.list_records("template")
    assert not fresh.from_cache
    assert fresh.data[0]["template_name"] == "New One"
    assert catalog.fetch_count["list:template"] == 2
    assert len(registry.templates) == 1


def test_edit_invalidates_only_that_record_and_lists(service, registry):
    service.get_record("template", 1)
    service.get_record("template", 2)
    service.list_records("template")

    result = service.update_record("template", 1, {"template_price": 99})
    assert result.invalidated == 2

    assert service.get_record("template", 2).from_cache
    refreshed = service.get_record("template", 1)
    assert not refreshed.from_cache
    assert refreshed.data["template_price"] == 99
    assert not service.list_records("template").from_cache


def test_delete_invalidates_record(service, catalog):
    service.get_record("platform", 1)
    service.list_records("platform")
    result = service.delete_record("platform", 1)
    assert result.invalidated == 2
    with pytest.raises(NotFoundError):
        service.get_record("platform", 1)


def test_blog_alias_and_edit_view_cache(service, registry):
    assert not service.get_article_for_edit(1).from_cache
    assert service.get_article_for_edit(1).from_cache
    service.update_record("blog", 1, {"article_title": "Updated title"})
    again = service.get_article_for_edit(1)
    assert not again.from_cache
    assert again.data["article_title"] == "Updated title"


def test_data_source_error_is_not_cached(service, catalog, registry):
    catalog.fail_with = DataSourceError("connection refused")
    with pytest.raises(DataSourceError):
        service.list_records("application")
    assert len(registry.applications) == 0

    catalog.fail_with = None
    assert not service.list_records("application").from_cache


def test_missing_record_not_cached(service, registry):
    with pytest.raises(NotFoundError):
        service.get_record("template", 404)
    assert len(registry.single_template) == 0


def test_unknown_entity_rejected(service):
    with pytest.raises(ValueError):
        service.list_records("spaceship")


def test_dashboard_stats_cached_until_a_write(service, catalog):
    first = service.get_dashboard_stats()
    assert not first.from_cache
    assert first.data["counts"]["order"] == 2
    assert first.data["orders_by_status"] == {"unpaid": 1, "paid": 1}
    assert first.data["revenue"] == 150000
    assert service.get_dashboard_stats().from_cache

    service.create_record("platform", {"platform_name": "Wave", "platform_number": "0100"})
    refreshed = service.get_dashboard_stats()
    assert not refreshed.from_cache
    assert refreshed.data["counts"]["platform"] == 2


def test_order_payment_update_invalidates_order_and_stats(service, registry):
    service.get_record("order", 1)
    service.get_record("order", 2)
    service.list_records("order")
    service.get_dashboard_stats()

    result = service.update_order_payment(1, "paid")
    # order 1 detail, the orders list, the stats summary
    assert result.invalidated == 3
    assert result.record["order_paid_at"] is not None
    assert service.get_record("order", 2).from_cache

    stats = service.get_dashboard_stats()
    assert not stats.from_cache
    assert stats.data["orders_by_status"] == {"paid": 2}
    assert stats.data["revenue"] == 450000


def test_unpaid_status_clears_paid_at(service):
    result = service.update_order_payment(2, "refunded")
    assert result.record["order_paid_at"] is None


def test_users_read_through(service, registry):
    users = service.list_records("user")
    assert not users.from_cache
    assert users.data[0]["user_name"] == "admin"
    assert "password" not in users.data[0]
    assert service.list_records("user").from_cache
    assert len(registry.dashboard_users) == 1
