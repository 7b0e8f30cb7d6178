"""
tests/conftest.py - Shared pytest fixtures
"""
from __future__ import annotations

import os

# Picked up by get_settings() for the module-level app
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("DASHBOARD_USER", "admin")
os.environ.setdefault("DASHBOARD_PASS", "test-pass")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import base64
from typing import Any

import pytest
from fastapi.testclient import TestClient

from catalog_admin.clients.catalog_client import InMemoryCatalogClient
from catalog_admin.config import Settings
from catalog_admin.core.cache_manager import CacheRegistry
from catalog_admin.core.rate_limiter import RateLimiter, build_policies, limiter
from catalog_admin.core.telemetry import Telemetry
from catalog_admin.main import create_app
from catalog_admin.services.catalog_service import CatalogService

API_KEY = os.environ["API_KEY"]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingObserver:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def of(self, event_name: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.events if name == event_name]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="testing",
        api_key=API_KEY,
        telemetry_enabled=False,
        seed_catalog=True,
    )


@pytest.fixture
def registry(settings, observer, clock) -> CacheRegistry:
    return CacheRegistry(settings=settings, observer=observer, clock=clock)


@pytest.fixture
def rate_limiter(settings, clock) -> RateLimiter:
    return RateLimiter(
        policies=build_policies(settings),
        clock=clock,
        telemetry=Telemetry(enabled=False),
        whitelist=settings.rate_limit_whitelist,
    )


@pytest.fixture
def catalog() -> InMemoryCatalogClient:
    return InMemoryCatalogClient(seed=True)


@pytest.fixture
def service(registry, catalog) -> CatalogService:
    return CatalogService(registry, catalog)


@pytest.fixture
def app(settings, catalog):
    limiter.reset()
    return create_app(settings=settings, catalog_client=catalog)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": API_KEY}


@pytest.fixture
def basic_auth_headers() -> dict[str, str]:
    token = base64.b64encode(b"admin:test-pass").decode("ascii")
    return {"Authorization": f"Basic {token}"}
