"""
catalog_admin/config.py - Pydantic BaseSettings configuration
Dashboard cache TTL/capacity overrides, rate-limit presets, auth and telemetry switches.
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Shipped defaults for secrets; never accepted as credentials
PLACEHOLDER_SECRETS = ("change-me-immediately", "your-api-key-here")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ────────────────────────────────────────────────────────────
    environment: str = "development"
    log_level: str = "INFO"
    port: int = 8000
    site_url: str = "same-origin"

    # ── Authentication ────────────────────────────────────────────────────────
    # Placeholders are flagged at startup and rejected by dual_auth
    api_key: str = "change-me-immediately"
    dashboard_user: str = "admin"
    dashboard_pass: str = "change-me-immediately"

    # ── Dashboard cache ───────────────────────────────────────────────────────
    # Bump to force every cached payload shape to be bypassed after a deploy
    cache_key_version: str = "1"
    # Single entries above this size are not cached at all
    cache_max_entry_bytes: int = 2 * 1024 * 1024
    # cache name -> TTL seconds, e.g. {"templates": 120}
    cache_ttl_overrides: dict[str, int] = {}
    # cache name -> max entry count
    cache_capacity_overrides: dict[str, int] = {}

    # ── Rate limiting ─────────────────────────────────────────────────────────
    # route class -> limits string, e.g. {"AUTH_ENDPOINTS": "3 per 5 minutes"}
    rate_limit_overrides: dict[str, str] = {}
    rate_limit_whitelist: list[str] = ["127.0.0.1", "::1"]
    rate_limit_max_tracked_keys: int = 10_000

    # ── Telemetry ─────────────────────────────────────────────────────────────
    telemetry_enabled: bool = True
    telemetry_sample_rate: float = 1.0

    # ── Seed data for the in-memory catalog ───────────────────────────────────
    seed_catalog: bool = True

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "production", "testing"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("telemetry_sample_rate")
    @classmethod
    def validate_sample_rate(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("telemetry_sample_rate must be between 0 and 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@lru_cache()
def get_settings() -> Settings:
    """Return cached Settings instance. Use this everywhere."""
    return Settings()
