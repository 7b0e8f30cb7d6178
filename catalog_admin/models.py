"""
catalog_admin/models.py - All Pydantic data schemas
Cache entries and policies, rate-limit windows and decisions, cache events,
and the catalog request/response bodies used by the dashboard routes.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────────────────────

class CacheName(str, Enum):
    TEMPLATES = "templates"
    SINGLE_TEMPLATE = "single_template"
    APPLICATIONS = "applications"
    SINGLE_APPLICATION = "single_application"
    PLATFORMS = "platforms"
    BLOG_ARTICLES = "blog_articles"
    SINGLE_BLOG_ARTICLE = "single_blog_article"
    EDIT_ARTICLE = "edit_article"
    ORDERS = "orders"
    DASHBOARD_USERS = "dashboard_users"
    DASHBOARD_STATS = "dashboard_stats"


class Entity(str, Enum):
    TEMPLATE = "template"
    APPLICATION = "application"
    PLATFORM = "platform"
    ARTICLE = "article"
    BLOG = "blog"
    ORDER = "order"
    USER = "user"
    STATS = "stats"


class RouteClass(str, Enum):
    PUBLIC_API = "PUBLIC_API"
    AUTHENTICATED_API = "AUTHENTICATED_API"
    AUTH_ENDPOINTS = "AUTH_ENDPOINTS"
    IMAGE_UPLOAD = "IMAGE_UPLOAD"
    CONTENT_API = "CONTENT_API"


class CacheOutcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    SET = "set"
    EXPIRED = "expired"
    EVICTED = "evicted"
    DELETE = "delete"
    CLEAR = "clear"
    INVALIDATE = "invalidate"
    ERROR = "error"


# ──────────────────────────────────────────────────────────────────────────────
# Cache
# ──────────────────────────────────────────────────────────────────────────────

class CachePolicy(BaseModel):
    """Freshness policy of one named cache. Seconds throughout."""
    max_age: int
    stale_while_revalidate: int = 0
    s_maxage: Optional[int] = None
    must_revalidate: bool = False
    immutable: bool = False
    no_store: bool = False
    capacity: int = 200


class CacheEntry(BaseModel):
    key: str
    value: Any  # deep-copied snapshot; never handed out directly
    size: int
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class CacheEvent(BaseModel):
    cache: Optional[str] = None
    key: Optional[str] = None
    outcome: CacheOutcome
    size: Optional[int] = None
    count: Optional[int] = None
    entity: Optional[str] = None
    entity_id: Optional[str] = None
    error: Optional[str] = None
    timestamp: float = Field(default_factory=time.time)


class CacheError(BaseModel):
    """Internal cache failure. Logged and degraded, never raised to callers."""
    cache: str
    operation: str
    key: Optional[str] = None
    reason: str


class CacheResult(BaseModel):
    ok: bool
    size: Optional[int] = None
    error: Optional[CacheError] = None


class CacheLookup(BaseModel):
    hit: bool
    value: Any = None
    error: Optional[CacheError] = None


class StoreStats(BaseModel):
    name: str
    entries: int
    bytes: int
    capacity: int
    ttl_seconds: float
    hits: int
    misses: int
    hit_rate: float
    efficiency: str


class RegistryStats(BaseModel):
    caches: dict[str, StoreStats]
    total_entries: int
    total_bytes: int
    hit_rate: float
    efficiency: str


# ──────────────────────────────────────────────────────────────────────────────
# Rate limiting
# ──────────────────────────────────────────────────────────────────────────────

class RateLimitPolicy(BaseModel):
    limit: int = Field(ge=1)
    window_seconds: float = Field(gt=0)
    message: str = "Too many requests, please try again later."


class RateLimitWindow(BaseModel):
    identity_key: str
    window_start: float
    count: int = 0
    limit: int
    window_seconds: float

    def is_expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_seconds


class RateLimitDecision(BaseModel):
    allowed: bool
    route_class: Optional[RouteClass] = None
    identity_key: Optional[str] = None
    limit: Optional[int] = None
    remaining: Optional[int] = None
    retry_after_seconds: Optional[int] = None
    reset_at: Optional[float] = None  # clock time the current window ends
    reset_in_seconds: Optional[int] = None
    message: Optional[str] = None
    error: Optional[str] = None  # set only on a fail-open decision

    @classmethod
    def fail_open(
        cls,
        route_class: Optional[RouteClass],
        identity_key: Optional[str],
        error: Exception,
    ) -> "RateLimitDecision":
        return cls(
            allowed=True,
            route_class=route_class,
            identity_key=identity_key,
            error=f"{type(error).__name__}: {error}",
        )


class RateLimitStats(BaseModel):
    active_windows: int
    whitelisted_ips: int
    denied_total: int
    errors_total: int
    policies: dict[str, RateLimitPolicy]


# ──────────────────────────────────────────────────────────────────────────────
# Catalog payloads
# ──────────────────────────────────────────────────────────────────────────────

class TemplateCreate(BaseModel):
    template_name: str = Field(min_length=3, max_length=100)
    template_price: float = Field(ge=0)
    template_has_web: bool = True
    template_has_mobile: bool = False
    template_image: Optional[str] = None
    is_active: bool = True


class TemplateUpdate(BaseModel):
    template_name: Optional[str] = Field(default=None, min_length=3, max_length=100)
    template_price: Optional[float] = Field(default=None, ge=0)
    template_has_web: Optional[bool] = None
    template_has_mobile: Optional[bool] = None
    template_image: Optional[str] = None
    is_active: Optional[bool] = None


class ApplicationCreate(BaseModel):
    application_name: str = Field(min_length=2, max_length=100)
    application_link: str
    application_fee: float = Field(ge=0)
    application_rent: float = Field(default=0, ge=0)
    application_template: Optional[int] = None
    application_level: str = "standard"
    application_images: list[str] = []
    is_active: bool = True

    @field_validator("application_level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"standard", "premium"}
        if v not in allowed:
            raise ValueError(f"application_level must be one of {allowed}")
        return v


class ApplicationUpdate(BaseModel):
    application_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    application_link: Optional[str] = None
    application_fee: Optional[float] = Field(default=None, ge=0)
    application_rent: Optional[float] = Field(default=None, ge=0)
    application_template: Optional[int] = None
    application_images: Optional[list[str]] = None
    is_active: Optional[bool] = None


class PlatformCreate(BaseModel):
    platform_name: str = Field(min_length=2, max_length=50)
    platform_number: str = Field(min_length=4, max_length=30)
    is_active: bool = True


class PlatformUpdate(BaseModel):
    platform_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    platform_number: Optional[str] = Field(default=None, min_length=4, max_length=30)
    is_active: Optional[bool] = None


class ArticleCreate(BaseModel):
    article_title: str = Field(min_length=5, max_length=200)
    article_text: str = Field(min_length=1)
    article_image: Optional[str] = None
    article_category: str = "general"
    is_active: bool = True


class ArticleUpdate(BaseModel):
    article_title: Optional[str] = Field(default=None, min_length=5, max_length=200)
    article_text: Optional[str] = None
    article_image: Optional[str] = None
    article_category: Optional[str] = None
    is_active: Optional[bool] = None


PAYMENT_STATUSES = ("paid", "unpaid", "refunded", "failed")


class OrderPaymentUpdate(BaseModel):
    order_payment_status: str

    @field_validator("order_payment_status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in PAYMENT_STATUSES:
            raise ValueError(f"order_payment_status must be one of {PAYMENT_STATUSES}")
        return v


# ──────────────────────────────────────────────────────────────────────────────
# API Request / Response models
# ──────────────────────────────────────────────────────────────────────────────

class ListResponse(BaseModel):
    items: list[dict[str, Any]]
    count: int
    from_cache: bool
    request_id: Optional[str] = None


class DetailResponse(BaseModel):
    item: dict[str, Any]
    from_cache: bool
    request_id: Optional[str] = None


class MutationResponse(BaseModel):
    success: bool = True
    message: str
    id: int
    invalidated: int = 0
    request_id: Optional[str] = None
