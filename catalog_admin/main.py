"""
catalog_admin/main.py - FastAPI application entry point
Includes: lifespan wiring (cache registry, rate limiter, telemetry, catalog),
request id / timing middleware, security headers, error handlers.
"""

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from catalog_admin.clients.catalog_client import (
    CatalogClient,
    DataSourceError,
    InMemoryCatalogClient,
    NotFoundError,
)
from catalog_admin.config import PLACEHOLDER_SECRETS, Settings, get_settings
from catalog_admin.core.cache_manager import CacheRegistry
from catalog_admin.core.events import CacheEventBus, attach_logging_observer
from catalog_admin.core.logging import log_error, log_request, setup_logging
from catalog_admin.core.rate_limiter import (
    RateLimitExceededError,
    RateLimiter,
    limiter,
    rate_limit_headers,
)
from catalog_admin.core.telemetry import Telemetry
from catalog_admin.routers import api, dashboard
from catalog_admin.services.catalog_service import CatalogService
from catalog_admin.utils.client_ip import anonymize_ip, extract_real_ip


def _validate_env(settings: Settings) -> None:
    """Flag secrets still set to their placeholder values."""
    required = [
        ("api_key", "API_KEY"),
        ("dashboard_user", "DASHBOARD_USER"),
        ("dashboard_pass", "DASHBOARD_PASS"),
    ]
    missing = []
    for attr, env_name in required:
        val = getattr(settings, attr, None)
        if not val or val in PLACEHOLDER_SECRETS:
            missing.append(env_name)

    if missing:
        logger.critical(f"Missing or placeholder env vars: {', '.join(missing)}")
        logger.warning("Placeholder credentials are rejected; set them to enable dashboard auth.")


def init_state(
    app: FastAPI,
    settings: Settings,
    catalog_client: Optional[CatalogClient] = None,
) -> None:
    """Build the shared components once and hang them on app.state."""
    bus = CacheEventBus()
    attach_logging_observer(bus)
    telemetry = Telemetry(
        enabled=settings.telemetry_enabled,
        sample_rate=settings.telemetry_sample_rate,
        environment=settings.environment,
    )
    registry = CacheRegistry(settings=settings, observer=bus)
    client = catalog_client if catalog_client is not None else InMemoryCatalogClient(
        seed=settings.seed_catalog
    )

    app.state.settings = settings
    app.state.cache_events = bus
    app.state.telemetry = telemetry
    app.state.cache_registry = registry
    app.state.rate_limiter = RateLimiter.from_settings(settings, telemetry=telemetry)
    app.state.catalog_service = CatalogService(registry, client)


# ──────────────────────────────────────────────────────────────────────────────
# Application Lifespan
# ──────────────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    setup_logging(settings.log_level)
    logger.info("Catalog admin API starting up...")

    _validate_env(settings)

    logger.info("Startup complete.")
    yield
    cleared = app.state.cache_registry.reset()
    logger.info(f"Shutting down catalog admin API ({cleared} cache entries dropped).")


# ──────────────────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────────────────

def create_app(
    settings: Optional[Settings] = None,
    catalog_client: Optional[CatalogClient] = None,
) -> FastAPI:
    """
    Build the FastAPI app with its own registry, limiter and catalog.
    Tests pass their own settings and client to get an isolated instance.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="Catalog Admin API",
        description="Admin dashboard API for an e-commerce catalog with in-process caching and rate limiting.",
        version=api.VERSION,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        lifespan=lifespan,
    )
    init_state(app, settings, catalog_client)

    # ── Rate limiting: slowapi for operational endpoints ─────────────────────
    app.state.limiter = limiter
    app.add_exception_handler(
        RateLimitExceeded,
        lambda req, exc: JSONResponse(
            status_code=429,
            content={"error": "Rate limit exceeded. Slow down."},
        ),
    )
    app.add_middleware(SlowAPIMiddleware)

    # ── CORS ─────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=False,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["*"],
    )

    # ── Request id, timing and request log ───────────────────────────────────
    @app.middleware("http")
    async def add_request_context(request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            request_id=request_id,
            client_ip=anonymize_ip(extract_real_ip(request)),
        )
        return response

    # ── Security headers ─────────────────────────────────────────────────────
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # ── Error handlers ───────────────────────────────────────────────────────
    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError) -> JSONResponse:
        decision = exc.decision
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too Many Requests",
                "message": decision.message,
                "retry_after": decision.retry_after_seconds,
                "request_id": getattr(request.state, "request_id", None),
            },
            headers=rate_limit_headers(decision),
        )

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DataSourceError)
    async def handle_data_source_error(request: Request, exc: DataSourceError) -> JSONResponse:
        log_error("catalog", "data_source", exc, {"path": request.url.path})
        request.app.state.telemetry.capture_exception(
            exc,
            tags={"component": "catalog", "error_category": "data_source"},
            extra={"path": request.url.path, "client_ip": extract_real_ip(request)},
        )
        return JSONResponse(
            status_code=503,
            content={
                "detail": "Catalog data source unavailable. Please retry shortly.",
                "request_id": getattr(request.state, "request_id", None),
            },
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", None)
        log_error("http", "unhandled", exc, {"path": request.url.path, "request_id": request_id})
        request.app.state.telemetry.capture_exception(
            exc,
            tags={"component": "http"},
            extra={"path": request.url.path, "request_id": request_id},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "request_id": request_id},
        )

    # ── Routers ──────────────────────────────────────────────────────────────
    app.include_router(api.router, prefix="/api", tags=["api"])
    app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])

    return app


app = create_app()
