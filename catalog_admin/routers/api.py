"""
catalog_admin/routers/api.py - Operational endpoints
Endpoints: /api/health, /api/ping, /api/cache/stats, /api/rate-limit/stats
Guarded by the slowapi limiter; the stats endpoints also require dual auth.
"""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from loguru import logger

from catalog_admin.core.auth import dual_auth
from catalog_admin.core.rate_limiter import RATE_LIMITS, limiter
from catalog_admin.models import RateLimitStats, RegistryStats

router = APIRouter()

VERSION = "1.0.0"


# ──────────────────────────────────────────────────────────────────────────────
# GET /api/health
# Public endpoint - no auth required
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/health")
@limiter.limit(RATE_LIMITS["health"])
async def health_check(request: Request) -> dict[str, Any]:
    """
    Reports whether the cache registry, rate limiter and catalog are wired.
    The in-process components have no remote dependency, so "degraded"
    only means startup did not complete.
    """
    checks: dict[str, Any] = {}
    state = request.app.state

    registry = getattr(state, "cache_registry", None)
    checks["cache_registry"] = registry is not None
    if registry is not None:
        checks["cache_entries"] = registry.stats().total_entries

    rate_limiter = getattr(state, "rate_limiter", None)
    checks["rate_limiter"] = rate_limiter is not None

    checks["catalog"] = getattr(state, "catalog_service", None) is not None

    healthy = all(checks[name] for name in ("cache_registry", "rate_limiter", "catalog"))
    return {
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.utcnow().isoformat() + "Z",
    }


@router.get("/ping")
@limiter.limit(RATE_LIMITS["ping"])
async def ping(request: Request) -> dict[str, str]:
    """Keep-alive. Touches nothing."""
    return {"status": "ok", "version": VERSION}


# ──────────────────────────────────────────────────────────────────────────────
# Stats - dual auth
# ──────────────────────────────────────────────────────────────────────────────

@router.get("/cache/stats", response_model=RegistryStats)
@limiter.limit(RATE_LIMITS["stats"])
async def cache_stats(
    request: Request,
    _auth: bool = Depends(dual_auth),
) -> RegistryStats:
    try:
        return request.app.state.cache_registry.stats()
    except Exception as exc:
        logger.error(f"Cache stats endpoint error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Cache stats unavailable: {str(exc)}",
        )


@router.get("/rate-limit/stats", response_model=RateLimitStats)
@limiter.limit(RATE_LIMITS["stats"])
async def rate_limit_stats(
    request: Request,
    _auth: bool = Depends(dual_auth),
) -> RateLimitStats:
    try:
        return request.app.state.rate_limiter.stats()
    except Exception as exc:
        logger.error(f"Rate limit stats endpoint error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Rate limit stats unavailable: {str(exc)}",
        )
