"""
catalog_admin/core/logging.py - loguru structured JSON logging setup
Cache events, invalidations, rate-limit decisions, request lines and errors
are all emitted as one JSON object per line on stdout.
"""
from __future__ import annotations

import json
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

from loguru import logger


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure loguru for structured JSON output to stdout.
    Safe to call more than once; the previous handlers are dropped.
    """
    logger.remove()

    logger.add(
        sys.stdout,
        level=log_level.upper(),
        format="{message}",  # records are pre-built JSON strings
        serialize=True,
        backtrace=True,
        diagnose=False,
        colorize=False,
    )


def _build_log_record(
    component: str,
    operation: str,
    extra: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Build a base structured log record."""
    record: dict[str, Any] = {
        "timestamp": datetime.utcnow().isoformat() + "Z",
        "component": component,
        "operation": operation,
    }
    if extra:
        record.update(extra)
    return record


# ──────────────────────────────────────────────────────────────────────────────
# Log event helpers
# ──────────────────────────────────────────────────────────────────────────────

def log_cache_event(
    cache: Optional[str],
    outcome: str,
    key: Optional[str] = None,
    size: Optional[int] = None,
    error: Optional[str] = None,
    entity: Optional[str] = None,
) -> None:
    """Per-key traffic goes to DEBUG, clears to INFO, failures to WARNING."""
    record = _build_log_record("dashboard_cache", outcome, {
        "cache": cache,
        "entity": entity,
        "key": key,
        "size": size,
        "error": error,
    })
    if error:
        logger.warning(json.dumps(record))
    elif outcome == "clear":
        logger.info(json.dumps(record))
    else:
        logger.debug(json.dumps(record))


def log_invalidation(
    entity: str,
    entity_id: Optional[str],
    invalidated: int,
    caches: list[str],
) -> None:
    record = _build_log_record("dashboard_cache", "invalidate", {
        "entity": entity,
        "entity_id": entity_id,
        "invalidated": invalidated,
        "caches": caches,
    })
    logger.info(json.dumps(record))


def log_rate_limit_decision(
    route_class: str,
    identity_key: str,
    allowed: bool,
    remaining: Optional[int] = None,
    retry_after_seconds: Optional[int] = None,
) -> None:
    """Denials are logged at WARNING, allowed checks at DEBUG."""
    record = _build_log_record("rate_limiter", "check", {
        "route_class": route_class,
        "identity_key": identity_key,
        "allowed": allowed,
        "remaining": remaining,
        "retry_after_seconds": retry_after_seconds,
    })
    if allowed:
        logger.debug(json.dumps(record))
    else:
        logger.warning(json.dumps(record))


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    request_id: str,
    client_ip: Optional[str] = None,
) -> None:
    record = _build_log_record("http", "request", {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration_ms, 2),
        "request_id": request_id,
        "client_ip": client_ip,
    })
    logger.info(json.dumps(record))


def log_error(
    component: str,
    operation: str,
    error: Exception,
    context: Optional[dict[str, Any]] = None,
) -> None:
    """Every error is logged with its type, message, truncated trace and context."""
    tb = traceback.format_exc()
    record = _build_log_record(component, operation, {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "stack_trace": tb[:2000] if tb else "",
        "context": context or {},
    })
    logger.error(json.dumps(record, default=str))
