"""
catalog_admin/core/telemetry.py - Error-reporting sink
capture_message / capture_exception are fire-and-forget: they scrub sensitive
fields, anonymise IPs, and write one structured record through loguru.
They never raise into the caller.
"""
from __future__ import annotations

import json
import random
import traceback
from typing import Any, Callable, Optional

from loguru import logger

from catalog_admin.core.logging import _build_log_record
from catalog_admin.utils.client_ip import anonymize_ip

SENSITIVE_KEYS = (
    "password",
    "passwd",
    "token",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "cookie",
    "session",
    "email",
    "phone",
    "credit_card",
)

_IP_KEYS = ("ip", "client_ip", "remote_addr", "x-forwarded-for")

REDACTED = "[REDACTED]"

_LEVELS = {"debug", "info", "warning", "error", "critical"}


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def scrub(data: Any) -> Any:
    """Recursively redact sensitive keys and anonymise IP fields."""
    if isinstance(data, dict):
        cleaned: dict[str, Any] = {}
        for key, value in data.items():
            name = str(key)
            if _is_sensitive(name):
                cleaned[name] = REDACTED
            elif name.lower() in _IP_KEYS and isinstance(value, str):
                cleaned[name] = anonymize_ip(value)
            else:
                cleaned[name] = scrub(value)
        return cleaned
    if isinstance(data, (list, tuple)):
        return [scrub(item) for item in data]
    return data


class Telemetry:
    """Loguru-backed reporting sink shared by the limiter and the app handlers."""

    def __init__(
        self,
        enabled: bool = True,
        sample_rate: float = 1.0,
        environment: str = "development",
        sampler: Optional[Callable[[], float]] = None,
    ) -> None:
        self.enabled = enabled
        self.sample_rate = sample_rate
        self.environment = environment
        self._sampler = sampler or random.random
        self.captured = 0

    def _should_send(self) -> bool:
        if not self.enabled:
            return False
        if self.sample_rate >= 1.0:
            return True
        return self._sampler() < self.sample_rate

    def _write(self, level: str, record: dict[str, Any]) -> None:
        level = level.lower() if level.lower() in _LEVELS else "error"
        getattr(logger, level)(json.dumps(record, default=str))
        self.captured += 1

    def capture_message(
        self,
        message: str,
        level: str = "info",
        tags: Optional[dict[str, str]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            if not self._should_send():
                return
            record = _build_log_record("telemetry", "capture_message", {
                "message": message,
                "level": level,
                "environment": self.environment,
                "tags": tags or {},
                "extra": scrub(extra or {}),
            })
            self._write(level, record)
        except Exception as exc:  # noqa: BLE001 - reporting must never raise
            logger.warning(f"Telemetry capture_message failed: {exc}")

    def capture_exception(
        self,
        error: BaseException,
        level: str = "error",
        tags: Optional[dict[str, str]] = None,
        extra: Optional[dict[str, Any]] = None,
    ) -> None:
        try:
            if not self._should_send():
                return
            tb = "".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            )
            record = _build_log_record("telemetry", "capture_exception", {
                "error_type": type(error).__name__,
                "error_message": str(error),
                "stack_trace": tb[:2000],
                "level": level,
                "environment": self.environment,
                "tags": tags or {},
                "extra": scrub(extra or {}),
            })
            self._write(level, record)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Telemetry capture_exception failed: {exc}")
