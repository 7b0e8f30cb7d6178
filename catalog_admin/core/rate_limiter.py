"""
catalog_admin/core/rate_limiter.py - Rate limiting for the dashboard API

Two layers:
  * slowapi `limiter` guards the operational endpoints (health, ping, stats)
    with decorator strings, keyed by remote address.
  * `RateLimiter` is a fixed-window counter per route class used by the
    dashboard routes through `RateLimitGuard`. Its storage is injectable and
    any storage failure fails open.
"""
from __future__ import annotations

import math
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Iterable, Optional, Protocol, Union

from fastapi import Request, Response
from limits import parse as parse_limit
from loguru import logger
from slowapi import Limiter
from slowapi.util import get_remote_address

from catalog_admin.config import Settings, get_settings
from catalog_admin.core.logging import log_error, log_rate_limit_decision
from catalog_admin.core.telemetry import Telemetry
from catalog_admin.models import (
    RateLimitDecision,
    RateLimitPolicy,
    RateLimitStats,
    RateLimitWindow,
    RouteClass,
)
from catalog_admin.utils.client_ip import anonymize_ip, extract_real_ip, forwarded_ip

Clock = Callable[[], float]

# Shared slowapi limiter for operational endpoints, imported by main.py and routers
limiter = Limiter(key_func=get_remote_address)

RATE_LIMITS = {
    "health": "30/minute",
    "ping": "60/minute",
    "stats": "20/minute",
}


# ──────────────────────────────────────────────────────────────────────────────
# Route class presets
# ──────────────────────────────────────────────────────────────────────────────

ROUTE_CLASS_LIMITS: dict[RouteClass, str] = {
    # Login / register: strictest
    RouteClass.AUTH_ENDPOINTS: "5 per 5 minutes",
    RouteClass.AUTHENTICATED_API: "60 per 1 minute",
    RouteClass.CONTENT_API: "10 per 5 minutes",
    RouteClass.IMAGE_UPLOAD: "20 per 5 minutes",
    RouteClass.PUBLIC_API: "30 per 1 minute",
}

ROUTE_CLASS_MESSAGES: dict[RouteClass, str] = {
    RouteClass.AUTH_ENDPOINTS: "Too many authentication attempts, please try again later.",
    RouteClass.AUTHENTICATED_API: "Too many requests, please try again later.",
    RouteClass.CONTENT_API: "Too many content requests, please try again later.",
    RouteClass.IMAGE_UPLOAD: "Too many image uploads, please try again later.",
    RouteClass.PUBLIC_API: "Too many requests, please try again later.",
}


def parse_policy(limit_string: str, message: Optional[str] = None) -> RateLimitPolicy:
    """Turn a limits string ("10 per 5 minutes", "30/minute") into a policy."""
    item = parse_limit(limit_string)
    policy = RateLimitPolicy(limit=item.amount, window_seconds=item.get_expiry())
    if message:
        policy.message = message
    return policy


def build_policies(settings: Optional[Settings] = None) -> dict[RouteClass, RateLimitPolicy]:
    """Presets merged with settings.rate_limit_overrides. Bad strings raise ValueError."""
    settings = settings or get_settings()
    limits_by_class = dict(ROUTE_CLASS_LIMITS)
    for name, limit_string in settings.rate_limit_overrides.items():
        try:
            limits_by_class[RouteClass(name.upper())] = limit_string
        except ValueError:
            logger.warning(f"Ignoring rate limit override for unknown route class: {name}")
    return {
        route_class: parse_policy(limit_string, ROUTE_CLASS_MESSAGES.get(route_class))
        for route_class, limit_string in limits_by_class.items()
    }


# ──────────────────────────────────────────────────────────────────────────────
# Identity keys
# ──────────────────────────────────────────────────────────────────────────────

def build_identity_key(
    prefix: str,
    client_ip: Optional[str],
    session_id: Optional[str] = None,
    resource_id: Optional[Any] = None,
) -> str:
    """prefix:ip:<ip>[:user:<session>][:resource:<id>]"""
    key = f"{prefix}:ip:{client_ip or 'unknown'}"
    if session_id:
        key += f":user:{session_id}"
    if resource_id is not None:
        key += f":resource:{resource_id}"
    return key


def resource_key(prefix: str, resource_id: Any) -> str:
    """Shared by every client touching the same record."""
    return f"{prefix}:resource:{resource_id}"


# ──────────────────────────────────────────────────────────────────────────────
# Window storage
# ──────────────────────────────────────────────────────────────────────────────

class WindowStorage(Protocol):
    def get(self, key: str) -> Optional[RateLimitWindow]: ...
    def set(self, key: str, window: RateLimitWindow) -> None: ...
    def delete(self, key: str) -> bool: ...
    def keys(self) -> list[str]: ...
    def evict_oldest(self) -> Optional[str]: ...
    def clear(self) -> int: ...
    def __len__(self) -> int: ...


class InMemoryWindowStorage:
    """OrderedDict of windows; a restarted window moves to the end."""

    def __init__(self) -> None:
        self._windows: OrderedDict[str, RateLimitWindow] = OrderedDict()

    def get(self, key: str) -> Optional[RateLimitWindow]:
        return self._windows.get(key)

    def set(self, key: str, window: RateLimitWindow) -> None:
        current = self._windows.get(key)
        if current is not None and current.window_start != window.window_start:
            del self._windows[key]
        self._windows[key] = window

    def delete(self, key: str) -> bool:
        return self._windows.pop(key, None) is not None

    def keys(self) -> list[str]:
        return list(self._windows)

    def evict_oldest(self) -> Optional[str]:
        if not self._windows:
            return None
        key, _ = self._windows.popitem(last=False)
        return key

    def clear(self) -> int:
        count = len(self._windows)
        self._windows.clear()
        return count

    def __len__(self) -> int:
        return len(self._windows)


# ──────────────────────────────────────────────────────────────────────────────
# Limiter
# ──────────────────────────────────────────────────────────────────────────────

class RateLimiter:
    def __init__(
        self,
        policies: Optional[dict[RouteClass, RateLimitPolicy]] = None,
        storage: Optional[WindowStorage] = None,
        clock: Clock = time.monotonic,
        telemetry: Optional[Telemetry] = None,
        whitelist: Iterable[str] = (),
        max_tracked_keys: int = 10_000,
    ) -> None:
        self.policies = policies if policies is not None else build_policies()
        self._storage: WindowStorage = storage if storage is not None else InMemoryWindowStorage()
        self._clock = clock
        self._telemetry = telemetry or Telemetry(enabled=False)
        self.whitelist = frozenset(whitelist)
        self.max_tracked_keys = max_tracked_keys
        self._lock = threading.Lock()
        self._denied_total = 0
        self._errors_total = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        telemetry: Optional[Telemetry] = None,
        clock: Clock = time.monotonic,
        storage: Optional[WindowStorage] = None,
    ) -> "RateLimiter":
        return cls(
            policies=build_policies(settings),
            storage=storage,
            clock=clock,
            telemetry=telemetry,
            whitelist=settings.rate_limit_whitelist,
            max_tracked_keys=settings.rate_limit_max_tracked_keys,
        )

    def is_whitelisted(self, client_ip: Optional[str]) -> bool:
        return bool(client_ip) and client_ip in self.whitelist

    def check(
        self,
        route_class: Union[RouteClass, str],
        identity_key: str,
        client_ip: Optional[str] = None,
        allow_whitelist: bool = True,
    ) -> RateLimitDecision:
        """
        Count one request against identity_key's window.
        The whitelist only applies when allow_whitelist is set; client_ip is
        otherwise just reported. Never raises: a storage failure returns an
        allowed decision with error set.
        """
        try:
            route_class = RouteClass(route_class)
            policy = self.policies[route_class]
            if allow_whitelist and self.is_whitelisted(client_ip):
                return RateLimitDecision(
                    allowed=True,
                    route_class=route_class,
                    identity_key=identity_key,
                    limit=policy.limit,
                    remaining=policy.limit,
                )
            with self._lock:
                decision = self._count(route_class, policy, identity_key)
        except Exception as exc:  # noqa: BLE001
            return self._fail_open(route_class, identity_key, exc)

        log_rate_limit_decision(
            route_class=decision.route_class.value if decision.route_class else "",
            identity_key=identity_key,
            allowed=decision.allowed,
            remaining=decision.remaining,
            retry_after_seconds=decision.retry_after_seconds,
        )
        if not decision.allowed:
            with self._lock:
                self._denied_total += 1
            self._telemetry.capture_message(
                "Rate limit exceeded",
                level="warning",
                tags={"component": "rate_limiter", "route_class": route_class.value},
                extra={
                    "identity_key": identity_key,
                    "ip": client_ip,
                    "limit": decision.limit,
                    "retry_after_seconds": decision.retry_after_seconds,
                },
            )
        return decision

    def _count(
        self,
        route_class: RouteClass,
        policy: RateLimitPolicy,
        identity_key: str,
    ) -> RateLimitDecision:
        """Fixed-window step. Caller holds the lock."""
        now = self._clock()
        window = self._storage.get(identity_key)

        if window is None or window.is_expired(now):
            window = RateLimitWindow(
                identity_key=identity_key,
                window_start=now,
                count=1,
                limit=policy.limit,
                window_seconds=policy.window_seconds,
            )
            self._storage.set(identity_key, window)
            self._enforce_bound(now)
        else:
            window = window.model_copy(update={"count": window.count + 1})
            self._storage.set(identity_key, window)

        reset_at = window.window_start + window.window_seconds
        reset_in = max(1, math.ceil(reset_at - now))

        if window.count > window.limit:
            return RateLimitDecision(
                allowed=False,
                route_class=route_class,
                identity_key=identity_key,
                limit=window.limit,
                remaining=0,
                retry_after_seconds=reset_in,
                reset_at=reset_at,
                reset_in_seconds=reset_in,
                message=policy.message,
            )
        return RateLimitDecision(
            allowed=True,
            route_class=route_class,
            identity_key=identity_key,
            limit=window.limit,
            remaining=window.limit - window.count,
            reset_at=reset_at,
            reset_in_seconds=reset_in,
        )

    def _enforce_bound(self, now: float) -> None:
        if len(self._storage) <= self.max_tracked_keys:
            return
        for key in self._storage.keys():
            window = self._storage.get(key)
            if window is not None and window.is_expired(now):
                self._storage.delete(key)
        while len(self._storage) > self.max_tracked_keys:
            if self._storage.evict_oldest() is None:
                break

    def _fail_open(
        self,
        route_class: Union[RouteClass, str],
        identity_key: str,
        error: Exception,
    ) -> RateLimitDecision:
        with self._lock:
            self._errors_total += 1
        context = {"route_class": str(route_class), "identity_key": identity_key}
        log_error("rate_limiter", "check", error, context)
        self._telemetry.capture_exception(
            error,
            tags={"component": "rate_limiter", "action": "fail_open"},
            extra=context,
        )
        return RateLimitDecision.fail_open(
            route_class if isinstance(route_class, RouteClass) else None,
            identity_key,
            error,
        )

    # ── Maintenance ───────────────────────────────────────────────────────────

    def reset(self, identity_key: Optional[str] = None) -> int:
        """Forget one identity's window, or every window when no key is given."""
        with self._lock:
            if identity_key is None:
                return self._storage.clear()
            return int(self._storage.delete(identity_key))

    def purge_expired(self) -> int:
        removed = 0
        with self._lock:
            now = self._clock()
            for key in self._storage.keys():
                window = self._storage.get(key)
                if window is not None and window.is_expired(now):
                    self._storage.delete(key)
                    removed += 1
        return removed

    def stats(self) -> RateLimitStats:
        with self._lock:
            return RateLimitStats(
                active_windows=len(self._storage),
                whitelisted_ips=len(self.whitelist),
                denied_total=self._denied_total,
                errors_total=self._errors_total,
                policies={rc.value: p for rc, p in self.policies.items()},
            )


# ──────────────────────────────────────────────────────────────────────────────
# FastAPI integration
# ──────────────────────────────────────────────────────────────────────────────

class RateLimitExceededError(Exception):
    def __init__(self, decision: RateLimitDecision) -> None:
        self.decision = decision
        super().__init__(decision.message or "Rate limit exceeded")


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    if decision.limit is None:
        return {}
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining or 0),
    }
    if decision.reset_in_seconds is not None:
        headers["X-RateLimit-Reset"] = str(decision.reset_in_seconds)
    if not decision.allowed and decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


class RateLimitGuard:
    """
    Route dependency: Depends(RateLimitGuard(RouteClass.CONTENT_API, "delete_template", "item_id")).
    Checks the per-client key and, when resource_param names a path
    parameter, a per-resource key shared across clients.
    """

    def __init__(
        self,
        route_class: RouteClass,
        prefix: str,
        resource_param: Optional[str] = None,
    ) -> None:
        self.route_class = route_class
        self.prefix = prefix
        self.resource_param = resource_param

    def __call__(self, request: Request, response: Response) -> RateLimitDecision:
        rate_limiter: RateLimiter = request.app.state.rate_limiter
        client_ip = extract_real_ip(request)
        # Forwarded headers are caller-controlled: only a socket peer can be whitelisted
        peer_resolved = forwarded_ip(request) is None

        # (key, whitelist applies)
        keys = [(build_identity_key(self.prefix, client_ip), peer_resolved)]
        if self.resource_param:
            resource_id = request.path_params.get(self.resource_param)
            if resource_id is not None:
                keys.append((resource_key(self.prefix, resource_id), False))

        reported: Optional[RateLimitDecision] = None
        for key, allow_whitelist in keys:
            decision = rate_limiter.check(
                self.route_class, key, client_ip, allow_whitelist=allow_whitelist,
            )
            if not decision.allowed:
                logger.warning(
                    f"Rate limit exceeded: {self.route_class.value} "
                    f"ip={anonymize_ip(client_ip)} key={self.prefix}"
                )
                raise RateLimitExceededError(decision)
            if reported is None or (
                decision.remaining is not None
                and (reported.remaining is None or decision.remaining < reported.remaining)
            ):
                reported = decision

        if reported is not None:
            for name, value in rate_limit_headers(reported).items():
                response.headers[name] = value
            request.state.rate_limit = reported
        return reported
