"""
catalog_admin/core/auth.py - Authentication for dashboard and stats routes
Accepts either an X-API-Key header or HTTP Basic Auth, checked against the
settings the app was built with. A credential still set to its placeholder
matches nothing.
"""
from __future__ import annotations

import base64
import binascii
import secrets
from typing import Optional

from fastapi import HTTPException, Request, status

from catalog_admin.config import PLACEHOLDER_SECRETS, Settings, get_settings


def _settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def _configured(secret: Optional[str]) -> bool:
    return bool(secret) and secret not in PLACEHOLDER_SECRETS


def _check_api_key(api_key: Optional[str], settings: Settings) -> bool:
    if not api_key or not _configured(settings.api_key):
        return False
    return secrets.compare_digest(
        api_key.encode("utf-8"), settings.api_key.encode("utf-8")
    )


def _check_basic_auth_from_header(
    authorization: Optional[str],
    settings: Settings,
) -> Optional[str]:
    """Parse and validate Basic Auth. Returns the username when valid."""
    if not authorization or not authorization.startswith("Basic "):
        return None
    if not settings.dashboard_user or not _configured(settings.dashboard_pass):
        return None
    try:
        decoded = base64.b64decode(authorization[6:], validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    username, _, password = decoded.partition(":")
    correct_username = secrets.compare_digest(
        username.encode("utf-8"),
        settings.dashboard_user.encode("utf-8"),
    )
    correct_password = secrets.compare_digest(
        password.encode("utf-8"),
        settings.dashboard_pass.encode("utf-8"),
    )
    return username if correct_username and correct_password else None


# ──────────────────────────────────────────────────────────────────────────────
# Dual Auth
# Used by every /api/dashboard route and the stats endpoints
# ──────────────────────────────────────────────────────────────────────────────

async def dual_auth(request: Request) -> bool:
    """
    Accept either API key OR Basic Auth.
    The authenticated principal is kept on request.state.principal.
    """
    settings = _settings(request)
    if _check_api_key(request.headers.get("X-API-Key"), settings):
        request.state.principal = "api_key"
        return True

    username = _check_basic_auth_from_header(request.headers.get("Authorization"), settings)
    if username:
        request.state.principal = f"basic:{username}"
        return True

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Provide X-API-Key header or HTTP Basic Auth.",
        headers={"WWW-Authenticate": "Basic"},
    )
