"""
catalog_admin/utils/client_ip.py - Client IP extraction and anonymisation
"""
from __future__ import annotations

import ipaddress
from typing import Optional

from slowapi.util import get_remote_address
from starlette.requests import Request

UNKNOWN_CLIENT = "unknown"

# Checked in order; the first non-empty header wins
_FORWARD_HEADERS = ("cf-connecting-ip", "x-forwarded-for", "x-real-ip")


def normalize_ip(raw: Optional[str]) -> Optional[str]:
    """Trim whitespace and strip the IPv4-mapped IPv6 prefix."""
    if not raw:
        return None
    ip = raw.strip()
    if ip.lower().startswith("::ffff:"):
        ip = ip[7:]
    return ip or None


def forwarded_ip(request: Request) -> Optional[str]:
    """
    Client IP claimed by proxy headers: CF-Connecting-IP, then the first
    X-Forwarded-For hop, then X-Real-IP. Callers can set these freely.
    """
    for header in _FORWARD_HEADERS:
        value = request.headers.get(header)
        if not value:
            continue
        if header == "x-forwarded-for":
            value = value.split(",")[0]
        ip = normalize_ip(value)
        if ip:
            return ip
    return None


def peer_ip(request: Request) -> Optional[str]:
    """Socket peer address, or None when the server reports none."""
    # get_remote_address substitutes 127.0.0.1 for a missing peer, which
    # would land in the whitelist
    if request.client is None or not request.client.host:
        return None
    return normalize_ip(get_remote_address(request))


def extract_real_ip(request: Request) -> str:
    """
    Resolve the client IP behind proxies: the forwarded headers first, then
    the socket peer. Never raises; "unknown" when nothing is available.
    """
    return forwarded_ip(request) or peer_ip(request) or UNKNOWN_CLIENT


def anonymize_ip(ip: Optional[str]) -> str:
    """
    Mask the host part of an address for logs and telemetry.
    IPv4 keeps the first three octets, IPv6 keeps the first four groups.
    """
    if not ip:
        return UNKNOWN_CLIENT
    try:
        parsed = ipaddress.ip_address(ip)
    except ValueError:
        return UNKNOWN_CLIENT

    if parsed.version == 4:
        octets = str(parsed).split(".")
        return ".".join(octets[:3] + ["xxx"])

    groups = parsed.exploded.split(":")
    return ":".join(g.lstrip("0") or "0" for g in groups[:4]) + "::xxx"
