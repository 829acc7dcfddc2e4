"""Request-derived session metadata: device label, client IP, expiry text."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta

from user_agents import parse

UNKNOWN_DEVICE = "Unknown device"
# Family reported by ua-parser when nothing matched.
UNRECOGNIZED = "Other"


def parse_user_agent(user_agent: str | None) -> str:
    """Reduce a User-Agent header to ``"<OS> / <Browser>"``.

    Families come from the uap-core tables in ``user_agents``, e.g.
    ``Mac OS X / Chrome`` or ``iOS / Mobile Safari``.
    """
    if not user_agent:
        return UNKNOWN_DEVICE

    ua = parse(user_agent)
    os_name = ua.os.family if ua.os.family != UNRECOGNIZED else "Unknown OS"
    browser = ua.browser.family if ua.browser.family != UNRECOGNIZED else "Unknown browser"
    return f"{os_name} / {browser}"


def client_ip(
    headers: Mapping[str, str],
    peer: str | None,
    *,
    trust_forwarded: bool,
) -> str:
    """Best guess at the client address.

    Forwarding headers are only honoured when ``trust_forwarded`` is set
    (production, behind the reverse proxy); otherwise the socket peer wins.
    """
    if trust_forwarded:
        forwarded = (headers.get("x-forwarded-for") or "").strip()
        if forwarded:
            first = forwarded.split(",", 1)[0].strip()
            if first:
                return first
        real_ip = (headers.get("x-real-ip") or "").strip()
        if real_ip:
            return real_ip
    return peer or ""


def format_duration(remaining: timedelta) -> str:
    """Human readable time left, e.g. ``in 5d 10m``; negative is ``expired``."""
    if remaining < timedelta(0):
        return "expired"

    total_minutes = int(remaining.total_seconds()) // 60
    days, rest = divmod(total_minutes, 24 * 60)
    hours, minutes = divmod(rest, 60)

    parts: list[str] = []
    if days > 0:
        parts.append(f"{days}d")
        if hours > 0:
            parts.append(f"{hours}h")
        elif minutes > 0:
            parts.append(f"{minutes}m")
    elif hours > 0:
        parts.append(f"{hours}h")
        if minutes > 0:
            parts.append(f"{minutes}m")
    else:
        parts.append(f"{minutes}m")

    return "in " + " ".join(parts)
