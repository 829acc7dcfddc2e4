"""Sensitive access elevation and health break-glass.

Both are timestamps on the session row. Sensitive access unlocks
everything gated by ``require_sensitive_access`` until it expires or is
locked. Break-glass only unlocks the listed health profiles.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta
from urllib.parse import urlsplit

from groundwave.config import settings
from groundwave.db.models import WebSession, to_naive_utc, utcnow_naive

DEFAULT_NEXT = "/contacts"


def _now(now: datetime | None) -> datetime:
    return utcnow_naive() if now is None else to_naive_utc(now)


def has_sensitive_access(web_session: WebSession | None, now: datetime | None = None) -> bool:
    if web_session is None or web_session.sensitive_access_expires_at is None:
        return False
    return _now(now) < web_session.sensitive_access_expires_at


def grant_sensitive_access(
    web_session: WebSession,
    now: datetime | None = None,
    *,
    minutes: int | None = None,
) -> datetime:
    """Open the elevation window; returns its end."""
    window = timedelta(minutes=minutes or settings.sensitive_access_minutes)
    expires = _now(now) + window
    web_session.sensitive_access_expires_at = expires
    return expires


def lock_sensitive_access(web_session: WebSession) -> None:
    """End elevation and break-glass immediately."""
    web_session.sensitive_access_expires_at = None
    web_session.break_glass_profile_ids = []
    web_session.break_glass_expires_at = None


def grant_break_glass(
    web_session: WebSession,
    profile_ids: Iterable[str],
    now: datetime | None = None,
    *,
    minutes: int | None = None,
) -> datetime:
    window = timedelta(minutes=minutes or settings.break_glass_minutes)
    expires = _now(now) + window
    web_session.break_glass_profile_ids = sorted({p.strip() for p in profile_ids if p.strip()})
    web_session.break_glass_expires_at = expires
    return expires


def has_break_glass(
    web_session: WebSession | None,
    profile_id: str,
    now: datetime | None = None,
) -> bool:
    if web_session is None or web_session.break_glass_expires_at is None:
        return False
    if _now(now) >= web_session.break_glass_expires_at:
        return False
    return profile_id in (web_session.break_glass_profile_ids or [])


def can_access_health_profile(
    web_session: WebSession | None,
    profile_id: str | None,
    now: datetime | None = None,
) -> bool:
    """Global elevation, or an unexpired break-glass covering ``profile_id``."""
    if has_sensitive_access(web_session, now):
        return True
    return profile_id is not None and has_break_glass(web_session, profile_id, now)


def seconds_remaining(expires_at: datetime | None, now: datetime | None = None) -> int:
    if expires_at is None:
        return 0
    return max(0, int((expires_at - _now(now)).total_seconds()))


def sanitize_next(raw: str | None, default: str = DEFAULT_NEXT) -> str:
    """Reduce a redirect target to a same-site path.

    Absolute URLs keep only their path and query; anything containing a
    line break, protocol-relative (``//host``) or not rooted at ``/``
    falls back to ``default``.
    """
    value = (raw or "").strip()
    if not value:
        return default
    if "\n" in value or "\r" in value:
        return default

    if "://" in value:
        try:
            parts = urlsplit(value)
        except ValueError:
            return default
        path = parts.path or "/"
        if path.startswith("//"):
            return default
        return f"{path}?{parts.query}" if parts.query else path

    if not value.startswith("/") or value.startswith(("//", "/\\")):
        return default
    return value
