"""Browser session management.

Sessions live in ``web_sessions``. The cookie carries a random token and
only its SHA256 hash is stored, so a database read never yields a usable
cookie. A session has a hard ``absolute_expires_at`` that is never
extended; signing in additionally sets ``authenticated_expires_at`` (14
days when remembered, one hour otherwise) capped at the hard limit.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.config import settings
from groundwave.db.models import User, WebSession, to_naive_utc, utcnow_naive

log = structlog.get_logger()

SESSION_COOKIE = "groundwave_session"
SHORT_LOGIN_DURATION = timedelta(hours=1)
FLASH_KEY = "flash"
FLASH_KINDS = ("success", "info", "warning", "error")


def _now(now: datetime | None) -> datetime:
    return utcnow_naive() if now is None else to_naive_utc(now)


def session_lifetime() -> timedelta:
    return timedelta(days=settings.session_lifetime_days)


# =============================================================================
# Session data helpers
# =============================================================================


def session_get(web_session: WebSession, key: str, default: Any = None) -> Any:
    return (web_session.data or {}).get(key, default)


def session_set(web_session: WebSession, key: str, value: Any) -> None:
    # Reassign so the JSONB column is flagged dirty.
    web_session.data = {**(web_session.data or {}), key: value}


def session_pop(web_session: WebSession, *keys: str) -> None:
    data = dict(web_session.data or {})
    changed = False
    for key in keys:
        if key in data:
            del data[key]
            changed = True
    if changed:
        web_session.data = data


def add_flash(web_session: WebSession, kind: str, message: str) -> None:
    if kind not in FLASH_KINDS:
        kind = "info"
    flashes = list(session_get(web_session, FLASH_KEY, []))
    flashes.append({"kind": kind, "message": message})
    session_set(web_session, FLASH_KEY, flashes)


def pop_flashes(web_session: WebSession | None) -> list[dict[str, str]]:
    """Return pending flash messages and forget them."""
    if web_session is None:
        return []
    flashes = list(session_get(web_session, FLASH_KEY, []))
    if flashes:
        session_pop(web_session, FLASH_KEY)
    return flashes


# =============================================================================
# Authentication state
# =============================================================================


def is_authenticated(web_session: WebSession | None, now: datetime | None = None) -> bool:
    """True while the session is bound to a user inside both expiry windows."""
    if web_session is None or web_session.user_id is None:
        return False
    current = _now(now)
    if web_session.absolute_expires_at <= current:
        return False
    expires = web_session.authenticated_expires_at
    return expires is None or expires > current


def should_remember_login(raw: str | None) -> bool:
    """Remember unless the flag is explicitly negative."""
    value = (raw or "").strip().lower()
    return value not in ("0", "false", "off", "no")


class WebSessionManager:
    """Creates, authenticates and revokes browser sessions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @staticmethod
    def hash_token(token: str) -> str:
        """Create SHA256 hash of a token for storage."""
        return hashlib.sha256(token.encode()).hexdigest()

    @staticmethod
    def new_token() -> str:
        return secrets.token_urlsafe(32)

    async def create(self, *, now: datetime | None = None) -> tuple[WebSession, str]:
        """Create an anonymous session; returns the row and its cookie token."""
        current = _now(now)
        token = self.new_token()
        web_session = WebSession(
            token_hash=self.hash_token(token),
            created_at=current,
            last_activity_at=current,
            absolute_expires_at=current + session_lifetime(),
        )
        self._session.add(web_session)
        await self._session.flush()
        return web_session, token

    async def get_by_token(
        self, token: str, *, now: datetime | None = None
    ) -> WebSession | None:
        """Look up an unexpired session by raw cookie token."""
        if not token:
            return None
        result = await self._session.execute(
            select(WebSession)
            .where(col(WebSession.token_hash) == self.hash_token(token))
            .where(col(WebSession.absolute_expires_at) > _now(now))
        )
        return result.scalar_one_or_none()

    async def get(self, session_id: UUID) -> WebSession | None:
        return await self._session.get(WebSession, session_id)

    async def rotate(self, web_session: WebSession) -> str:
        """Issue a new token for the session; the old cookie stops working."""
        token = self.new_token()
        web_session.token_hash = self.hash_token(token)
        self._session.add(web_session)
        await self._session.flush()
        return token

    async def authenticate(
        self,
        web_session: WebSession,
        user: User,
        *,
        remember: bool = True,
        now: datetime | None = None,
    ) -> None:
        """Bind the session to ``user`` for the chosen sign-in window."""
        current = _now(now)
        window = session_lifetime() if remember else SHORT_LOGIN_DURATION
        web_session.user_id = user.id
        web_session.user_display_name = user.display_name
        web_session.authenticated_expires_at = min(
            current + window, web_session.absolute_expires_at
        )
        web_session.sensitive_access_expires_at = None
        web_session.break_glass_profile_ids = []
        web_session.break_glass_expires_at = None
        web_session.last_activity_at = current
        self._session.add(web_session)
        await self._session.flush()
        log.info("Session authenticated", user_id=str(user.id), remember=remember)

    def clear_authentication(self, web_session: WebSession) -> None:
        web_session.user_id = None
        web_session.user_display_name = None
        web_session.authenticated_expires_at = None
        web_session.sensitive_access_expires_at = None
        web_session.break_glass_profile_ids = []
        web_session.break_glass_expires_at = None
        self._session.add(web_session)

    def record_metadata(
        self,
        web_session: WebSession,
        *,
        device_label: str,
        ip_address: str,
        now: datetime | None = None,
    ) -> None:
        """Capture device and address of the current request."""
        if web_session.device_label != device_label:
            web_session.device_label = device_label
        if ip_address and web_session.ip_address != ip_address:
            web_session.ip_address = ip_address
        web_session.last_activity_at = _now(now)
        self._session.add(web_session)

    async def list_active(
        self,
        *,
        user_id: UUID | None = None,
        now: datetime | None = None,
    ) -> list[WebSession]:
        """Authenticated, unexpired sessions; all users when ``user_id`` is None."""
        current = _now(now)
        query = (
            select(WebSession)
            .where(col(WebSession.user_id).is_not(None))
            .where(col(WebSession.absolute_expires_at) > current)
            .order_by(col(WebSession.last_activity_at).desc())
        )
        if user_id is not None:
            query = query.where(col(WebSession.user_id) == user_id)

        result = await self._session.execute(query)
        return [s for s in result.scalars().all() if is_authenticated(s, current)]

    async def destroy(self, web_session: WebSession) -> None:
        await self._session.delete(web_session)
        await self._session.flush()

    async def invalidate(self, session_id: UUID) -> bool:
        """Delete one session immediately."""
        result = await self._session.execute(
            delete(WebSession).where(col(WebSession.id) == session_id)
        )
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def invalidate_others(
        self,
        current_id: UUID,
        *,
        user_id: UUID | None = None,
    ) -> int:
        """Delete every authenticated session except ``current_id``.

        Limited to ``user_id`` when given; administrators pass None to
        sign out all users.
        """
        query = (
            delete(WebSession)
            .where(col(WebSession.id) != current_id)
            .where(col(WebSession.user_id).is_not(None))
        )
        if user_id is not None:
            query = query.where(col(WebSession.user_id) == user_id)
        result = await self._session.execute(query)
        count = result.rowcount or 0  # type: ignore[attr-defined]
        log.info("Sessions invalidated", count=count, scope=str(user_id) if user_id else "all")
        return count

    async def gc(self, *, now: datetime | None = None) -> int:
        """Delete sessions past their absolute expiry."""
        result = await self._session.execute(
            delete(WebSession).where(col(WebSession.absolute_expires_at) <= _now(now))
        )
        count = result.rowcount or 0  # type: ignore[attr-defined]
        log.info("Expired sessions removed", count=count)
        return count
