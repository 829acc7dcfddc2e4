"""Invites and first-user setup.

An invite is a one-shot token an administrator hands out as a setup
link. Setup (bootstrap or invite) creates the user and their first
passkey in one transaction.
"""

from __future__ import annotations

import base64
import secrets
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote
from uuid import UUID

import structlog
from sqlalchemy import delete, text, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.auth.users import UserManager
from groundwave.config import settings
from groundwave.db.models import User, UserInvite, UserRole, to_naive_utc, utcnow_naive
from groundwave.errors import GroundwaveError, NotFoundError
from groundwave.whatsapp.qr import render_qr_base64

log = structlog.get_logger()

INVITE_TOKEN_BYTES = 32
DEFAULT_INVITE_NAME = "New user"

# Arbitrary key serialising concurrent setup transactions.
SETUP_LOCK_KEY = 0x67776E64


class SetupAlreadyCompletedError(GroundwaveError):
    """Bootstrap setup was attempted after a user already exists."""

    def __init__(self) -> None:
        super().__init__("setup already completed")


class InviteInvalidOrUsedError(GroundwaveError):
    """The invite was deleted or consumed before setup finished."""

    def __init__(self) -> None:
        super().__init__("invite is no longer valid")


def generate_invite_token() -> str:
    """32 random bytes, base64url without padding."""
    raw = secrets.token_bytes(INVITE_TOKEN_BYTES)
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def invite_setup_url(token: str, base_url: str | None = None) -> str:
    base = (settings.groundwave_base_url if base_url is None else base_url).rstrip("/")
    return f"{base}/setup?token={quote(token, safe='')}"


@dataclass
class InviteView:
    """Display data for a pending invite."""

    id: UUID
    display_name: str
    created_at: datetime
    setup_url: str
    qr_base64: str


def invite_view(invite: UserInvite, base_url: str | None = None) -> InviteView:
    url = invite_setup_url(invite.token, base_url)
    return InviteView(
        id=invite.id,
        display_name=(invite.display_name or "").strip() or DEFAULT_INVITE_NAME,
        created_at=invite.created_at,
        setup_url=url,
        qr_base64=render_qr_base64(url),
    )


@dataclass
class NewPasskey:
    """Verified registration output ready to be stored."""

    credential_id: bytes
    public_key: bytes
    sign_count: int
    transports: list[str]
    label: str | None = None


class InviteManager:
    """Issue, rotate and consume invites."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        created_by: UUID | None,
        display_name: str | None = None,
        role: UserRole = UserRole.MEMBER,
    ) -> UserInvite:
        invite = UserInvite(
            token=generate_invite_token(),
            display_name=(display_name or "").strip() or None,
            target_role=role,
            created_by=created_by,
        )
        self._session.add(invite)
        await self._session.flush()
        log.info("Invite created", invite_id=str(invite.id), role=str(role))
        return invite

    async def list_pending(self) -> list[UserInvite]:
        result = await self._session.execute(
            select(UserInvite)
            .where(col(UserInvite.used_at).is_(None))
            .order_by(col(UserInvite.created_at).desc())
        )
        return list(result.scalars().all())

    async def get(self, invite_id: UUID) -> UserInvite | None:
        return await self._session.get(UserInvite, invite_id)

    async def get_pending_by_token(self, token: str) -> UserInvite | None:
        if not token:
            return None
        result = await self._session.execute(
            select(UserInvite)
            .where(col(UserInvite.token) == token)
            .where(col(UserInvite.used_at).is_(None))
        )
        return result.scalar_one_or_none()

    async def regenerate(self, invite_id: UUID) -> UserInvite:
        """Replace the token of a pending invite; the old link stops working."""
        invite = await self.get(invite_id)
        if invite is None or invite.is_consumed:
            raise NotFoundError("Invite", str(invite_id))
        invite.token = generate_invite_token()
        self._session.add(invite)
        await self._session.flush()
        log.info("Invite regenerated", invite_id=str(invite_id))
        return invite

    async def delete(self, invite_id: UUID) -> None:
        """Delete a pending invite. Consumed invites are kept as history."""
        result = await self._session.execute(
            delete(UserInvite)
            .where(col(UserInvite.id) == invite_id)
            .where(col(UserInvite.used_at).is_(None))
        )
        if not result.rowcount:  # type: ignore[attr-defined]
            raise NotFoundError("Invite", str(invite_id))
        log.info("Invite revoked", invite_id=str(invite_id))

    async def mark_used(self, invite_id: UUID, *, now: datetime | None = None) -> None:
        """Consume the invite exactly once.

        Raises:
            InviteInvalidOrUsedError: if it was deleted or already used.
        """
        used_at = utcnow_naive() if now is None else to_naive_utc(now)
        result = await self._session.execute(
            update(UserInvite)
            .where(col(UserInvite.id) == invite_id)
            .where(col(UserInvite.used_at).is_(None))
            .values(used_at=used_at)
        )
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise InviteInvalidOrUsedError()

    async def finalize_setup(
        self,
        *,
        user_id: UUID,
        display_name: str,
        passkey: NewPasskey,
        is_bootstrap: bool,
        invite_id: UUID | None = None,
    ) -> User:
        """Create the user and their first passkey.

        Bootstrap setup only succeeds while no user exists and makes an
        administrator. Invite setup consumes the invite and takes its role.
        Runs inside the caller's transaction; any error rolls it all back.

        Raises:
            SetupAlreadyCompletedError: bootstrap with existing users.
            InviteInvalidOrUsedError: invite missing, deleted or consumed.
        """
        await self._session.execute(
            text("SELECT pg_advisory_xact_lock(:key)"), {"key": SETUP_LOCK_KEY}
        )

        users = UserManager(self._session)
        if is_bootstrap:
            if await users.count() > 0:
                raise SetupAlreadyCompletedError()
            is_admin = True
        else:
            if invite_id is None:
                raise InviteInvalidOrUsedError()
            invite = await self.get(invite_id)
            if invite is None:
                raise InviteInvalidOrUsedError()
            await self.mark_used(invite_id)
            is_admin = invite.target_role == UserRole.ADMIN

        user = await users.create(display_name=display_name, is_admin=is_admin, user_id=user_id)
        await users.add_passkey(
            user.id,
            credential_id=passkey.credential_id,
            public_key=passkey.public_key,
            sign_count=passkey.sign_count,
            transports=passkey.transports,
            label=passkey.label,
        )
        log.info(
            "Setup finalized",
            user_id=str(user.id),
            bootstrap=is_bootstrap,
            invite_id=str(invite_id) if invite_id else None,
        )
        return user
