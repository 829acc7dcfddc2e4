"""Users, their passkeys and health profile shares."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

import structlog
from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from groundwave.db.models import (
    HealthProfile,
    HealthProfileShare,
    User,
    UserPasskey,
    to_naive_utc,
    utcnow_naive,
)
from groundwave.errors import AuthenticationError, NotFoundError, ValidationError

log = structlog.get_logger()


def sign_count_acceptable(stored: int, received: int) -> bool:
    """Authenticators that count must move forward; both zero means no counter."""
    if stored == 0 and received == 0:
        return True
    return received > stored


@dataclass
class PasskeyInfo:
    id: UUID
    label: str
    created_at: datetime
    last_used_at: datetime | None


def passkey_infos(passkeys: Iterable[UserPasskey]) -> list[PasskeyInfo]:
    """Display rows; unlabeled passkeys become ``Passkey N`` by position."""
    infos = []
    for i, passkey in enumerate(passkeys, start=1):
        label = (passkey.label or "").strip() or f"Passkey {i}"
        infos.append(
            PasskeyInfo(
                id=passkey.id,
                label=label,
                created_at=passkey.created_at,
                last_used_at=passkey.last_used_at,
            )
        )
    return infos


class UserManager:
    """CRUD helpers for `User` and `UserPasskey`."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(User))
        return int(result.scalar_one())

    async def get(self, user_id: UUID) -> User | None:
        return await self._session.get(User, user_id)

    async def require(self, user_id: UUID) -> User:
        user = await self.get(user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    async def list_users(self) -> list[User]:
        result = await self._session.execute(select(User).order_by(col(User.created_at)))
        return list(result.scalars().all())

    async def create(
        self,
        *,
        display_name: str,
        is_admin: bool = False,
        user_id: UUID | None = None,
    ) -> User:
        name = display_name.strip()
        if not name:
            raise ValidationError("display name is required")
        user = User(display_name=name, is_admin=is_admin)
        if user_id is not None:
            user.id = user_id
        self._session.add(user)
        await self._session.flush()
        log.info("User created", user_id=str(user.id), is_admin=is_admin)
        return user

    # -------------------------------------------------------------------------
    # Passkeys
    # -------------------------------------------------------------------------

    async def list_passkeys(self, user_id: UUID) -> list[UserPasskey]:
        result = await self._session.execute(
            select(UserPasskey)
            .where(col(UserPasskey.user_id) == user_id)
            .order_by(col(UserPasskey.created_at))
        )
        return list(result.scalars().all())

    async def count_passkeys(self, user_id: UUID) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(UserPasskey)
            .where(col(UserPasskey.user_id) == user_id)
        )
        return int(result.scalar_one())

    async def get_passkey_by_credential_id(self, credential_id: bytes) -> UserPasskey | None:
        result = await self._session.execute(
            select(UserPasskey).where(col(UserPasskey.credential_id) == credential_id)
        )
        return result.scalar_one_or_none()

    async def add_passkey(
        self,
        user_id: UUID,
        *,
        credential_id: bytes,
        public_key: bytes,
        sign_count: int,
        transports: list[str] | None = None,
        label: str | None = None,
    ) -> UserPasskey:
        passkey = UserPasskey(
            user_id=user_id,
            credential_id=credential_id,
            public_key=public_key,
            sign_count=sign_count,
            transports=transports or [],
            label=(label or "").strip() or None,
        )
        self._session.add(passkey)
        await self._session.flush()
        log.info("Passkey stored", user_id=str(user_id), passkey_id=str(passkey.id))
        return passkey

    async def record_passkey_use(
        self,
        passkey: UserPasskey,
        new_sign_count: int,
        *,
        now: datetime | None = None,
    ) -> None:
        """Store the counter from a verified assertion.

        Raises:
            AuthenticationError: when the counter did not advance, which
                points at a cloned authenticator.
        """
        if not sign_count_acceptable(passkey.sign_count, new_sign_count):
            log.warning(
                "Passkey sign count regressed",
                passkey_id=str(passkey.id),
                stored=passkey.sign_count,
                received=new_sign_count,
            )
            raise AuthenticationError("passkey sign count did not increase")
        passkey.sign_count = new_sign_count
        passkey.last_used_at = utcnow_naive() if now is None else to_naive_utc(now)
        self._session.add(passkey)
        await self._session.flush()

    async def delete_passkey(self, user_id: UUID, passkey_id: UUID) -> None:
        """Remove one of the user's passkeys.

        Raises:
            ValidationError: if it is the user's last passkey.
            NotFoundError: if the user has no such passkey.
        """
        if await self.count_passkeys(user_id) <= 1:
            raise ValidationError("You must keep at least one passkey")

        result = await self._session.execute(
            delete(UserPasskey)
            .where(col(UserPasskey.id) == passkey_id)
            .where(col(UserPasskey.user_id) == user_id)
        )
        if not result.rowcount:  # type: ignore[attr-defined]
            raise NotFoundError("Passkey", str(passkey_id))
        log.info("Passkey deleted", user_id=str(user_id), passkey_id=str(passkey_id))

    # -------------------------------------------------------------------------
    # Health sharing
    # -------------------------------------------------------------------------

    async def list_health_profiles(self) -> list[HealthProfile]:
        result = await self._session.execute(
            select(HealthProfile).order_by(
                col(HealthProfile.is_primary).desc(), col(HealthProfile.name)
            )
        )
        return list(result.scalars().all())

    async def list_health_shares(self) -> list[HealthProfileShare]:
        result = await self._session.execute(select(HealthProfileShare))
        return list(result.scalars().all())

    async def visible_health_profiles(self, user: User) -> list[HealthProfile]:
        """Admins see every profile; others only those shared with them."""
        if user.is_admin:
            return await self.list_health_profiles()
        result = await self._session.execute(
            select(HealthProfile)
            .join(HealthProfileShare, col(HealthProfileShare.profile_id) == HealthProfile.id)
            .where(col(HealthProfileShare.user_id) == user.id)
            .order_by(col(HealthProfile.name))
        )
        return list(result.scalars().all())

    async def can_view_health_profile(self, user: User, profile_id: UUID) -> bool:
        if user.is_admin:
            return True
        result = await self._session.execute(
            select(HealthProfileShare.id)
            .where(col(HealthProfileShare.user_id) == user.id)
            .where(col(HealthProfileShare.profile_id) == profile_id)
        )
        return result.scalar_one_or_none() is not None

    async def set_health_shares(
        self,
        user_id: UUID,
        profile_ids: Iterable[UUID],
        *,
        created_by: UUID | None,
    ) -> None:
        """Replace the set of profiles shared with a non-admin user.

        Raises:
            NotFoundError: if the user does not exist.
            ValidationError: if the user is an administrator.
        """
        user = await self.require(user_id)
        if user.is_admin:
            raise ValidationError("Cannot update shares for admin user")

        wanted = set(profile_ids)
        known = {p.id for p in await self.list_health_profiles()}
        if wanted - known:
            raise ValidationError("Unknown health profile")

        await self._session.execute(
            delete(HealthProfileShare).where(col(HealthProfileShare.user_id) == user_id)
        )
        for profile_id in sorted(wanted):
            self._session.add(
                HealthProfileShare(user_id=user_id, profile_id=profile_id, created_by=created_by)
            )
        await self._session.flush()
