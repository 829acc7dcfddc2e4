"""Health profiles (access control only; records live elsewhere)."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.auth.dependencies import (
    SensitiveAccessRequiredError,
    break_glass_redirect,
    require_health_profile_access,
    require_session,
    require_user,
)
from groundwave.auth.sensitive import can_access_health_profile, has_sensitive_access
from groundwave.auth.users import UserManager
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import HealthProfile, User, WebSession
from groundwave.errors import NotFoundError

router = APIRouter(prefix="/health", tags=["health"])


def _profile(profile: HealthProfile) -> dict:
    return {"id": str(profile.id), "name": profile.name, "is_primary": profile.is_primary}


@router.get("")
async def list_profiles(
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    """Shared profiles; with break-glass only, just the profiles it covers."""
    visible = await UserManager(db).visible_health_profiles(user)
    if has_sensitive_access(ws):
        return {"profiles": [_profile(p) for p in visible]}

    unlocked = [p for p in visible if can_access_health_profile(ws, str(p.id))]
    if not unlocked:
        raise SensitiveAccessRequiredError(break_glass_redirect(request))
    return {"profiles": [_profile(p) for p in unlocked]}


@router.get("/break-glass")
async def health_break_glass(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    """Profiles the user may unlock without full elevation."""
    profiles = await UserManager(db).visible_health_profiles(user)
    return {"profiles": [_profile(p) for p in profiles], "next": "/health"}


@router.get("/{profile_id}")
async def get_profile(
    profile_id: UUID = Depends(require_health_profile_access),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    users = UserManager(db)
    # Unshared profiles look the same as missing ones.
    if not await users.can_view_health_profile(user, profile_id):
        raise NotFoundError("Health profile", str(profile_id))
    profile = await db.get(HealthProfile, profile_id)
    if profile is None:
        raise NotFoundError("Health profile", str(profile_id))
    return _profile(profile)
