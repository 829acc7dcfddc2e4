"""Security page: sessions, passkeys, invites and health shares."""

from __future__ import annotations

from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.auth.dependencies import (
    clear_session_cookie,
    require_sensitive_access,
    require_session,
    require_user,
)
from groundwave.auth.device import UNKNOWN_DEVICE, format_duration
from groundwave.auth.invites import InviteManager, invite_view
from groundwave.auth.sessions import WebSessionManager, add_flash, pop_flashes
from groundwave.auth.users import UserManager, passkey_infos
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import User, WebSession, utcnow_naive
from groundwave.errors import NotFoundError, ValidationError

router = APIRouter(prefix="/security", tags=["security"])
log = structlog.get_logger()

SECURITY_PATH = "/security"
UNKNOWN_USER = "Unknown user"


def _back() -> RedirectResponse:
    return RedirectResponse(url=SECURITY_PATH, status_code=status.HTTP_303_SEE_OTHER)


@router.get("")
async def security_page(
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    now = utcnow_naive()
    users = UserManager(db)

    active = await WebSessionManager(db).list_active(
        user_id=None if user.is_admin else user.id, now=now
    )
    sessions = []
    for s in active:
        expires_at = s.authenticated_expires_at or s.absolute_expires_at
        sessions.append(
            {
                "id": str(s.id),
                "user_name": s.user_display_name or UNKNOWN_USER,
                "device": s.device_label or UNKNOWN_DEVICE,
                "ip_address": s.ip_address or "",
                "created_at": s.created_at,
                "last_activity_at": s.last_activity_at,
                "expires_in": format_duration(expires_at - now),
                "current": s.id == ws.id,
            }
        )

    page: dict = {
        "is_admin": user.is_admin,
        "sessions": sessions,
        "passkeys": passkey_infos(await users.list_passkeys(user.id)),
        "invites": [],
        "shares": None,
    }

    if user.is_admin:
        pending = await InviteManager(db).list_pending()
        page["invites"] = [invite_view(invite) for invite in pending]

        profiles = await users.list_health_profiles()
        shares = await users.list_health_shares()
        shared: dict[UUID, list[str]] = {}
        for share in shares:
            shared.setdefault(share.user_id, []).append(str(share.profile_id))
        page["shares"] = {
            "profiles": [
                {"id": str(p.id), "name": p.name, "is_primary": p.is_primary} for p in profiles
            ],
            "users": [
                {
                    "id": str(u.id),
                    "display_name": u.display_name,
                    "profile_ids": sorted(shared.get(u.id, [])),
                }
                for u in await users.list_users()
                if not u.is_admin
            ],
        }

    page["flashes"] = pop_flashes(ws)
    return page


# =============================================================================
# Sessions
# =============================================================================


@router.post("/sessions/invalidate-others")
async def invalidate_other_sessions(
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    count = await WebSessionManager(db).invalidate_others(
        ws.id, user_id=None if user.is_admin else user.id
    )
    if count == 0:
        add_flash(ws, "info", "No other sessions to invalidate")
    else:
        add_flash(ws, "success", f"Invalidated {count} other session(s)")
    return _back()


@router.post("/sessions/{session_id}/invalidate")
async def invalidate_session(
    session_id: UUID,
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    manager = WebSessionManager(db)

    if session_id == ws.id:
        await manager.destroy(ws)
        clear_session_cookie(request)
        return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)

    target = await manager.get(session_id)
    if target is None or target.user_id is None:
        add_flash(ws, "error", "Session not found")
    elif not user.is_admin and target.user_id != user.id:
        add_flash(ws, "error", "Access restricted")
    else:
        await manager.invalidate(session_id)
        log.info("Session invalidated", session_id=str(session_id), by=str(user.id))
        add_flash(ws, "success", "Session invalidated")
    return _back()


# =============================================================================
# Passkeys
# =============================================================================


@router.post("/passkeys/{passkey_id}/delete")
async def delete_passkey(
    passkey_id: UUID,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    try:
        await UserManager(db).delete_passkey(user.id, passkey_id)
    except ValidationError as e:
        add_flash(ws, "warning", e.message)
    except NotFoundError:
        add_flash(ws, "error", "Passkey not found")
    else:
        add_flash(ws, "success", "Passkey deleted")
    return _back()


# =============================================================================
# Invites (admin)
# =============================================================================


@router.post("/invites")
async def create_invite(
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    if not user.is_admin:
        add_flash(ws, "error", "Access restricted")
        return _back()

    form = await request.form()
    display_name = form.get("display_name")
    await InviteManager(db).create(
        created_by=user.id,
        display_name=display_name if isinstance(display_name, str) else None,
    )
    add_flash(ws, "success", "Invite created")
    return _back()


@router.post("/invites/{invite_id}/regenerate")
async def regenerate_invite(
    invite_id: UUID,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    if not user.is_admin:
        add_flash(ws, "error", "Access restricted")
        return _back()
    try:
        await InviteManager(db).regenerate(invite_id)
    except NotFoundError:
        add_flash(ws, "error", "Invite not found")
    else:
        add_flash(ws, "success", "Invite link regenerated")
    return _back()


@router.post("/invites/{invite_id}/delete")
async def delete_invite(
    invite_id: UUID,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    if not user.is_admin:
        add_flash(ws, "error", "Access restricted")
        return _back()
    try:
        await InviteManager(db).delete(invite_id)
    except NotFoundError:
        add_flash(ws, "error", "Invite not found")
    else:
        add_flash(ws, "success", "Invite revoked")
    return _back()


# =============================================================================
# Health shares (admin)
# =============================================================================


@router.post("/users/{user_id}/health-shares")
async def update_health_shares(
    user_id: UUID,
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_sensitive_access),
    db: AsyncSession = Depends(get_session_dependency),
) -> RedirectResponse:
    if not user.is_admin:
        add_flash(ws, "error", "Access restricted")
        return _back()

    form = await request.form()
    profile_ids: list[UUID] = []
    for raw in form.getlist("profile_id"):
        try:
            profile_ids.append(UUID(str(raw)))
        except ValueError:
            add_flash(ws, "error", "Invalid health profile")
            return _back()

    try:
        await UserManager(db).set_health_shares(user_id, profile_ids, created_by=user.id)
    except ValidationError as e:
        add_flash(ws, "error", e.message)
    except NotFoundError:
        add_flash(ws, "error", "User not found")
    else:
        log.info("Health shares updated", user_id=str(user_id), profiles=len(profile_ids))
        add_flash(ws, "success", "Health access updated")
    return _back()
