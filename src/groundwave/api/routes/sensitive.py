"""Sensitive access elevation and health break-glass."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlsplit
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.api.errors import json_error
from groundwave.auth.dependencies import require_session, require_user
from groundwave.auth.sensitive import (
    DEFAULT_NEXT,
    grant_break_glass,
    grant_sensitive_access,
    has_sensitive_access,
    lock_sensitive_access,
    sanitize_next,
    seconds_remaining,
)
from groundwave.auth.users import UserManager
from groundwave.auth.webauthn_flows import (
    BREAK_GLASS_CEREMONY,
    begin_authentication,
    credential_id_of,
    finish_authentication,
    pop_challenge,
)
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import User, WebSession
from groundwave.errors import AuthenticationError, ValidationError

router = APIRouter(tags=["sensitive"])
log = structlog.get_logger()


async def _optional_json(request: Request) -> dict[str, Any]:
    body = await request.body()
    if not body.strip():
        return {}
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError("invalid request body") from e
    if not isinstance(data, dict):
        raise ValidationError("invalid request body")
    return data


@router.get("/break-glass")
async def break_glass_page(
    next_url: str = Query(default="", alias="next"),
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> dict:
    profiles = await UserManager(db).visible_health_profiles(user)
    return {
        "next": sanitize_next(next_url),
        "active": has_sensitive_access(ws),
        "expires_in_seconds": seconds_remaining(ws.sensitive_access_expires_at),
        "break_glass_profile_ids": list(ws.break_glass_profile_ids or []),
        "break_glass_expires_in_seconds": seconds_remaining(ws.break_glass_expires_at),
        "profiles": [{"id": str(p.id), "name": p.name} for p in profiles],
    }


@router.post("/break-glass/start", response_model=None)
async def break_glass_start(
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    """Begin re-verification; ``profile_ids`` limits it to health break-glass."""
    try:
        body = await _optional_json(request)
    except ValidationError as e:
        return json_error(e.message, status.HTTP_400_BAD_REQUEST)

    users = UserManager(db)
    requested = body.get("profile_ids") or []
    if not isinstance(requested, list):
        return json_error("invalid request body", status.HTTP_400_BAD_REQUEST)
    profile_ids: list[str] = []
    if requested:
        visible = {str(p.id) for p in await users.visible_health_profiles(user)}
        for raw in requested:
            try:
                profile_id = str(UUID(str(raw)))
            except ValueError:
                return json_error("invalid profile id", status.HTTP_400_BAD_REQUEST)
            if profile_id not in visible:
                return json_error("Access restricted", status.HTTP_403_FORBIDDEN)
            profile_ids.append(profile_id)

    passkeys = await users.list_passkeys(user.id)
    options = begin_authentication(
        ws,
        BREAK_GLASS_CEREMONY,
        allow_credentials=[p.credential_id for p in passkeys],
        profile_ids=profile_ids,
    )
    return Response(content=options, media_type="application/json")


@router.post("/break-glass/finish", response_model=None)
async def break_glass_finish(
    request: Request,
    next_url: str = Query(default="", alias="next"),
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    state = pop_challenge(ws, BREAK_GLASS_CEREMONY)
    if state is None:
        return json_error("verification session missing", status.HTTP_400_BAD_REQUEST)

    users = UserManager(db)
    try:
        credential = await _optional_json(request)
        passkey = await users.get_passkey_by_credential_id(credential_id_of(credential))
        if passkey is None or passkey.user_id != user.id:
            raise AuthenticationError("credential does not belong to the session user")
        new_sign_count = finish_authentication(credential, state, passkey)
        await users.record_passkey_use(passkey, new_sign_count)
    except (ValidationError, AuthenticationError) as e:
        log.warning("Break-glass verification failed", user_id=str(user.id), error=e.message)
        return json_error("failed to verify passkey", status.HTTP_401_UNAUTHORIZED)

    profile_ids = [str(p) for p in state.get("profile_ids") or []]
    if profile_ids:
        expires = grant_break_glass(ws, profile_ids)
        log.info("Health break-glass granted", user_id=str(user.id), profiles=len(profile_ids))
    else:
        expires = grant_sensitive_access(ws)
        log.info("Sensitive access granted", user_id=str(user.id))

    return JSONResponse(
        {"redirect": sanitize_next(next_url), "expires_at": expires.isoformat()}
    )


@router.post("/sensitive-access/lock")
async def lock_sensitive(
    request: Request,
    ws: WebSession = Depends(require_session),
) -> RedirectResponse:
    lock_sensitive_access(ws)
    referer = request.headers.get("referer") or ""
    target = DEFAULT_NEXT
    if referer:
        parts = urlsplit(referer)
        target = sanitize_next(parts.path + (f"?{parts.query}" if parts.query else ""))
    return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
