"""Passkey setup, login, logout and passkey registration."""

from __future__ import annotations

import hmac
from typing import Any
from uuid import UUID, uuid4

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import AliasChoices, BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.api.errors import json_error
from groundwave.api.rate_limit import limiter
from groundwave.auth.dependencies import (
    clear_session_cookie,
    ensure_web_session,
    get_web_session,
    issue_session_cookie,
    require_session,
    require_user,
)
from groundwave.auth.invites import (
    InviteInvalidOrUsedError,
    InviteManager,
    SetupAlreadyCompletedError,
)
from groundwave.auth.sensitive import sanitize_next
from groundwave.auth.sessions import (
    WebSessionManager,
    is_authenticated,
    session_get,
    session_pop,
    session_set,
    should_remember_login,
)
from groundwave.auth.users import UserManager
from groundwave.auth.webauthn_flows import (
    LOGIN_CEREMONY,
    REGISTER_CEREMONY,
    SETUP_CEREMONY,
    begin_authentication,
    begin_registration,
    credential_id_of,
    finish_authentication,
    finish_registration,
    pop_challenge,
)
from groundwave.config import settings
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import User, WebSession
from groundwave.errors import AuthenticationError, ValidationError

router = APIRouter(tags=["auth"])
log = structlog.get_logger()

# Session key recording what GET /setup allowed.
SETUP_ALLOWANCE_KEY = "setup_allowance"


class SetupStartRequest(BaseModel):
    display_name: str = Field(
        default="", validation_alias=AliasChoices("display_name", "displayName")
    )
    label: str = Field(default="", max_length=255)


class PasskeyStartRequest(BaseModel):
    label: str = Field(default="", max_length=255)


def _options_response(options_json: str) -> Response:
    return Response(content=options_json, media_type="application/json")


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        data = await request.json()
    except ValueError as e:
        raise ValidationError("invalid request body") from e
    if not isinstance(data, dict):
        raise ValidationError("invalid request body")
    return data


def _bootstrap_token_matches(candidate: str) -> bool:
    expected = settings.bootstrap_token.get_secret_value()
    return bool(expected) and hmac.compare_digest(candidate.encode(), expected.encode())


async def _sign_in(
    request: Request,
    db: AsyncSession,
    ws: WebSession,
    user: User,
    *,
    remember: bool,
) -> None:
    """Rotate the session token then bind the session to ``user``."""
    sessions = WebSessionManager(db)
    token = await sessions.rotate(ws)
    issue_session_cookie(request, token)
    await sessions.authenticate(ws, user, remember=remember)


# =============================================================================
# Setup (first admin or invite)
# =============================================================================


@router.get("/setup")
async def setup_page(
    request: Request,
    token: str = "",
    ws: WebSession = Depends(ensure_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    """Check the setup link and remember what it allows in the session."""
    session_pop(ws, SETUP_ALLOWANCE_KEY)
    token = token.strip()

    if await UserManager(db).count() == 0:
        if not settings.bootstrap_token.get_secret_value():
            return json_error("Setup is unavailable", status.HTTP_403_FORBIDDEN)
        if not _bootstrap_token_matches(token):
            return json_error("Invalid setup link", status.HTTP_403_FORBIDDEN)
        session_set(ws, SETUP_ALLOWANCE_KEY, {"bootstrap": True})
        return JSONResponse({"mode": "bootstrap", "display_name": ""})

    invite = await InviteManager(db).get_pending_by_token(token)
    if invite is None:
        return json_error("Invalid setup link", status.HTTP_403_FORBIDDEN)
    session_set(ws, SETUP_ALLOWANCE_KEY, {"bootstrap": False, "invite_id": str(invite.id)})
    return JSONResponse({"mode": "invite", "display_name": invite.display_name or ""})


@router.post("/webauthn/setup/start", response_model=None)
@limiter.limit("10/minute")
async def setup_start(
    request: Request,
    ws: WebSession = Depends(ensure_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    if is_authenticated(ws):
        return json_error("setup not permitted", status.HTTP_403_FORBIDDEN)

    allowance = session_get(ws, SETUP_ALLOWANCE_KEY)
    if not isinstance(allowance, dict):
        return json_error("setup not permitted", status.HTTP_403_FORBIDDEN)
    is_bootstrap = bool(allowance.get("bootstrap"))

    invite_display_name = ""
    if is_bootstrap:
        if await UserManager(db).count() > 0:
            return json_error("setup already completed", status.HTTP_409_CONFLICT)
        if not settings.bootstrap_token.get_secret_value():
            return json_error("setup is unavailable", status.HTTP_403_FORBIDDEN)
    else:
        raw_invite = allowance.get("invite_id")
        if not raw_invite:
            return json_error("invite token missing", status.HTTP_403_FORBIDDEN)
        invite = await InviteManager(db).get(UUID(raw_invite))
        if invite is None or invite.is_consumed:
            return json_error("invite is no longer valid", status.HTTP_403_FORBIDDEN)
        invite_display_name = invite.display_name or ""

    try:
        body = SetupStartRequest.model_validate(await _read_json(request))
    except ValueError:
        return json_error("invalid request body", status.HTTP_400_BAD_REQUEST)

    display_name = body.display_name.strip() or invite_display_name.strip()
    if not display_name:
        return json_error("display name is required", status.HTTP_400_BAD_REQUEST)

    user_id = uuid4()
    options = begin_registration(
        ws,
        SETUP_CEREMONY,
        user_id=user_id,
        user_name=display_name,
        pending_user_id=str(user_id),
        display_name=display_name,
        label=body.label.strip(),
        bootstrap=is_bootstrap,
        invite_id=allowance.get("invite_id"),
    )
    return _options_response(options)


@router.post("/webauthn/setup/finish", response_model=None)
@limiter.limit("10/minute")
async def setup_finish(
    request: Request,
    ws: WebSession = Depends(ensure_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    if session_get(ws, SETUP_ALLOWANCE_KEY) is None:
        return json_error("setup state missing", status.HTTP_400_BAD_REQUEST)
    state = pop_challenge(ws, SETUP_CEREMONY)
    if state is None:
        return json_error("setup session missing", status.HTTP_400_BAD_REQUEST)

    try:
        credential = await _read_json(request)
        passkey = finish_registration(credential, state, label=state.get("label") or None)
    except (ValidationError, AuthenticationError):
        return json_error("failed to finish registration", status.HTTP_400_BAD_REQUEST)

    invite_id = state.get("invite_id")
    try:
        user = await InviteManager(db).finalize_setup(
            user_id=UUID(state["pending_user_id"]),
            display_name=state["display_name"],
            passkey=passkey,
            is_bootstrap=bool(state.get("bootstrap")),
            invite_id=UUID(invite_id) if invite_id else None,
        )
    except SetupAlreadyCompletedError as e:
        return json_error(e.message, status.HTTP_409_CONFLICT)
    except InviteInvalidOrUsedError as e:
        return json_error(e.message, status.HTTP_403_FORBIDDEN)
    except ValidationError:
        return json_error("failed to finalize setup", status.HTTP_400_BAD_REQUEST)

    await _sign_in(request, db, ws, user, remember=True)
    session_pop(ws, SETUP_ALLOWANCE_KEY)
    log.info("Setup completed", user_id=str(user.id), is_admin=user.is_admin)
    return JSONResponse({"redirect": "/"})


# =============================================================================
# Login / logout
# =============================================================================


@router.get("/login")
async def login_page(
    request: Request,
    next_url: str = Query(default="", alias="next"),
    ws: WebSession = Depends(ensure_web_session),
) -> Response:
    target = sanitize_next(next_url, "/")
    if is_authenticated(ws):
        return RedirectResponse(url=target, status_code=status.HTTP_303_SEE_OTHER)
    return JSONResponse({"next": target})


@router.post("/webauthn/login/start", response_model=None)
@limiter.limit("10/minute")
async def login_start(
    request: Request,
    ws: WebSession = Depends(ensure_web_session),
) -> Response:
    # Discoverable credentials: the authenticator picks the account.
    return _options_response(begin_authentication(ws, LOGIN_CEREMONY))


@router.post("/webauthn/login/finish", response_model=None)
@limiter.limit("10/minute")
async def login_finish(
    request: Request,
    remember: str | None = None,
    next_url: str = Query(default="", alias="next"),
    ws: WebSession = Depends(ensure_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    state = pop_challenge(ws, LOGIN_CEREMONY)
    if state is None:
        return json_error("login session missing", status.HTTP_400_BAD_REQUEST)

    users = UserManager(db)
    try:
        credential = await _read_json(request)
        passkey = await users.get_passkey_by_credential_id(credential_id_of(credential))
        if passkey is None:
            raise AuthenticationError("unknown credential")
        user = await users.get(passkey.user_id)
        if user is None:
            raise AuthenticationError("credential owner missing")
        new_sign_count = finish_authentication(credential, state, passkey)
        await users.record_passkey_use(passkey, new_sign_count)
    except (ValidationError, AuthenticationError) as e:
        log.warning("Login failed", error=e.message)
        return json_error("failed to verify passkey", status.HTTP_401_UNAUTHORIZED)

    await _sign_in(request, db, ws, user, remember=should_remember_login(remember))
    log.info("User logged in", user_id=str(user.id))
    return JSONResponse({"redirect": sanitize_next(next_url, "/")})


@router.post("/logout")
async def logout(
    request: Request,
    ws: WebSession | None = Depends(get_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    if ws is not None:
        await WebSessionManager(db).destroy(ws)
    clear_session_cookie(request)
    return RedirectResponse(url="/login", status_code=status.HTTP_303_SEE_OTHER)


# =============================================================================
# Additional passkeys
# =============================================================================


@router.post("/webauthn/passkey/start", response_model=None)
async def passkey_register_start(
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    try:
        body = PasskeyStartRequest.model_validate(await _read_json(request))
    except ValueError:
        return json_error("invalid request body", status.HTTP_400_BAD_REQUEST)

    existing = await UserManager(db).list_passkeys(user.id)
    options = begin_registration(
        ws,
        REGISTER_CEREMONY,
        user_id=user.id,
        user_name=user.display_name,
        exclude_credentials=[p.credential_id for p in existing],
        label=body.label.strip(),
    )
    return _options_response(options)


@router.post("/webauthn/passkey/finish", response_model=None)
async def passkey_register_finish(
    request: Request,
    user: User = Depends(require_user),
    ws: WebSession = Depends(require_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> Response:
    state = pop_challenge(ws, REGISTER_CEREMONY)
    if state is None:
        return json_error("registration session missing", status.HTTP_400_BAD_REQUEST)

    try:
        credential = await _read_json(request)
        passkey = finish_registration(credential, state, label=state.get("label") or None)
    except (ValidationError, AuthenticationError):
        return json_error("failed to finish registration", status.HTTP_400_BAD_REQUEST)

    users = UserManager(db)
    if await users.get_passkey_by_credential_id(passkey.credential_id) is not None:
        return json_error("failed to save passkey", status.HTTP_409_CONFLICT)
    await users.add_passkey(
        user.id,
        credential_id=passkey.credential_id,
        public_key=passkey.public_key,
        sign_count=passkey.sign_count,
        transports=passkey.transports,
        label=passkey.label,
    )
    return JSONResponse({"ok": True})
