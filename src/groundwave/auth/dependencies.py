"""FastAPI auth dependencies."""

from __future__ import annotations

from urllib.parse import quote, urlsplit
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from groundwave.auth.device import client_ip, parse_user_agent
from groundwave.auth.sensitive import can_access_health_profile, has_sensitive_access, sanitize_next
from groundwave.auth.sessions import SESSION_COOKIE, WebSessionManager, is_authenticated
from groundwave.config import settings
from groundwave.db.connection import get_session_dependency
from groundwave.db.models import User, WebSession
from groundwave.errors import AuthenticationError, AuthorizationError, GroundwaveError

BREAK_GLASS_PATH = "/break-glass"


class SensitiveAccessRequiredError(GroundwaveError):
    """The route needs an elevated session; carries where to send the browser."""

    def __init__(self, redirect_to: str) -> None:
        super().__init__("sensitive access required", details={"redirect_to": redirect_to})
        self.redirect_to = redirect_to


# =============================================================================
# Cookie plumbing (applied to the response by SessionCookieMiddleware)
# =============================================================================


def session_token_from(request: Request) -> str | None:
    return getattr(request.state, "session_token", None) or request.cookies.get(SESSION_COOKIE)


def issue_session_cookie(request: Request, token: str) -> None:
    request.state.session_token = token
    request.state.set_session_cookie = token
    request.state.clear_session_cookie = False


def clear_session_cookie(request: Request) -> None:
    request.state.session_token = None
    request.state.set_session_cookie = None
    request.state.clear_session_cookie = True


def _record_request_metadata(request: Request, manager: WebSessionManager, ws: WebSession) -> None:
    peer = request.client.host if request.client else None
    manager.record_metadata(
        ws,
        device_label=parse_user_agent(request.headers.get("user-agent")),
        ip_address=client_ip(request.headers, peer, trust_forwarded=settings.is_production),
    )


# =============================================================================
# Session dependencies
# =============================================================================


async def get_web_session(
    request: Request,
    db: AsyncSession = Depends(get_session_dependency),
) -> WebSession | None:
    """Load the browser session named by the cookie, if it is still valid."""
    token = session_token_from(request)
    if not token:
        return None
    manager = WebSessionManager(db)
    ws = await manager.get_by_token(token)
    if ws is not None:
        _record_request_metadata(request, manager, ws)
    request.state.web_session = ws
    return ws


async def ensure_web_session(
    request: Request,
    ws: WebSession | None = Depends(get_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> WebSession:
    """Like `get_web_session` but starts an anonymous session when none exists."""
    if ws is not None:
        return ws
    manager = WebSessionManager(db)
    ws, token = await manager.create()
    _record_request_metadata(request, manager, ws)
    issue_session_cookie(request, token)
    request.state.web_session = ws
    return ws


async def get_optional_user(
    request: Request,
    ws: WebSession | None = Depends(get_web_session),
    db: AsyncSession = Depends(get_session_dependency),
) -> User | None:
    if not is_authenticated(ws):
        return None
    assert ws is not None and ws.user_id is not None
    user = await db.get(User, ws.user_id)
    request.state.user = user
    return user


async def require_user(user: User | None = Depends(get_optional_user)) -> User:
    if user is None:
        raise AuthenticationError("not authenticated")
    return user


async def require_session(
    user: User = Depends(require_user),
    ws: WebSession | None = Depends(get_web_session),
) -> WebSession:
    """The authenticated user's session row."""
    assert ws is not None
    return ws


async def require_admin(user: User = Depends(require_user)) -> User:
    if not user.is_admin:
        raise AuthorizationError("Access restricted")
    return user


# =============================================================================
# Sensitive access
# =============================================================================


def break_glass_redirect(request: Request) -> str:
    """Where to send a request that needs elevation.

    GET and HEAD come back to the requested page afterwards; other
    methods return to the page that submitted them.
    """
    if request.method in ("GET", "HEAD"):
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
    else:
        referer = request.headers.get("referer") or ""
        target = ""
        if referer:
            parts = urlsplit(referer)
            target = parts.path + (f"?{parts.query}" if parts.query else "")
    next_path = sanitize_next(target)
    return f"{BREAK_GLASS_PATH}?next={quote(next_path, safe='')}"


async def require_sensitive_access(
    request: Request,
    ws: WebSession = Depends(require_session),
) -> WebSession:
    if not has_sensitive_access(ws):
        raise SensitiveAccessRequiredError(break_glass_redirect(request))
    return ws


async def require_health_profile_access(
    profile_id: UUID,
    request: Request,
    ws: WebSession = Depends(require_session),
) -> UUID:
    """Elevated sessions see any profile; break-glass only the profiles it names."""
    if not can_access_health_profile(ws, str(profile_id)):
        raise SensitiveAccessRequiredError(break_glass_redirect(request))
    return profile_id
