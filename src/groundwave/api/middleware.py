"""HTTP middleware: access log, session cookie, CSRF and cache headers."""

from __future__ import annotations

import time

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from groundwave.auth.csrf import (
    CSRF_FORM_FIELD,
    CSRF_HEADER,
    SAFE_METHODS,
    generate_csrf_token,
    verify_csrf_token,
)
from groundwave.auth.sessions import SESSION_COOKIE, session_lifetime
from groundwave.config import settings

log = structlog.get_logger()

# Signed by the gateway instead.
CSRF_EXEMPT_PATHS = frozenset({"/whatsapp/webhook"})
FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Log all HTTP requests with method, path, status, and timing."""

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        log.info(
            "request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
            client=request.client.host if request.client else None,
        )
        return response


class SessionCookieMiddleware(BaseHTTPMiddleware):
    """Apply session cookie changes requested by handlers.

    Handlers never touch the cookie themselves; they record a new token
    (login, rotation, lazy creation) or a clear request (logout) on
    ``request.state`` and this middleware writes it to the response. The
    CSRF token for the active session is sent as a response header.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.session_token = request.cookies.get(SESSION_COOKIE)
        request.state.set_session_cookie = None
        request.state.clear_session_cookie = False

        response = await call_next(request)

        new_token = getattr(request.state, "set_session_cookie", None)
        cleared = getattr(request.state, "clear_session_cookie", False)
        if new_token:
            response.set_cookie(
                SESSION_COOKIE,
                new_token,
                max_age=int(session_lifetime().total_seconds()),
                httponly=True,
                secure=settings.is_production,
                samesite="lax",
                path="/",
            )
        elif cleared:
            response.delete_cookie(SESSION_COOKIE, path="/")

        active = new_token or (None if cleared else request.cookies.get(SESSION_COOKIE))
        secret = settings.csrf_secret.get_secret_value()
        if active and secret:
            response.headers[CSRF_HEADER] = generate_csrf_token(active, secret)
        return response


class CSRFMiddleware(BaseHTTPMiddleware):
    """Reject unsafe requests that carry a session cookie but no valid token.

    Requests without a session cookie have no ambient authority to abuse
    and pass through.
    """

    async def dispatch(self, request: Request, call_next):
        if request.method in SAFE_METHODS or request.url.path in CSRF_EXEMPT_PATHS:
            return await call_next(request)

        session_token = request.cookies.get(SESSION_COOKIE)
        if not session_token:
            return await call_next(request)

        candidate = request.headers.get(CSRF_HEADER)
        content_type = request.headers.get("content-type", "")
        if not candidate and content_type.startswith(FORM_CONTENT_TYPES):
            # Cache the raw body first so Starlette replays it to the endpoint.
            await request.body()
            form = await request.form()
            value = form.get(CSRF_FORM_FIELD)
            candidate = value if isinstance(value, str) else None

        if not verify_csrf_token(candidate, session_token, settings.csrf_secret.get_secret_value()):
            log.warning("CSRF token rejected", method=request.method, path=request.url.path)
            return JSONResponse(status_code=403, content={"error": "invalid CSRF token"})
        return await call_next(request)


class NoCacheMiddleware(BaseHTTPMiddleware):
    """Keep HTML and JSON responses out of shared caches."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        content_type = response.headers.get("content-type", "")
        if "Cache-Control" not in response.headers and (
            content_type.startswith("text/html") or content_type.startswith("application/json")
        ):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response
