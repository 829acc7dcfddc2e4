"""Map Groundwave exceptions onto HTTP responses."""

from __future__ import annotations

from urllib.parse import quote

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from groundwave.auth.dependencies import SensitiveAccessRequiredError
from groundwave.auth.sensitive import sanitize_next
from groundwave.errors import (
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    NotFoundError,
    StateError,
    ValidationError,
)

log = structlog.get_logger()

LOGIN_PATH = "/login"


def wants_html(request: Request) -> bool:
    """Browser page navigation rather than a fetch() call."""
    return request.method in ("GET", "HEAD") and "text/html" in request.headers.get("accept", "")


def json_error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def login_redirect(request: Request) -> RedirectResponse:
    target = request.url.path
    if request.url.query:
        target = f"{target}?{request.url.query}"
    next_path = sanitize_next(target, "/")
    return RedirectResponse(
        url=f"{LOGIN_PATH}?next={quote(next_path, safe='')}",
        status_code=status.HTTP_302_FOUND,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error(_request: Request, exc: ValidationError) -> Response:
        return json_error(exc.message, status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(NotFoundError)
    async def not_found(_request: Request, exc: NotFoundError) -> Response:
        return json_error(exc.message, status.HTTP_404_NOT_FOUND)

    @app.exception_handler(AuthenticationError)
    async def unauthenticated(request: Request, exc: AuthenticationError) -> Response:
        if wants_html(request):
            return login_redirect(request)
        return json_error(exc.message, status.HTTP_401_UNAUTHORIZED)

    @app.exception_handler(AuthorizationError)
    async def forbidden(_request: Request, exc: AuthorizationError) -> Response:
        return json_error(exc.message, status.HTTP_403_FORBIDDEN)

    @app.exception_handler(SensitiveAccessRequiredError)
    async def needs_elevation(_request: Request, exc: SensitiveAccessRequiredError) -> Response:
        return RedirectResponse(url=exc.redirect_to, status_code=status.HTTP_303_SEE_OTHER)

    @app.exception_handler(StateError)
    async def conflict(_request: Request, exc: StateError) -> Response:
        return json_error(exc.message, status.HTTP_409_CONFLICT)

    @app.exception_handler(ConfigurationError)
    async def unavailable(request: Request, exc: ConfigurationError) -> Response:
        log.error("Configuration error while serving", path=request.url.path, error=exc.message)
        return json_error("service unavailable", status.HTTP_503_SERVICE_UNAVAILABLE)
