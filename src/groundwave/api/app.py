"""FastAPI application factory."""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from groundwave import __version__
from groundwave.api.errors import register_exception_handlers
from groundwave.api.middleware import (
    AccessLogMiddleware,
    CSRFMiddleware,
    NoCacheMiddleware,
    SessionCookieMiddleware,
)
from groundwave.api.rate_limit import limiter
from groundwave.api.routes import (
    auth_router,
    health_router,
    pages_router,
    qsl_router,
    security_router,
    sensitive_router,
    whatsapp_router,
    zettel_router,
)
from groundwave.config import settings
from groundwave.db.connection import close_db, get_session, get_session_factory, init_db
from groundwave.whatsapp import client as whatsapp
from groundwave.whatsapp.gateway import waha_client_factory
from groundwave.whatsapp.ingest import MessageIngestor
from groundwave.whatsapp.store import SQLDeviceContainer
from groundwave.zettel.worker import init_rebuild_worker, shutdown_rebuild_worker

log = structlog.get_logger()


async def start_whatsapp() -> None:
    """Bring up the WhatsApp client; failures leave the rest of the app running."""
    if not settings.whatsapp_enabled:
        log.info("WhatsApp disabled (WAHA_BASE_URL not set)")
        return
    try:
        await whatsapp.initialize(
            SQLDeviceContainer(get_session_factory()),
            waha_client_factory,
            MessageIngestor(get_session),
        )
    except Exception as e:
        log.warning("Failed to initialize WhatsApp", error=str(e))


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    await init_db()
    await init_rebuild_worker()
    await start_whatsapp()
    log.info("Groundwave started", version=__version__, production=settings.is_production)
    try:
        yield
    finally:
        await shutdown_rebuild_worker()
        await whatsapp.shutdown()
        await close_db()
        log.info("Groundwave stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI app with all routes and middleware.
    """
    app = FastAPI(
        title="Groundwave",
        description="Contacts, zettelkasten, logbook and WhatsApp side-channel",
        version=__version__,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if settings.is_production else "/openapi.json",
        lifespan=lifespan,
    )

    # Rate limiting
    if settings.rate_limit_enabled:
        app.state.limiter = limiter
        app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    register_exception_handlers(app)

    # Global exception handler - log, then answer with an empty 500
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> Response:
        error_id = str(uuid.uuid4())[:8]
        log.error(
            "unhandled_exception",
            error_id=error_id,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error_message=str(exc),
        )
        return Response(status_code=500)

    # Added last runs first: access log wraps everything.
    app.add_middleware(NoCacheMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(SessionCookieMiddleware)
    app.add_middleware(AccessLogMiddleware)

    app.include_router(pages_router)
    app.include_router(auth_router)
    app.include_router(security_router)
    app.include_router(sensitive_router)
    app.include_router(health_router)
    app.include_router(zettel_router)
    app.include_router(whatsapp_router)
    app.include_router(qsl_router)

    app.mount(
        "/maps",
        StaticFiles(directory=Path(settings.maps_dir), check_dir=False),
        name="maps",
    )

    @app.get("/")
    async def root() -> dict[str, str]:
        return {"name": "Groundwave", "version": __version__}

    return app
