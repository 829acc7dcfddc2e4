"""Entry point for the Groundwave web server."""

import structlog

from groundwave.config import settings
from groundwave.logging import configure_logging


def run_server(port: int | None = None) -> None:
    """Validate configuration, then serve the app with uvicorn.

    Raises:
        ConfigurationError: before any socket is bound.
    """
    settings.validate_startup()
    configure_logging(level=settings.log_level, json_output=settings.is_production)
    log = structlog.get_logger()

    port = port or settings.port

    import uvicorn

    from groundwave.api.app import create_app

    app = create_app()
    log.info("Starting Groundwave", port=port, production=settings.is_production)

    config = uvicorn.Config(
        app,
        host="0.0.0.0",  # noqa: S104
        port=port,
        log_level="warning",
        access_log=False,  # AccessLogMiddleware logs requests
        proxy_headers=settings.is_production,
    )
    server = uvicorn.Server(config)
    server.run()


def main() -> None:
    run_server()


if __name__ == "__main__":
    main()
