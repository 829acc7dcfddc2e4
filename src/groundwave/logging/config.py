"""Logging configuration for Groundwave processes.

Usage:
    from groundwave.logging import configure_logging, bind_module

    configure_logging(level="INFO", json_output=settings.is_production)
    log = bind_module("whatsapp/Client")
    log.info("Connected", jid="15551234567@s.whatsapp.net")
"""

from __future__ import annotations

import logging
import sys

import structlog

# Third-party loggers that drown out request logs below WARNING.
QUIET_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
    "asyncpg",
    "PIL",
    "urllib3",
)


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def _prefix_module(
    _logger: object, _method: str, event_dict: structlog.typing.EventDict
) -> structlog.typing.EventDict:
    """Render ``module=whatsapp/Client`` as an ``[whatsapp/Client]`` event prefix."""
    module = event_dict.pop("module", None)
    if module:
        event_dict["event"] = f"[{module}] {event_dict.get('event', '')}"
    return event_dict


def configure_logging(
    *,
    level: str = "INFO",
    colors: bool | None = None,
    json_output: bool = False,
) -> None:
    """Configure structlog, and route stdlib logging to stderr.

    Call this once at process startup before any logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        colors: Enable colors (auto-detect TTY if None)
        json_output: One JSON object per line, with the module as a field
    """
    if colors is None:
        colors = sys.stderr.isatty()

    logging.basicConfig(
        format="%(message)s",
        level=_level(level),
        handlers=[logging.StreamHandler()],
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
    ]
    if json_output:
        processors += [
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors += [
            _prefix_module,
            structlog.processors.TimeStamper(fmt="%H:%M:%S"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(colors=colors, pad_event=30),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def bind_module(module: str) -> structlog.stdlib.BoundLogger:
    """Logger bound to a slash separated module path such as ``whatsapp/Client``."""
    return structlog.get_logger().bind(module=module)
