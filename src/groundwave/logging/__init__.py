"""Structured logging setup for Groundwave."""

from groundwave.logging.config import bind_module, configure_logging

__all__ = ["bind_module", "configure_logging"]
