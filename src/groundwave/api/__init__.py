"""HTTP layer: FastAPI app, middleware and routes."""

from groundwave.api.app import create_app

__all__ = ["create_app"]
