"""API route modules."""

from groundwave.api.routes.auth import router as auth_router
from groundwave.api.routes.health import router as health_router
from groundwave.api.routes.pages import router as pages_router
from groundwave.api.routes.qsl import router as qsl_router
from groundwave.api.routes.security import router as security_router
from groundwave.api.routes.sensitive import router as sensitive_router
from groundwave.api.routes.whatsapp import router as whatsapp_router
from groundwave.api.routes.zettel import router as zettel_router

__all__ = [
    "auth_router",
    "health_router",
    "pages_router",
    "qsl_router",
    "security_router",
    "sensitive_router",
    "whatsapp_router",
    "zettel_router",
]
