"""Request rate limiting (slowapi)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from groundwave.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.rate_limit_default],
    storage_uri=settings.rate_limit_storage,
    enabled=settings.rate_limit_enabled,
)
