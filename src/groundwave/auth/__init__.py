"""Passkey authentication, browser sessions and sensitive access."""

from groundwave.auth.invites import (
    InviteInvalidOrUsedError,
    InviteManager,
    NewPasskey,
    SetupAlreadyCompletedError,
)
from groundwave.auth.sensitive import (
    can_access_health_profile,
    grant_break_glass,
    grant_sensitive_access,
    has_sensitive_access,
    lock_sensitive_access,
    sanitize_next,
)
from groundwave.auth.sessions import (
    SESSION_COOKIE,
    WebSessionManager,
    is_authenticated,
    should_remember_login,
)
from groundwave.auth.users import UserManager

__all__ = [
    "SESSION_COOKIE",
    "InviteInvalidOrUsedError",
    "InviteManager",
    "NewPasskey",
    "SetupAlreadyCompletedError",
    "UserManager",
    "WebSessionManager",
    "can_access_health_profile",
    "grant_break_glass",
    "grant_sensitive_access",
    "has_sensitive_access",
    "is_authenticated",
    "lock_sensitive_access",
    "sanitize_next",
    "should_remember_login",
]
