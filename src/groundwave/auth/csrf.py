"""Per-session CSRF tokens.

The token is an HMAC-SHA256 of the session cookie under ``CSRF_SECRET``,
so it needs no storage and dies with the session.
"""

from __future__ import annotations

import hashlib
import hmac

CSRF_HEADER = "X-CSRF-Token"
CSRF_FORM_FIELD = "_csrf"
SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "TRACE"})


def generate_csrf_token(session_token: str, secret: str) -> str:
    return hmac.new(secret.encode(), session_token.encode(), hashlib.sha256).hexdigest()


def verify_csrf_token(candidate: str | None, session_token: str, secret: str) -> bool:
    if not candidate or not session_token or not secret:
        return False
    expected = generate_csrf_token(session_token, secret)
    return hmac.compare_digest(expected, candidate.strip())
