"""WebAuthn ceremonies on top of py_webauthn.

Each ceremony stores its challenge in the browser session under its own
key with a short expiry. Finishing a ceremony pops the challenge, so a
response can only be verified once.
"""

from __future__ import annotations

import time
from typing import Any
from uuid import UUID

import structlog
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url, options_to_json
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from groundwave.auth.invites import NewPasskey
from groundwave.auth.sessions import session_get, session_pop, session_set
from groundwave.config import settings
from groundwave.db.models import UserPasskey, WebSession
from groundwave.errors import AuthenticationError, ValidationError

log = structlog.get_logger()

CHALLENGE_TTL_SECONDS = 300

SETUP_CEREMONY = "webauthn_setup"
LOGIN_CEREMONY = "webauthn_login"
REGISTER_CEREMONY = "webauthn_register"
BREAK_GLASS_CEREMONY = "webauthn_break_glass"


# =============================================================================
# Challenge storage
# =============================================================================


def store_challenge(
    web_session: WebSession,
    ceremony: str,
    challenge: bytes,
    **extra: Any,
) -> None:
    session_set(
        web_session,
        ceremony,
        {
            "challenge": bytes_to_base64url(challenge),
            "expires": time.time() + CHALLENGE_TTL_SECONDS,
            **extra,
        },
    )


def pop_challenge(web_session: WebSession, ceremony: str) -> dict[str, Any] | None:
    """Take the stored ceremony state; None when absent or expired."""
    state = session_get(web_session, ceremony)
    if state is None:
        return None
    session_pop(web_session, ceremony)
    if not isinstance(state, dict) or float(state.get("expires", 0)) < time.time():
        return None
    return state


def challenge_bytes(state: dict[str, Any]) -> bytes:
    return base64url_to_bytes(state["challenge"])


# =============================================================================
# Registration
# =============================================================================


def begin_registration(
    web_session: WebSession,
    ceremony: str,
    *,
    user_id: UUID,
    user_name: str,
    exclude_credentials: list[bytes] | None = None,
    **extra: Any,
) -> str:
    """Registration options as JSON for ``navigator.credentials.create``."""
    options = generate_registration_options(
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
        user_id=user_id.bytes,
        user_name=user_name,
        user_display_name=user_name,
        exclude_credentials=[
            PublicKeyCredentialDescriptor(id=cid) for cid in exclude_credentials or []
        ],
        authenticator_selection=AuthenticatorSelectionCriteria(
            resident_key=ResidentKeyRequirement.REQUIRED,
            user_verification=UserVerificationRequirement.REQUIRED,
        ),
        attestation=AttestationConveyancePreference.NONE,
    )
    store_challenge(web_session, ceremony, options.challenge, **extra)
    return options_to_json(options)


def finish_registration(
    credential: dict[str, Any],
    state: dict[str, Any],
    *,
    label: str | None = None,
) -> NewPasskey:
    """Verify an attestation.

    Raises:
        AuthenticationError: when verification fails.
    """
    try:
        verified = verify_registration_response(
            credential=credential,
            expected_challenge=challenge_bytes(state),
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.rp_origins,
            require_user_verification=True,
        )
    except Exception as e:
        log.warning("WebAuthn registration failed", error=str(e))
        raise AuthenticationError(f"failed to finish registration: {e}") from e

    response = credential.get("response") or {}
    transports = [str(t) for t in response.get("transports") or []]
    return NewPasskey(
        credential_id=verified.credential_id,
        public_key=verified.credential_public_key,
        sign_count=verified.sign_count,
        transports=transports,
        label=label,
    )


# =============================================================================
# Assertion
# =============================================================================


def begin_authentication(
    web_session: WebSession,
    ceremony: str,
    *,
    allow_credentials: list[bytes] | None = None,
    **extra: Any,
) -> str:
    """Assertion options; an empty allow list asks for a discoverable credential."""
    options = generate_authentication_options(
        rp_id=settings.webauthn_rp_id,
        allow_credentials=[
            PublicKeyCredentialDescriptor(id=cid) for cid in allow_credentials or []
        ],
        user_verification=UserVerificationRequirement.REQUIRED,
    )
    store_challenge(web_session, ceremony, options.challenge, **extra)
    return options_to_json(options)


def credential_id_of(credential: dict[str, Any]) -> bytes:
    raw = credential.get("rawId") or credential.get("id")
    if not raw or not isinstance(raw, str):
        raise ValidationError("credential id missing")
    try:
        return base64url_to_bytes(raw)
    except ValueError as e:
        raise ValidationError("credential id malformed") from e


def finish_authentication(
    credential: dict[str, Any],
    state: dict[str, Any],
    passkey: UserPasskey,
) -> int:
    """Verify an assertion against a stored passkey; returns the new sign count.

    Raises:
        AuthenticationError: when verification fails.
    """
    try:
        verified = verify_authentication_response(
            credential=credential,
            expected_challenge=challenge_bytes(state),
            expected_rp_id=settings.webauthn_rp_id,
            expected_origin=settings.rp_origins,
            credential_public_key=passkey.public_key,
            credential_current_sign_count=passkey.sign_count,
            require_user_verification=True,
        )
    except Exception as e:
        log.warning("WebAuthn assertion failed", passkey_id=str(passkey.id), error=str(e))
        raise AuthenticationError(f"failed to verify passkey: {e}") from e
    return int(verified.new_sign_count)
