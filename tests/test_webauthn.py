"""Tests for WebAuthn ceremony state and option generation."""

import json
from datetime import timedelta
from uuid import uuid4

import pytest
from webauthn.helpers import bytes_to_base64url

from groundwave.auth import webauthn_flows
from groundwave.auth.webauthn_flows import (
    LOGIN_CEREMONY,
    SETUP_CEREMONY,
    begin_authentication,
    begin_registration,
    challenge_bytes,
    credential_id_of,
    finish_authentication,
    finish_registration,
    pop_challenge,
    store_challenge,
)
from groundwave.config import settings
from groundwave.db.models import UserPasskey, WebSession, utcnow_naive
from groundwave.errors import AuthenticationError, ValidationError


@pytest.fixture
def ws() -> WebSession:
    now = utcnow_naive()
    return WebSession(
        token_hash="a" * 64,
        created_at=now,
        last_activity_at=now,
        absolute_expires_at=now + timedelta(days=14),
        data={},
    )


@pytest.fixture
def relying_party(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "webauthn_rp_id", "example.org")
    monkeypatch.setattr(settings, "webauthn_rp_origins", "https://example.org")


class TestChallengeStore:
    """Per-ceremony challenge state in the session."""

    def test_store_then_pop(self, ws: WebSession) -> None:
        store_challenge(ws, LOGIN_CEREMONY, b"challenge", next="/zk")
        state = pop_challenge(ws, LOGIN_CEREMONY)
        assert state is not None
        assert challenge_bytes(state) == b"challenge"
        assert state["next"] == "/zk"

    def test_pop_is_single_use(self, ws: WebSession) -> None:
        store_challenge(ws, LOGIN_CEREMONY, b"challenge")
        assert pop_challenge(ws, LOGIN_CEREMONY) is not None
        assert pop_challenge(ws, LOGIN_CEREMONY) is None

    def test_ceremonies_are_separate(self, ws: WebSession) -> None:
        store_challenge(ws, LOGIN_CEREMONY, b"login")
        assert pop_challenge(ws, SETUP_CEREMONY) is None
        assert pop_challenge(ws, LOGIN_CEREMONY) is not None

    def test_expired_challenge_is_dropped(
        self, ws: WebSession, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        store_challenge(ws, LOGIN_CEREMONY, b"challenge")
        later = webauthn_flows.time.time() + webauthn_flows.CHALLENGE_TTL_SECONDS + 1
        monkeypatch.setattr(webauthn_flows.time, "time", lambda: later)

        assert pop_challenge(ws, LOGIN_CEREMONY) is None
        assert LOGIN_CEREMONY not in ws.data


class TestCredentialId:
    """Extracting the raw credential id from a browser response."""

    def test_prefers_raw_id(self) -> None:
        raw = bytes_to_base64url(b"\x01\x02\x03")
        assert credential_id_of({"rawId": raw, "id": "ignored"}) == b"\x01\x02\x03"

    def test_falls_back_to_id(self) -> None:
        assert credential_id_of({"id": bytes_to_base64url(b"abc")}) == b"abc"

    @pytest.mark.parametrize("credential", [{}, {"id": ""}, {"rawId": 12}])
    def test_missing(self, credential: dict) -> None:
        with pytest.raises(ValidationError, match="credential id missing"):
            credential_id_of(credential)


class TestOptions:
    """Options handed to navigator.credentials."""

    def test_registration_options(self, ws: WebSession, relying_party: None) -> None:
        user_id = uuid4()
        options = json.loads(
            begin_registration(
                ws,
                SETUP_CEREMONY,
                user_id=user_id,
                user_name="Ada",
                exclude_credentials=[b"old-key"],
            )
        )

        assert options["rp"]["id"] == "example.org"
        assert options["user"]["name"] == "Ada"
        assert options["authenticatorSelection"]["residentKey"] == "required"
        assert options["authenticatorSelection"]["userVerification"] == "required"
        assert options["excludeCredentials"][0]["id"] == bytes_to_base64url(b"old-key")
        state = pop_challenge(ws, SETUP_CEREMONY)
        assert state is not None
        assert state["challenge"] == options["challenge"]

    def test_discoverable_login_options(self, ws: WebSession, relying_party: None) -> None:
        options = json.loads(begin_authentication(ws, LOGIN_CEREMONY))
        assert options["rpId"] == "example.org"
        assert options.get("allowCredentials", []) == []
        assert options["userVerification"] == "required"
        assert pop_challenge(ws, LOGIN_CEREMONY) is not None


class TestVerificationFailures:
    """Bad browser responses become AuthenticationError."""

    def test_registration(self, relying_party: None) -> None:
        state = {"challenge": bytes_to_base64url(b"challenge")}
        with pytest.raises(AuthenticationError, match="failed to finish registration"):
            finish_registration({"id": "x", "rawId": "x", "response": {}}, state)

    def test_assertion(self, relying_party: None) -> None:
        passkey = UserPasskey(
            user_id=uuid4(),
            credential_id=b"cred",
            public_key=b"not-a-key",
            sign_count=0,
        )
        state = {"challenge": bytes_to_base64url(b"challenge")}
        with pytest.raises(AuthenticationError, match="failed to verify passkey"):
            finish_authentication({"id": "x", "rawId": "x", "response": {}}, state, passkey)
