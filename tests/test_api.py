"""HTTP contract tests for the FastAPI app.

The app is driven through TestClient without entering its lifespan, so no
database, rebuild worker or WhatsApp client is started. Database access is
replaced with a mock session through dependency overrides.
"""

import hashlib
import hmac
from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr

from groundwave.api.app import create_app
from groundwave.api.routes import security as security_routes
from groundwave.api.routes import whatsapp as whatsapp_routes
from groundwave.api.routes import zettel as zettel_routes
from groundwave.auth.csrf import CSRF_HEADER, generate_csrf_token
from groundwave.auth.dependencies import (
    get_optional_user,
    require_admin,
    require_sensitive_access,
    require_session,
    require_user,
)
from groundwave.auth.sessions import SESSION_COOKIE
from groundwave.config import settings
from groundwave.db.connection import get_session_dependency
from groundwave.auth.users import UserManager
from groundwave.db.models import HealthProfile, User, WebSession, ZettelNote, utcnow_naive

CSRF_SECRET = "test-csrf-secret"
WEBHOOK_KEY = "hook-key"


def make_user(*, admin: bool = False) -> User:
    return User(
        id=uuid4(),
        display_name="Ada" if admin else "Bob",
        is_admin=admin,
    )


def make_web_session(user: User | None = None) -> WebSession:
    now = utcnow_naive()
    return WebSession(
        token_hash="f" * 64,
        user_id=user.id if user else None,
        user_display_name=user.display_name if user else None,
        created_at=now,
        last_activity_at=now,
        absolute_expires_at=now + timedelta(days=14),
        authenticated_expires_at=now + timedelta(days=14) if user else None,
        data={},
    )


@pytest.fixture
def mock_db() -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    count = MagicMock()
    count.scalar_one.return_value = 0
    db.execute.return_value = count
    return db


@pytest.fixture
def app(mock_db: AsyncMock) -> FastAPI:
    application = create_app()

    async def session_override() -> AsyncGenerator[AsyncMock]:
        yield mock_db

    application.dependency_overrides[get_session_dependency] = session_override
    return application


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app, follow_redirects=False)


@pytest.fixture
def csrf_secret(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(settings, "csrf_secret", SecretStr(CSRF_SECRET))
    return CSRF_SECRET


@pytest.fixture
def webhook_key(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setattr(settings, "waha_webhook_key", SecretStr(WEBHOOK_KEY))
    return WEBHOOK_KEY


def signed(body: bytes, key: str = WEBHOOK_KEY) -> dict[str, str]:
    digest = hmac.new(key.encode(), body, hashlib.sha512).hexdigest()
    return {"content-type": "application/json", "x-webhook-hmac": digest}


@pytest.fixture
def no_whatsapp(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(whatsapp_routes, "get_client", lambda: None)


class TestPublicEndpoints:
    """Endpoints that need neither a session nor the database."""

    def test_connectivity(self, client: TestClient) -> None:
        response = client.get("/connectivity")
        assert response.status_code == 200
        assert response.text == "1"

    @pytest.mark.parametrize("path", ["/security.txt", "/.well-known/security.txt"])
    def test_security_txt_redirects(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch, path: str
    ) -> None:
        monkeypatch.setattr(settings, "security_contact_url", "https://example.org/security.txt")
        response = client.get(path)
        assert response.status_code == 301
        assert response.headers["location"] == "https://example.org/security.txt"

    def test_security_txt_without_contact(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "security_contact_url", "")
        assert client.get("/security.txt").status_code == 404

    def test_root_reports_version(self, client: TestClient) -> None:
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["name"] == "Groundwave"


class TestAuthenticationErrors:
    """Unauthenticated and unauthorized requests."""

    def test_html_navigation_redirects_to_login(self, client: TestClient) -> None:
        response = client.get("/qsl", headers={"accept": "text/html"})
        assert response.status_code == 302
        assert response.headers["location"] == "/login?next=%2Fqsl"

    def test_login_redirect_keeps_query(self, client: TestClient) -> None:
        response = client.get("/qsl?page=2", headers={"accept": "text/html,*/*"})
        assert response.status_code == 302
        assert response.headers["location"] == "/login?next=%2Fqsl%3Fpage%3D2"

    def test_api_call_gets_401(self, client: TestClient) -> None:
        response = client.get("/qsl", headers={"accept": "application/json"})
        assert response.status_code == 401
        assert response.json() == {"error": "not authenticated"}

    def test_member_cannot_reach_admin_routes(
        self, app: FastAPI, client: TestClient, no_whatsapp: None
    ) -> None:
        app.dependency_overrides[get_optional_user] = lambda: make_user()
        response = client.get("/whatsapp/status")
        assert response.status_code == 403
        assert response.json() == {"error": "Access restricted"}


class TestWhatsAppRoutes:
    """Status and webhook endpoints."""

    def test_status_without_client(
        self, app: FastAPI, client: TestClient, no_whatsapp: None
    ) -> None:
        app.dependency_overrides[require_admin] = lambda: make_user(admin=True)
        response = client.get("/whatsapp/status")
        assert response.status_code == 200
        assert response.json() == {"status": "unavailable", "qrCode": "", "connected": False}

    def test_webhook_without_client_is_not_handled(
        self, client: TestClient, no_whatsapp: None, webhook_key: str
    ) -> None:
        body = b'{"event": "session.status", "payload": {"status": "WORKING"}}'
        response = client.post("/whatsapp/webhook", content=body, headers=signed(body))
        assert response.status_code == 200
        assert response.json() == {"ok": True, "handled": False}

    def test_webhook_rejects_missing_signature(
        self, client: TestClient, no_whatsapp: None, webhook_key: str
    ) -> None:
        response = client.post("/whatsapp/webhook", json={"event": "message"})
        assert response.status_code == 401

    def test_webhook_rejects_wrong_key(
        self, client: TestClient, no_whatsapp: None, webhook_key: str
    ) -> None:
        body = b'{"event": "message"}'
        response = client.post(
            "/whatsapp/webhook", content=body, headers=signed(body, key="other-key")
        )
        assert response.status_code == 401

    def test_webhook_without_configured_key_is_rejected(
        self, client: TestClient, no_whatsapp: None, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "waha_webhook_key", SecretStr(""))
        body = b'{"event": "message"}'
        response = client.post("/whatsapp/webhook", content=body, headers=signed(body, key=""))
        assert response.status_code == 401
        assert response.json() == {"error": "bad signature"}

    def test_webhook_rejects_non_object_body(
        self, client: TestClient, no_whatsapp: None, webhook_key: str
    ) -> None:
        body = b'["not", "an", "object"]'
        response = client.post("/whatsapp/webhook", content=body, headers=signed(body))
        assert response.status_code == 400


class TestPasskeyRegistration:
    """Adding a passkey to a signed-in account."""

    @pytest.fixture(autouse=True)
    def signed_in(self, app: FastAPI) -> None:
        user = make_user()
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_session] = lambda: make_web_session(user)

    def test_finish_without_ceremony(self, client: TestClient) -> None:
        response = client.post("/webauthn/passkey/finish", json={})
        assert response.status_code == 400
        assert response.json() == {"error": "registration session missing"}

    def test_plural_path_is_not_mounted(self, client: TestClient) -> None:
        response = client.post("/webauthn/passkeys/finish", json={})
        assert response.status_code == 404


class TestChatLinkValidation:
    """Note id checks on the chat link endpoints."""

    @pytest.fixture(autouse=True)
    def admin(self, app: FastAPI) -> None:
        app.dependency_overrides[require_admin] = lambda: make_user(admin=True)

    @pytest.mark.parametrize("path", ["/zk/chat/links", "/zk/chat/backlinks"])
    def test_blank_note_id(self, client: TestClient, path: str) -> None:
        response = client.post(path, json={"note_id": "  "})
        assert response.status_code == 400
        assert response.json() == {"error": "Note ID is required"}

    def test_invalid_note_id(self, client: TestClient) -> None:
        response = client.post("/zk/chat/links", json={"note_id": "not-a-uuid"})
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid note ID"}


class TestZettelIngest:
    """Posting an org document into the index."""

    def test_commits_before_requesting_rebuild(
        self, app: FastAPI, client: TestClient, mock_db: AsyncMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        app.dependency_overrides[require_admin] = lambda: make_user(admin=True)
        note = ZettelNote(id="0b6c2b4e-3c1f-4c55-9a4a-5d1e9f0a7b21", title="Antennas")
        index = MagicMock()
        index.return_value.ingest = AsyncMock(return_value=note)
        monkeypatch.setattr(zettel_routes, "ZettelIndex", index)
        commits_seen: list[int] = []
        worker = MagicMock()
        worker.request.side_effect = lambda: commits_seen.append(mock_db.commit.await_count)
        monkeypatch.setattr(zettel_routes, "get_rebuild_worker", lambda: worker)

        response = client.post(
            "/zk/ingest", content="#+title: Antennas\n".encode(), headers={"x-filename": "a.org"}
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Antennas"
        index.return_value.ingest.assert_awaited_once_with("#+title: Antennas\n", filename="a.org")
        assert commits_seen == [1]


class TestCSRF:
    """CSRF enforcement for cookie-bearing unsafe requests."""

    def test_cookie_without_token_is_rejected(
        self, client: TestClient, csrf_secret: str
    ) -> None:
        client.cookies.set(SESSION_COOKIE, "session-token")
        response = client.post("/zk/chat/links", json={"note_id": ""})
        assert response.status_code == 403
        assert response.json() == {"error": "invalid CSRF token"}

    def test_wrong_token_is_rejected(self, client: TestClient, csrf_secret: str) -> None:
        client.cookies.set(SESSION_COOKIE, "session-token")
        response = client.post(
            "/zk/chat/links", json={"note_id": ""}, headers={CSRF_HEADER: "0" * 64}
        )
        assert response.status_code == 403

    def test_valid_header_passes(
        self, app: FastAPI, client: TestClient, csrf_secret: str
    ) -> None:
        app.dependency_overrides[require_admin] = lambda: make_user(admin=True)
        client.cookies.set(SESSION_COOKIE, "session-token")
        token = generate_csrf_token("session-token", csrf_secret)
        response = client.post(
            "/zk/chat/links", json={"note_id": ""}, headers={CSRF_HEADER: token}
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Note ID is required"}

    def test_valid_form_field_passes(
        self, app: FastAPI, client: TestClient, csrf_secret: str
    ) -> None:
        user = make_user()
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_session] = lambda: make_web_session(user)
        client.cookies.set(SESSION_COOKIE, "session-token")
        token = generate_csrf_token("session-token", csrf_secret)
        response = client.post("/security/sessions/invalidate-others", data={"_csrf": token})
        # Past CSRF, the route asks for elevation.
        assert response.status_code == 303

    def test_form_fields_reach_the_handler(
        self,
        app: FastAPI,
        client: TestClient,
        csrf_secret: str,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        admin = make_user(admin=True)
        app.dependency_overrides[require_user] = lambda: admin
        app.dependency_overrides[require_sensitive_access] = lambda: make_web_session(admin)
        invites = MagicMock()
        invites.return_value.create = AsyncMock()
        monkeypatch.setattr(security_routes, "InviteManager", invites)
        client.cookies.set(SESSION_COOKIE, "session-token")
        token = generate_csrf_token("session-token", csrf_secret)

        response = client.post(
            "/security/invites", data={"_csrf": token, "display_name": "Grace"}
        )

        assert response.status_code == 303
        invites.return_value.create.assert_awaited_once_with(
            created_by=admin.id, display_name="Grace"
        )

    def test_requests_without_cookie_skip_check(
        self, app: FastAPI, client: TestClient, csrf_secret: str
    ) -> None:
        app.dependency_overrides[require_admin] = lambda: make_user(admin=True)
        response = client.post("/zk/chat/links", json={"note_id": ""})
        assert response.status_code == 400

    def test_webhook_is_exempt(
        self,
        client: TestClient,
        csrf_secret: str,
        no_whatsapp: None,
        webhook_key: str,
    ) -> None:
        client.cookies.set(SESSION_COOKIE, "session-token")
        response = client.post("/whatsapp/webhook", content=b"{}", headers=signed(b"{}"))
        assert response.status_code == 200

    def test_token_header_is_emitted(self, client: TestClient, csrf_secret: str) -> None:
        client.cookies.set(SESSION_COOKIE, "session-token")
        response = client.get("/connectivity")
        assert response.headers[CSRF_HEADER] == generate_csrf_token("session-token", csrf_secret)

    def test_no_token_header_without_cookie(self, client: TestClient, csrf_secret: str) -> None:
        response = client.get("/connectivity")
        assert CSRF_HEADER not in response.headers


class TestSensitiveAccess:
    """Security mutations need an elevated session."""

    def test_redirects_to_break_glass_with_referer(
        self, app: FastAPI, client: TestClient
    ) -> None:
        user = make_user()
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_session] = lambda: make_web_session(user)
        response = client.post(
            "/security/sessions/invalidate-others",
            headers={"referer": "https://example.org/security?tab=sessions"},
        )
        assert response.status_code == 303
        assert response.headers["location"] == "/break-glass?next=%2Fsecurity%3Ftab%3Dsessions"

    def test_elevated_session_proceeds(
        self, app: FastAPI, client: TestClient, mock_db: AsyncMock
    ) -> None:
        user = make_user()
        ws = make_web_session(user)
        ws.sensitive_access_expires_at = utcnow_naive() + timedelta(minutes=5)
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_session] = lambda: ws
        rows = MagicMock()
        rows.rowcount = 2
        mock_db.execute.return_value = rows

        response = client.post("/security/sessions/invalidate-others")

        assert response.status_code == 303
        assert response.headers["location"] == "/security"
        assert ws.data["flash"][-1]["message"] == "Invalidated 2 other session(s)"


class TestHealthProfiles:
    """Break-glass scoping on the health profile list."""

    @pytest.fixture
    def profiles(self, monkeypatch: pytest.MonkeyPatch) -> list[HealthProfile]:
        items = [HealthProfile(name="Ada", is_primary=True), HealthProfile(name="Bob")]
        monkeypatch.setattr(
            UserManager, "visible_health_profiles", AsyncMock(return_value=items)
        )
        return items

    def _login(self, app: FastAPI, ws: WebSession) -> None:
        user = make_user()
        app.dependency_overrides[require_user] = lambda: user
        app.dependency_overrides[require_session] = lambda: ws

    def test_elevated_session_sees_all(
        self, app: FastAPI, client: TestClient, profiles: list[HealthProfile]
    ) -> None:
        ws = make_web_session()
        ws.sensitive_access_expires_at = utcnow_naive() + timedelta(minutes=5)
        self._login(app, ws)
        names = [p["name"] for p in client.get("/health").json()["profiles"]]
        assert names == ["Ada", "Bob"]

    def test_break_glass_sees_unlocked_only(
        self, app: FastAPI, client: TestClient, profiles: list[HealthProfile]
    ) -> None:
        ws = make_web_session()
        ws.break_glass_profile_ids = [str(profiles[1].id)]
        ws.break_glass_expires_at = utcnow_naive() + timedelta(minutes=5)
        self._login(app, ws)
        names = [p["name"] for p in client.get("/health").json()["profiles"]]
        assert names == ["Bob"]

    def test_locked_session_is_sent_to_break_glass(
        self, app: FastAPI, client: TestClient, profiles: list[HealthProfile]
    ) -> None:
        self._login(app, make_web_session())
        response = client.get("/health")
        assert response.status_code == 303
        assert response.headers["location"] == "/break-glass?next=%2Fhealth"


class TestSetup:
    """GET /setup before any user exists."""

    def test_unavailable_without_bootstrap_token(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "bootstrap_token", SecretStr(""))
        response = client.get("/setup")
        assert response.status_code == 403
        assert response.json() == {"error": "Setup is unavailable"}

    def test_wrong_bootstrap_token(
        self, client: TestClient, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "bootstrap_token", SecretStr("open-sesame"))
        response = client.get("/setup", params={"token": "guess"})
        assert response.status_code == 403
        assert response.json() == {"error": "Invalid setup link"}

    def test_bootstrap_token_starts_session(
        self, client: TestClient, mock_db: AsyncMock, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "bootstrap_token", SecretStr("open-sesame"))
        response = client.get("/setup", params={"token": "open-sesame"})
        assert response.status_code == 200
        assert response.json() == {"mode": "bootstrap", "display_name": ""}
        assert SESSION_COOKIE in response.cookies
        mock_db.add.assert_called_once()


class TestCacheHeaders:
    """NoCacheMiddleware."""

    def test_json_is_not_cached(self, client: TestClient) -> None:
        response = client.get("/")
        assert "no-store" in response.headers["cache-control"]
        assert response.headers["pragma"] == "no-cache"

    def test_plain_text_is_left_alone(self, client: TestClient) -> None:
        response = client.get("/connectivity")
        assert "cache-control" not in response.headers
