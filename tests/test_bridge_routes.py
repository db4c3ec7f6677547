try:
    from . import _bootstrap  # noqa: F401
except ImportError:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import functools
import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from graph_bridge.clients.graph import GraphRequestError
from graph_bridge.clients.microsoft_auth import (
    MicrosoftOAuthClient,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
)
from graph_bridge.clients.sqlite_store import SQLiteTokenStore
from graph_bridge.clients.token_store import InMemoryTokenStore
from graph_bridge.core.config import OAuthSettings, get_settings
from graph_bridge.main import app
from graph_bridge.models.token import TokenRecord
from graph_bridge.schemas import JOIN_URL_PLACEHOLDER, MeetingResult
from graph_bridge.services.graph_tokens import GraphTokenService
from graph_bridge.services.token_cipher import TokenCipherService

pytestmark = pytest.mark.anyio


class DummyOAuthClient:
    def __init__(self) -> None:
        self.codes: list[tuple[str, str]] = []
        self.exchange_error: Exception | None = None

    def build_authorization_url(self, state: str, redirect_uri: str) -> str:
        return f"https://login.example.com/authorize?state={state}"

    async def exchange_authorization_code(self, code: str, redirect_uri: str):
        self.codes.append((code, redirect_uri))
        if self.exchange_error:
            raise self.exchange_error
        return "access-token", "refresh-token", 3600

    async def refresh_token(self, refresh_token: str):
        raise OAuthTokenExchangeError('{"error":"invalid_grant"}')


class RecordingGraphClient:
    def __init__(self) -> None:
        self.mail: list[tuple[str, object]] = []
        self.meetings: list[tuple[str, object]] = []
        self.error: Exception | None = None
        self.meeting_result = MeetingResult(event_id="evt-1")

    async def send_mail(self, access_token, envelope) -> None:
        if self.error:
            raise self.error
        self.mail.append((access_token, envelope))

    async def create_meeting(self, access_token, meeting) -> MeetingResult:
        if self.error:
            raise self.error
        self.meetings.append((access_token, meeting))
        return self.meeting_result


class BridgeHarness:
    def __init__(self) -> None:
        self.settings = get_settings().model_copy(deep=True)
        self.settings.frontend_base_url = None
        self.oauth_client = DummyOAuthClient()
        self.store = InMemoryTokenStore()
        self.graph_client = RecordingGraphClient()
        self.token_service = GraphTokenService(
            store=self.store,
            oauth_client=self.oauth_client,
            oauth_settings=OAuthSettings(),
            state_encoder=OAuthStateEncoder("state-secret"),
        )

    def store_token(self, principal: str, *, expires_in: timedelta, refresh: str | None = "r") -> None:
        self.store.put(
            principal,
            TokenRecord(
                access_token=f"token-for-{principal}",
                refresh_token=refresh,
                expires_at=datetime.now(timezone.utc) + expires_in,
            ),
        )


@pytest.fixture()
def bridge():
    from graph_bridge import dependencies

    harness = BridgeHarness()
    app.dependency_overrides.clear()
    app.dependency_overrides.update(
        {
            dependencies.get_graph_token_service: lambda: harness.token_service,
            dependencies.get_graph_client: lambda: harness.graph_client,
            dependencies.get_app_settings: lambda: harness.settings,
        }
    )

    yield harness

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )


def _state_from(authorization_url: str) -> str:
    return parse_qs(urlparse(authorization_url).query)["state"][0]


async def test_login_returns_authorization_url_json(bridge):
    async with _client() as client:
        response = await client.get("/login", params={"principal_id": "a@x.com"})

    assert response.status_code == 200
    url = response.json()["authorization_url"]
    state_data = bridge.token_service.decode_state(_state_from(url))
    assert state_data["principal_id"] == "a@x.com"
    assert state_data["redirect_uri"] == str(bridge.settings.microsoft.redirect_uri)


async def test_login_redirects_for_html_accept(bridge):
    async with _client() as client:
        response = await client.get(
            "/login",
            params={"principal_id": "a@x.com"},
            headers={"accept": "text/html"},
        )

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://login.example.com/authorize")


async def test_login_derives_redirect_uri_when_not_configured(bridge):
    bridge.settings.microsoft.redirect_uri = None

    async with _client() as client:
        response = await client.get("/login", params={"principal_id": "a@x.com"})

    state_data = bridge.token_service.decode_state(_state_from(response.json()["authorization_url"]))
    assert state_data["redirect_uri"] == "http://testserver/redirect"


async def test_login_requires_principal_without_default(bridge):
    async with _client() as client:
        response = await client.get("/login")

    assert response.status_code == 422


async def test_redirect_callback_stores_token(bridge):
    async with _client() as client:
        login = await client.get("/login", params={"principal_id": "a@x.com"})
        state = _state_from(login.json()["authorization_url"])
        callback = await client.get("/redirect", params={"state": state, "code": "oauth-code"})

    assert callback.status_code == 200
    assert callback.json() == {"status": "connected", "principal_id": "a@x.com", "redirect_to": None}
    assert bridge.oauth_client.codes == [("oauth-code", str(bridge.settings.microsoft.redirect_uri))]
    assert bridge.store.get("a@x.com").access_token == "access-token"


async def test_redirect_callback_redirects_browser_to_requested_page(bridge):
    async with _client() as client:
        login = await client.get(
            "/login",
            params={"principal_id": "a@x.com", "redirect_to": "https://apex.example.com/f?p=100"},
        )
        state = _state_from(login.json()["authorization_url"])
        callback = await client.get(
            "/redirect",
            params={"state": state, "code": "oauth-code"},
            headers={"accept": "text/html"},
        )

    assert callback.status_code == 307
    assert callback.headers["location"] == "https://apex.example.com/f?p=100"


async def test_post_redirect_rejects_invalid_state(bridge):
    async with _client() as client:
        response = await client.post("/redirect", json={"code": "c", "state": "forged"})

    assert response.status_code == 400
    assert bridge.oauth_client.codes == []


async def test_redirect_callback_reports_rejected_code(bridge):
    bridge.oauth_client.exchange_error = OAuthTokenExchangeError("AADSTS70000: invalid grant")

    async with _client() as client:
        login = await client.get("/login", params={"principal_id": "a@x.com"})
        state = _state_from(login.json()["authorization_url"])
        callback = await client.get("/redirect", params={"state": state, "code": "stale"})

    assert callback.status_code == 400
    assert "AADSTS70000" in callback.json()["detail"]["details"]
    assert bridge.store.get("a@x.com") is None


async def test_redirect_callback_surfaces_provider_error(bridge):
    async with _client() as client:
        response = await client.get(
            "/redirect",
            params={"error": "access_denied", "error_description": "User declined consent"},
        )

    assert response.status_code == 400
    assert response.json()["detail"]["details"] == "User declined consent"


async def test_send_mail_requires_authentication(bridge):
    async with _client() as client:
        response = await client.post(
            "/send-mail", json={"principalId": "a@x.com", "toEmails": ["b@y.com"]}
        )

    assert response.status_code == 401
    assert "/login" in response.json()["detail"]
    assert bridge.graph_client.mail == []


async def test_send_mail_forwards_with_cached_token(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(hours=1))

    async with _client() as client:
        response = await client.post(
            "/send-mail",
            json={
                "principalId": "a@x.com",
                "subject": "Report",
                "body": "<p>Done</p>",
                "toEmails": ["b@y.com", "c@y.com"],
            },
        )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Mail sent successfully"}
    token, envelope = bridge.graph_client.mail[0]
    assert token == "token-for-a@x.com"
    assert envelope.to_emails == ["b@y.com", "c@y.com"]


async def test_send_mail_relays_remote_rejection(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(hours=1))
    bridge.graph_client.error = GraphRequestError(
        "Mail send failed", status_code=403, detail="ErrorAccessDenied raw body"
    )

    async with _client() as client:
        response = await client.post(
            "/send-mail", json={"principalId": "a@x.com", "toEmails": ["b@y.com"]}
        )

    assert response.status_code == 502
    assert response.json()["detail"] == {
        "error": "Mail send failed",
        "details": "ErrorAccessDenied raw body",
    }


async def test_send_mail_rejects_implausible_recipient(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(hours=1))

    async with _client() as client:
        response = await client.post(
            "/send-mail", json={"principalId": "a@x.com", "toEmails": ["nobody"]}
        )

    assert response.status_code == 422


async def test_expired_token_that_cannot_refresh_asks_for_sign_in(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(seconds=-1))

    async with _client() as client:
        response = await client.post(
            "/send-mail", json={"principalId": "a@x.com", "toEmails": ["b@y.com"]}
        )

    assert response.status_code == 401
    assert "invalid_grant" in response.json()["detail"]["details"]


async def test_create_meeting_returns_event_and_join_placeholder(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(hours=1))

    async with _client() as client:
        response = await client.post(
            "/create-meeting",
            json={
                "principalId": "a@x.com",
                "subject": "Kickoff",
                "start": "2025-03-10T10:00:00",
                "end": "2025-03-10T10:30:00",
                "attendees": ["b@y.com"],
            },
        )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["eventId"] == "evt-1"
    assert body["joinUrl"] == JOIN_URL_PLACEHOLDER
    _, meeting = bridge.graph_client.meetings[0]
    assert meeting.attendees == ["b@y.com"]


async def test_create_meeting_network_failure_is_internal_error(bridge):
    bridge.store_token("a@x.com", expires_in=timedelta(hours=1))
    bridge.graph_client.error = httpx.ConnectError("graph unreachable")

    async with _client() as client:
        response = await client.post(
            "/create-meeting",
            json={
                "principalId": "a@x.com",
                "start": "2025-03-10T10:00:00",
                "end": "2025-03-10T10:30:00",
            },
        )

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"


async def test_health_and_index(bridge):
    async with _client() as client:
        health = await client.get("/health")
        index = await client.get("/")

    assert health.json() == {"status": "ok"}
    assert "/login" in index.text


async def test_send_mail_without_principal_is_rejected(bridge):
    async with _client() as client:
        response = await client.post("/send-mail", json={"toEmails": ["b@y.com"]})

    assert response.status_code == 422
    assert bridge.graph_client.mail == []


async def test_undecryptable_stored_token_is_internal_error(bridge, tmp_path, caplog):
    db_path = str(tmp_path / "tokens.db")
    SQLiteTokenStore(db_path, TokenCipherService(secret="old-secret")).put(
        "a@x.com", TokenRecord.from_grant("access", "refresh", 3600)
    )
    bridge.token_service = GraphTokenService(
        store=SQLiteTokenStore(db_path, TokenCipherService(secret="new-secret")),
        oauth_client=bridge.oauth_client,
        oauth_settings=OAuthSettings(),
        state_encoder=OAuthStateEncoder("state-secret"),
    )

    with caplog.at_level(logging.ERROR, logger="graph_bridge.api.routes"):
        async with _client() as client:
            response = await client.post(
                "/send-mail", json={"principalId": "a@x.com", "toEmails": ["b@y.com"]}
            )

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal server error"
    assert any(record.exc_info for record in caplog.records)
    assert bridge.graph_client.mail == []


async def test_lifespan_wires_token_service_and_closes_store(monkeypatch):
    from graph_bridge import main
    from graph_bridge.dependencies import clients as client_factories

    token_requests: list[httpx.Request] = []

    def token_endpoint(request: httpx.Request) -> httpx.Response:
        token_requests.append(request)
        return httpx.Response(200, json={"access_token": "new", "expires_in": "soon"})

    monkeypatch.setattr(
        client_factories,
        "MicrosoftOAuthClient",
        functools.partial(MicrosoftOAuthClient, transport=httpx.MockTransport(token_endpoint)),
    )
    opened_stores = []

    def build_store(settings):
        store = client_factories.build_token_store(settings)
        opened_stores.append(store)
        return store

    monkeypatch.setattr(main, "build_token_store", build_store)

    settings = get_settings().model_copy(deep=True)
    settings.storage.backend = "memory"
    bridge_app = main.create_app(settings)
    mail = {"principalId": "a@x.com", "toEmails": ["b@y.com"]}

    async with bridge_app.router.lifespan_context(bridge_app):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=bridge_app), base_url="http://testserver"
        ) as client:
            missing = await client.post("/send-mail", json=mail)
            (store,) = opened_stores
            store.put(
                "a@x.com",
                TokenRecord(
                    access_token="stale",
                    refresh_token="refresh",
                    expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
                ),
            )
            unrefreshable = await client.post("/send-mail", json=mail)

    assert missing.status_code == 401
    assert "/login" in missing.json()["detail"]
    assert unrefreshable.status_code == 401
    assert "expires_in" in unrefreshable.json()["detail"]["details"]
    assert len(token_requests) == 1
    assert store.get("a@x.com") is None
