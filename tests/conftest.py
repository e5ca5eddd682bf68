from __future__ import annotations

import time
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import pytest
from fastapi.testclient import TestClient

from identity_broker.config import Settings
from identity_broker.connectors.google import WORKSPACE_SCOPES
from identity_broker.connectors.quickbooks import SANDBOX_API_BASE
from identity_broker.database import build_engine, build_session_factory, init_db
from identity_broker.main import create_app
from identity_broker.store import CustomerStore
from identity_broker.validators import WorkspaceTokenValidator


class FakeGoogleConnector:
    """Stands in for Google's token and userinfo endpoints."""

    def __init__(self) -> None:
        self.exchanges: list[str] = []
        self.fail_exchange = False
        self.scope = " ".join(WORKSPACE_SCOPES)
        self.profile = {
            "email": "jane@example.com",
            "name": "Jane Doe",
            "picture": "https://example.com/jane.png",
        }
        self.refresh_token_response: dict[str, Any] = {"access_token": "ya29.refreshed", "expires_in": 3599}

    def authorization_url(self, state: str) -> str:
        return "https://accounts.google.test/o/oauth2/v2/auth?" + urlencode(
            {"state": state, "access_type": "offline", "prompt": "consent"}
        )

    def exchange_code(self, code: str) -> dict[str, Any]:
        if self.fail_exchange:
            raise RuntimeError("invalid_grant")
        self.exchanges.append(code)
        n = len(self.exchanges)
        return {
            "access_token": f"ya29.access-{n}",
            "refresh_token": f"1//refresh-{n}",
            "expires_in": 3599,
            "expires_at": int(time.time()) + 3599,
            "scope": self.scope,
        }

    def fetch_profile(self, token: dict[str, Any]) -> dict[str, Any]:
        return dict(self.profile)

    def refresh(self, refresh_token: Optional[str]) -> dict[str, Any]:
        if not refresh_token:
            raise ValueError("No Google refresh token stored")
        return dict(self.refresh_token_response)


class FakeQuickBooksConnector:
    """Stands in for Intuit's token endpoint."""

    api_base_url = SANDBOX_API_BASE

    def __init__(self) -> None:
        self.exchanges: list[str] = []
        self.fail_exchange = False
        self.refresh_token_response: dict[str, Any] = {"access_token": "qb-refreshed", "expires_in": 3600}

    def authorization_url(self, state: str) -> str:
        return "https://appcenter.intuit.test/connect/oauth2/authorize?" + urlencode({"state": state})

    def exchange_code(self, code: str) -> dict[str, Any]:
        if self.fail_exchange:
            raise RuntimeError("invalid_grant")
        self.exchanges.append(code)
        n = len(self.exchanges)
        return {
            "access_token": f"qb-access-{n}",
            "refresh_token": f"qb-refresh-{n}",
            "expires_in": 3600,
            "x_refresh_token_expires_in": 8726400,
        }

    def refresh(self, refresh_token: Optional[str]) -> dict[str, Any]:
        if not refresh_token:
            raise ValueError("No QuickBooks refresh token stored")
        return dict(self.refresh_token_response)


class FakeTokenInfo:
    """Replaces ``requests.get`` for Google's tokeninfo endpoint."""

    def __init__(self) -> None:
        self.status_code = 200
        self.payload: dict[str, Any] = {"expires_in": "3200", "scope": " ".join(WORKSPACE_SCOPES)}
        self.error: Optional[Exception] = None
        self.calls: list[dict[str, Any]] = []

    def respond(self, status_code: int = 200, payload: Optional[dict[str, Any]] = None) -> None:
        self.status_code = status_code
        if payload is not None:
            self.payload = payload

    def __call__(self, url, params=None, timeout=None, **kwargs):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code, self.payload)


class FakeResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self._payload = payload

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


def query_of(location: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(location).query).items()}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'customers.db'}",
        public_base_url="https://broker.example.com",
        session_secret="test-session-secret",
        environment="development",
        admin_api_key="",
        qbo_environment="sandbox",
        token_validation_timeout_seconds=2.0,
        rate_limit_requests_per_minute_ip=1000,
        rate_limit_requests_per_minute_customer=1000,
    )


@pytest.fixture
def engine(settings):
    engine = build_engine(settings.database_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> CustomerStore:
    return CustomerStore(build_session_factory(engine))


@pytest.fixture
def google() -> FakeGoogleConnector:
    return FakeGoogleConnector()


@pytest.fixture
def quickbooks() -> FakeQuickBooksConnector:
    return FakeQuickBooksConnector()


@pytest.fixture
def tokeninfo(monkeypatch) -> FakeTokenInfo:
    fake = FakeTokenInfo()
    monkeypatch.setattr("identity_broker.validators.requests.get", fake)
    return fake


@pytest.fixture
def make_client(settings, store, google, quickbooks, tokeninfo):
    """Build a TestClient around an isolated app; keyword overrides replace settings fields."""
    clients = []

    def _make(**overrides) -> TestClient:
        app_settings = settings.model_copy(update=overrides) if overrides else settings
        app = create_app(
            app_settings,
            store=store,
            google=google,
            quickbooks=quickbooks,
            workspace_validator=WorkspaceTokenValidator(timeout=app_settings.token_validation_timeout_seconds),
        )
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()


@pytest.fixture
def workspace_login(client):
    """Complete a Google consent on ``client``; returns the new customer id."""

    def _login(code: str = "google-code") -> str:
        begin = client.get("/auth/workspace", follow_redirects=False)
        state = query_of(begin.headers["location"])["state"]
        resp = client.get(
            "/auth/workspace/callback",
            params={"code": code, "state": state},
            follow_redirects=False,
        )
        params = query_of(resp.headers["location"])
        assert params["workspace_success"] == "1", params
        return params["customer_id"]

    return _login


@pytest.fixture
def connect_accounting(client):
    """Run a QuickBooks consent on ``client`` from the given begin path; returns the result params."""

    def _connect(begin_path: str = "/auth/accounting", realm_id: str = "9130350000000001", code: str = "qb-code", **begin_params) -> dict[str, str]:
        begin = client.get(begin_path, params=begin_params or None, follow_redirects=False)
        state = query_of(begin.headers["location"]).get("state")
        resp = client.get(
            "/auth/accounting/callback",
            params={"code": code, "state": state, "realmId": realm_id},
            follow_redirects=False,
        )
        return query_of(resp.headers["location"])

    return _connect
