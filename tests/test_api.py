from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.testclient import TestClient

from credential_service import main
from credential_service.api import routes
from credential_service.config import Settings
from credential_service.domain.errors import StoreUnavailableError
from credential_service.domain.notifications import NotificationKind
from credential_service.domain.service import CredentialManager
from credential_service.main import configure_cors, store_unavailable_handler
from credential_service.repository import InMemoryAccountStore
from credential_service.security.hashing import BcryptSecretHasher
from credential_service.security.tokens import JwtTokenSigner

PASSWORD = "correct-horse"


class RecordingPublisher:
    """Captures notifications instead of handing them to a broker."""

    def __init__(self) -> None:
        self.sent = []

    def publish(self, notification) -> None:
        self.sent.append(notification)


def _build_app(store) -> tuple[FastAPI, RecordingPublisher]:
    signer = JwtTokenSigner(secret="test-secret", issuer="test-issuer")
    publisher = RecordingPublisher()
    app = FastAPI()
    app.include_router(routes.router)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)
    app.state.token_signer = signer
    app.state.notification_publisher = publisher
    app.state.credential_manager = CredentialManager(store, BcryptSecretHasher(rounds=4), signer)
    return app, publisher


@pytest.fixture
def api_client():
    """Provide a FastAPI test client with isolated state."""
    store = InMemoryAccountStore()
    app, publisher = _build_app(store)
    with TestClient(app) as client:
        yield client, store, publisher


def _register(client, email: str = "user@example.com") -> dict:
    response = client.post(
        "/v1/auth/register",
        json={"email": email, "password": PASSWORD, "first_name": "Ada", "last_name": "Lovelace"},
    )
    assert response.status_code == 201
    return response.json()


def _register_and_verify(client, publisher, email: str = "user@example.com") -> None:
    _register(client, email)
    token = publisher.sent[-1].token
    assert client.post("/v1/auth/verify-email", json={"token": token}).status_code == 200


def _login(client, email: str = "user@example.com", password: str = PASSWORD):
    return client.post("/v1/auth/login", json={"email": email, "password": password})


def test_register_publishes_verification_notification(api_client):
    client, _, publisher = api_client

    body = _register(client)

    assert body["token_type"] == "bearer"
    assert body["access_token"] and body["refresh_token"]
    assert body["expires_in"] == 3600
    assert len(publisher.sent) == 1
    assert publisher.sent[0].kind is NotificationKind.verification
    assert publisher.sent[0].to == "user@example.com"


def test_register_duplicate_email_conflicts(api_client):
    client, _, publisher = api_client
    _register(client)

    response = client.post(
        "/v1/auth/register",
        json={"email": "user@example.com", "password": PASSWORD, "first_name": "A", "last_name": "B"},
    )

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "duplicate_account"
    assert len(publisher.sent) == 1


def test_register_validates_payload(api_client):
    client, _, _ = api_client
    response = client.post(
        "/v1/auth/register",
        json={"email": "not-an-email", "password": PASSWORD, "first_name": "A", "last_name": "B"},
    )
    assert response.status_code == 422


def test_login_blocked_until_email_verified(api_client):
    client, _, publisher = api_client
    _register(client)

    blocked = _login(client)
    assert blocked.status_code == 403
    assert blocked.json()["detail"]["kind"] == "email_not_verified"

    token = publisher.sent[0].token
    assert client.post("/v1/auth/verify-email", json={"token": token}).status_code == 200
    assert _login(client).status_code == 200

    replay = client.post("/v1/auth/verify-email", json={"token": token})
    assert replay.status_code == 400
    assert replay.json()["detail"]["kind"] == "invalid_or_expired_token"


def test_login_failures_are_indistinguishable(api_client):
    client, _, publisher = api_client
    _register_and_verify(client, publisher)

    wrong_password = _login(client, password="wrong-password")
    unknown_user = _login(client, email="nobody@example.com")

    assert wrong_password.status_code == unknown_user.status_code == 401
    assert wrong_password.json() == unknown_user.json()


def test_logout_requires_bearer_token(api_client):
    client, _, _ = api_client
    assert client.post("/v1/auth/logout").status_code == 401
    invalid = client.post("/v1/auth/logout", headers={"Authorization": "Bearer garbage"})
    assert invalid.status_code == 401


def test_logout_clears_session(api_client):
    client, store, publisher = api_client
    _register_and_verify(client, publisher)
    tokens = _login(client).json()

    response = client.post(
        "/v1/auth/logout", headers={"Authorization": f"Bearer {tokens['access_token']}"}
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Logged out successfully"}
    assert store.get_by_email("user@example.com").refresh_token_hash is None
    refresh = client.post("/v1/auth/token/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401


def test_refresh_token_flow(api_client):
    client, _, publisher = api_client
    _register_and_verify(client, publisher)
    issued = _login(client).json()

    refreshed = client.post("/v1/auth/token/refresh", json={"refresh_token": issued["refresh_token"]})
    assert refreshed.status_code == 200
    assert refreshed.json()["refresh_token"] != issued["refresh_token"]

    stale = client.post("/v1/auth/token/refresh", json={"refresh_token": issued["refresh_token"]})
    assert stale.status_code == 401


def test_password_reset_flow(api_client):
    client, _, publisher = api_client
    _register_and_verify(client, publisher)

    requested = client.post("/v1/auth/request-password-reset", json={"email": "user@example.com"})
    assert requested.status_code == 202
    reset_notification = publisher.sent[-1]
    assert reset_notification.kind is NotificationKind.password_reset

    reset = client.post(
        "/v1/auth/reset-password",
        json={"token": reset_notification.token, "new_password": "brand-new-password"},
    )
    assert reset.status_code == 200
    assert reset.json() == {"message": "Password reset successfully"}

    assert _login(client, password="brand-new-password").status_code == 200
    assert _login(client).status_code == 401

    reused = client.post(
        "/v1/auth/reset-password",
        json={"token": reset_notification.token, "new_password": "another-password"},
    )
    assert reused.status_code == 400


def test_password_reset_request_masks_unknown_email(api_client):
    client, _, publisher = api_client
    _register(client)
    known = client.post("/v1/auth/request-password-reset", json={"email": "user@example.com"})
    sent_before = len(publisher.sent)

    unknown = client.post("/v1/auth/request-password-reset", json={"email": "ghost@example.com"})

    assert unknown.status_code == known.status_code == 202
    assert unknown.json() == known.json()
    assert len(publisher.sent) == sent_before


def test_store_outage_maps_to_503():
    class BrokenStore(InMemoryAccountStore):
        def get_by_email(self, email):
            raise StoreUnavailableError("account store unavailable")

    app, _ = _build_app(BrokenStore())
    with TestClient(app) as client:
        response = _login(client)

    assert response.status_code == 503
    assert response.json() == {"detail": "account store unavailable"}


def test_cors_preflight_allows_configured_origins_only():
    app, _ = _build_app(InMemoryAccountStore())
    configure_cors(app, Settings(cors_origins=("https://app.example.com",)))
    preflight = {"Access-Control-Request-Method": "POST", "Access-Control-Request-Headers": "content-type"}

    with TestClient(app) as client:
        allowed = client.options(
            "/v1/auth/login", headers={"Origin": "https://app.example.com", **preflight}
        )
        denied = client.options(
            "/v1/auth/login", headers={"Origin": "https://evil.example.com", **preflight}
        )

    assert allowed.status_code == 200
    assert allowed.headers["access-control-allow-origin"] == "https://app.example.com"
    assert allowed.headers["access-control-allow-credentials"] == "true"
    assert denied.status_code == 400
    assert "access-control-allow-origin" not in denied.headers


def test_application_installs_cors_middleware():
    assert any(middleware.cls is CORSMiddleware for middleware in main.app.user_middleware)
