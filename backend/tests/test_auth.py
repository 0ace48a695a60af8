from unittest.mock import MagicMock

import pytest
import requests
from flask import Flask

from polychat_backend.auth import routes as auth_routes
from polychat_backend.auth import utils
from polychat_backend.auth.utils import AuthError


@pytest.fixture
def flask_app():
    return Flask(__name__)


def _make_headers(token: str = "test_token") -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_require_firebase_user_handles_expired_token(monkeypatch, flask_app):
    def fake_verify(token: str):
        raise utils.firebase_auth.ExpiredIdTokenError("expired", None)

    monkeypatch.setattr(utils.firebase_auth, "verify_id_token", fake_verify)

    with flask_app.test_request_context("/chats", headers=_make_headers()):
        with pytest.raises(AuthError) as excinfo:
            utils.require_firebase_user()

    assert excinfo.value.error == "token_expired"
    assert excinfo.value.status.value == 401


def test_require_firebase_user_rejects_malformed_header(flask_app):
    with flask_app.test_request_context("/chats", headers={"Authorization": "Token abc"}):
        with pytest.raises(AuthError) as excinfo:
            utils.require_firebase_user()

    assert excinfo.value.error == "unauthorized"


def test_require_firebase_user_requires_uid(monkeypatch, flask_app):
    monkeypatch.setattr(utils.firebase_auth, "verify_id_token", lambda token: {"email": "x@example.com"})

    with flask_app.test_request_context("/chats", headers=_make_headers()):
        with pytest.raises(AuthError) as excinfo:
            utils.require_firebase_user()

    assert excinfo.value.error == "invalid_token"


def test_require_firebase_user_returns_context(monkeypatch, flask_app):
    def fake_verify(token: str):
        assert token == "valid_token"
        return {"uid": "user-123"}

    monkeypatch.setattr(utils.firebase_auth, "verify_id_token", fake_verify)

    with flask_app.test_request_context("/chats", headers=_make_headers("valid_token")):
        ctx = utils.require_firebase_user()

    assert ctx.uid == "user-123"
    assert ctx.token == "valid_token"
    assert ctx.decoded_token == {"uid": "user-123"}


def test_login_returns_tokens_and_syncs_profile(client, fake_db, monkeypatch):
    identity_response = MagicMock(ok=True)
    identity_response.json.return_value = {
        "idToken": "id-1",
        "refreshToken": "refresh-1",
        "expiresIn": "3600",
        "localId": "user-1",
        "email": "ada@example.com",
    }
    fake_post = MagicMock(return_value=identity_response)
    monkeypatch.setattr(auth_routes.requests, "post", fake_post)

    response = client.post("/auth/login", json={"email": "ada@example.com", "password": "pw"})

    assert response.status_code == 200
    payload = response.get_json()
    assert payload["idToken"] == "id-1"
    assert payload["profileSynced"] is True
    assert fake_db.data("users/user-1")["email"] == "ada@example.com"
    assert fake_post.call_args.kwargs["params"] == {"key": "web-key"}


def test_login_rejected_by_identity_service(client, fake_db, monkeypatch):
    identity_response = MagicMock(ok=False)
    identity_response.json.return_value = {"error": {"message": "INVALID_PASSWORD"}}
    monkeypatch.setattr(auth_routes.requests, "post", MagicMock(return_value=identity_response))

    response = client.post("/auth/login", json={"email": "ada@example.com", "password": "bad"})

    assert response.status_code == 401
    assert response.get_json()["message"] == "INVALID_PASSWORD"


def test_login_requires_fields(client):
    response = client.post("/auth/login", json={"email": "ada@example.com"})

    assert response.status_code == 400
    assert "password" in response.get_json()["message"]


def test_refresh_token_network_error(client, monkeypatch):
    def fail(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(auth_routes.requests, "post", fail)

    response = client.post("/auth/refresh-token", json={"refreshToken": "r"})

    assert response.status_code == 502
    assert response.get_json()["error"] == "network_error"


def test_login_without_web_api_key(app, monkeypatch):
    app.config["FIREBASE_WEB_API_KEY"] = None
    monkeypatch.setattr(auth_routes.requests, "post", lambda *a, **k: pytest.fail("must not call"))

    response = app.test_client().post("/auth/login", json={"email": "a@b.c", "password": "pw"})

    assert response.status_code == 503
    assert response.get_json()["error"] == "not_configured"
