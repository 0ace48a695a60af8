import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
BACKEND_PATH = str(BACKEND_ROOT)
if BACKEND_PATH not in sys.path:
    sys.path.insert(0, BACKEND_PATH)

from fake_firestore import FakeFirestore  # noqa: E402

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def at(seconds: int) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeFirestore()
    for target in (
        "polychat_backend.chats.service.get_firestore_client",
        "polychat_backend.users.service.get_firestore_client",
        "polychat_backend.migrations.get_firestore_client",
    ):
        monkeypatch.setattr(target, lambda: db)
    return db


@pytest.fixture
def app_config(tmp_path):
    from polychat_backend.config import AppConfig

    credentials = tmp_path / "serviceAccount.json"
    credentials.write_text("{}", encoding="utf-8")
    return AppConfig(
        port=5001,
        firebase_credentials_path=credentials,
        firebase_web_api_key="web-key",
        openrouter_api_key="server-key",
        storage_bucket="polychat-test.appspot.com",
    )


@pytest.fixture
def app(app_config):
    from polychat_backend import _reset_api_usage, create_app

    _reset_api_usage()
    flask_app = create_app(app_config, init_services=False)
    flask_app.config["TESTING"] = True
    yield flask_app
    _reset_api_usage()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def auth_headers(monkeypatch):
    """Authorization header whose bearer token verifies as ``user-1``."""
    from polychat_backend.auth import utils

    def fake_verify(token: str):
        return {"uid": token.removeprefix("token-") if token.startswith("token-") else "user-1"}

    monkeypatch.setattr(utils.firebase_auth, "verify_id_token", fake_verify)
    return {"Authorization": "Bearer token-user-1"}


def seed_chat(db, chat_id="chat1", *, uid="user-1", model="openai/gpt-4o-mini", **extra):
    data = {
        "uid": uid,
        "title": "New Chat",
        "model": model,
        "createdAt": at(0),
        "lastMessageAt": at(0),
    }
    data.update(extra)
    db.seed(f"chats/{chat_id}", data)
    return data


def seed_message(db, chat_id, message_id, *, role="user", content="", parent_id=None, seconds=0, **extra):
    data = {"role": role, "content": content, "createdAt": at(seconds)}
    if parent_id:
        data["parentId"] = parent_id
    data.update(extra)
    db.seed(f"chats/{chat_id}/messages/{message_id}", data)
    return data
