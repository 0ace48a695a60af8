import polychat_backend
from polychat_backend import _check_api_overuse, _reset_api_usage


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_app_config_is_populated(app):
    assert app.config["OPENROUTER_API_KEY"] == "server-key"
    assert app.config["STREAM_FLUSH_EVERY"] == 3
    assert app.config["FALLBACK_MODEL"] == "deepseek/deepseek-chat-v3-0324:free"


def test_overuse_guard_pauses_after_minute_threshold(monkeypatch):
    _reset_api_usage()
    monkeypatch.setattr(polychat_backend, "API_USAGE_MINUTE_THRESHOLD", 2)
    try:
        assert _check_api_overuse(now=100.0) == (True, None)
        assert _check_api_overuse(now=100.5) == (True, None)
        assert _check_api_overuse(now=101.0) == (False, polychat_backend.API_SHUTDOWN_MINUTE_DURATION)
        ok, wait = _check_api_overuse(now=130.0)
        assert not ok and wait == 31
        assert _check_api_overuse(now=200.0) == (True, None)
    finally:
        _reset_api_usage()


def test_overuse_guard_returns_429_for_guarded_blueprints(client, fake_db, auth_headers, monkeypatch):
    monkeypatch.setattr(polychat_backend, "_check_api_overuse", lambda: (False, 42))

    response = client.get("/chats", headers=auth_headers)

    assert response.status_code == 429
    assert response.get_json()["error"] == "api_overuse"
    assert client.get("/health").status_code == 200
