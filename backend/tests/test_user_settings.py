import pytest

from polychat_backend.users.service import (
    SettingsValidationError,
    openrouter_key_for,
    streaming_enabled,
    update_user_settings,
    validate_settings_update,
)

SETTINGS_PATH = "users/user-1/settings/preferences"


def test_get_settings_returns_defaults_when_unset(client, fake_db, auth_headers):
    response = client.get("/users/me/settings", headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json() == {
        "defaultModel": "openai/gpt-4o-mini",
        "preferences": {"theme": "auto", "codeTheme": "github-dark", "streamingEnabled": True},
    }


def test_first_update_fills_defaults(client, fake_db, auth_headers):
    response = client.patch(
        "/users/me/settings",
        json={"apiKeys": {"openrouter": "  sk-or-123  "}},
        headers=auth_headers,
    )

    assert response.status_code == 200
    stored = fake_db.data(SETTINGS_PATH)
    assert stored["apiKeys"] == {"openrouter": "sk-or-123"}
    assert stored["defaultModel"] == "openai/gpt-4o-mini"
    assert stored["preferences"]["codeTheme"] == "github-dark"
    assert stored["userId"] == "user-1"
    assert "updatedAt" not in response.get_json()


def test_later_update_merges_preferences(fake_db):
    fake_db.seed(SETTINGS_PATH, {
        "defaultModel": "openai/gpt-4o",
        "preferences": {"theme": "dark", "codeTheme": "monokai", "streamingEnabled": True},
    })

    settings = update_user_settings("user-1", {"preferences": {"streamingEnabled": False}})

    assert settings["defaultModel"] == "openai/gpt-4o"
    assert settings["preferences"] == {"theme": "dark", "codeTheme": "monokai", "streamingEnabled": False}


def test_api_keys_replace_stored_map(fake_db):
    update_user_settings("user-1", {"apiKeys": {"openrouter": "sk-old", "openai": "o"}})

    update_user_settings("user-1", {"apiKeys": {"openai": "o"}})
    assert fake_db.data(SETTINGS_PATH)["apiKeys"] == {"openai": "o"}

    update_user_settings("user-1", {"apiKeys": {"openrouter": "sk-new"}})
    settings = update_user_settings("user-1", {"apiKeys": {"openrouter": ""}})

    assert settings["apiKeys"] == {}
    assert openrouter_key_for(settings) is None


def test_first_partial_preferences_keep_defaults(fake_db):
    settings = update_user_settings("user-1", {"preferences": {"theme": "dark"}})

    assert settings["preferences"] == {"theme": "dark", "codeTheme": "github-dark", "streamingEnabled": True}


def test_update_requires_some_section(client, fake_db, auth_headers):
    response = client.patch("/users/me/settings", json={"unknown": 1}, headers=auth_headers)

    assert response.status_code == 400
    assert response.get_json()["error"] == "validation_error"
    assert fake_db.data(SETTINGS_PATH) is None


@pytest.mark.parametrize(
    "payload",
    [
        {"defaultModel": ""},
        {"apiKeys": "sk"},
        {"apiKeys": {"mistral": "k"}},
        {"apiKeys": {"openai": 5}},
        {"preferences": {"theme": "sepia"}},
        {"preferences": {"streamingEnabled": "yes"}},
    ],
)
def test_validate_settings_rejects_bad_values(payload):
    with pytest.raises(SettingsValidationError):
        validate_settings_update(payload)


def test_blank_api_keys_are_dropped():
    updates = validate_settings_update({"apiKeys": {"openai": "   ", "google": "g-key"}})

    assert updates == {"apiKeys": {"google": "g-key"}}


def test_key_and_streaming_helpers():
    assert openrouter_key_for(None) is None
    assert openrouter_key_for({"apiKeys": {"openrouter": ""}}) is None
    assert openrouter_key_for({"apiKeys": {"openrouter": "k"}}) == "k"
    assert streaming_enabled(None) is True
    assert streaming_enabled({"preferences": {}}) is True
    assert streaming_enabled({"preferences": {"streamingEnabled": False}}) is False


def test_profile_not_found(client, fake_db, auth_headers):
    response = client.get("/users/me", headers=auth_headers)

    assert response.status_code == 404


def test_profile_returned(client, fake_db, auth_headers):
    fake_db.seed("users/user-1", {"email": "ada@example.com", "displayName": "Ada"})

    response = client.get("/users/me", headers=auth_headers)

    assert response.status_code == 200
    assert response.get_json()["email"] == "ada@example.com"
    assert response.get_json()["uid"] == "user-1"
