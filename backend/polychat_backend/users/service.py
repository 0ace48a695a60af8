from __future__ import annotations

from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Optional
import logging

from firebase_admin import firestore as firebase_firestore
from google.api_core import exceptions as google_exceptions

from ..ai.models import DEFAULT_MODEL
from ..firebase import get_firestore_client

log = logging.getLogger(__name__)

API_KEY_PROVIDERS = ("openai", "anthropic", "google", "openrouter")
THEMES = ("light", "dark", "auto")

DEFAULT_PREFERENCES: dict[str, Any] = {
    "theme": "auto",
    "codeTheme": "github-dark",
    "streamingEnabled": True,
}


class UserStoreError(Exception):
    """Raised when a user profile or settings document cannot be read or written."""


class SettingsValidationError(ValueError):
    """Raised when a settings update carries unsupported values."""


def _clean_payload(payload: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in payload.items() if value is not None}


def _settings_ref(uid: str):
    db = get_firestore_client()
    return db.collection("users").document(uid).collection("settings").document("preferences")


def upsert_user_profile(
    uid: str,
    *,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    photo_url: Optional[str] = None,
) -> dict[str, Any]:
    """Create or update a Firestore-backed user profile."""

    db = get_firestore_client()
    doc_ref = db.collection("users").document(uid)

    try:
        snapshot = doc_ref.get()
        updates: dict[str, Any] = {"updatedAt": firebase_firestore.SERVER_TIMESTAMP}
        if not snapshot.exists:
            updates["createdAt"] = firebase_firestore.SERVER_TIMESTAMP
        updates.update(
            _clean_payload({"email": email, "displayName": display_name, "photoUrl": photo_url})
        )
        doc_ref.set(updates, merge=True)
        final_snapshot = doc_ref.get()
    except google_exceptions.GoogleAPICallError as exc:
        raise UserStoreError(str(exc)) from exc

    data = final_snapshot.to_dict() or {}
    data["uid"] = uid
    return data


def get_user_profile(uid: str) -> Optional[dict[str, Any]]:
    db = get_firestore_client()
    try:
        snapshot = db.collection("users").document(uid).get()
    except google_exceptions.GoogleAPICallError as exc:
        raise UserStoreError(str(exc)) from exc

    if not snapshot.exists:
        return None

    data = snapshot.to_dict() or {}
    data["uid"] = uid
    return data


def serialize_user_profile(data: dict[str, Any]) -> dict[str, Any]:
    def _to_iso(value: Any) -> Any:
        if isinstance(value, datetime):
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc).isoformat()
        return value

    return {
        "uid": data.get("uid"),
        "email": data.get("email"),
        "displayName": data.get("displayName"),
        "photoUrl": data.get("photoUrl"),
        "createdAt": _to_iso(data.get("createdAt")),
        "updatedAt": _to_iso(data.get("updatedAt")),
    }


def default_settings() -> dict[str, Any]:
    return {
        "defaultModel": DEFAULT_MODEL,
        "preferences": deepcopy(DEFAULT_PREFERENCES),
    }


def get_stored_settings(uid: str) -> Optional[dict[str, Any]]:
    """Return the settings document exactly as stored, or None."""
    try:
        snapshot = _settings_ref(uid).get()
    except google_exceptions.GoogleAPICallError as exc:
        raise UserStoreError(str(exc)) from exc

    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def get_user_settings(uid: str) -> dict[str, Any]:
    """Stored settings, or the defaults when the user never saved any."""
    stored = get_stored_settings(uid)
    if stored is None:
        return default_settings()
    return stored


def validate_settings_update(payload: dict[str, Any]) -> dict[str, Any]:
    """Pick the writable sections out of ``payload`` and check their shape."""
    updates: dict[str, Any] = {}

    default_model = payload.get("defaultModel")
    if default_model is not None:
        if not isinstance(default_model, str) or not default_model.strip():
            raise SettingsValidationError("defaultModel must be a non-empty string.")
        updates["defaultModel"] = default_model.strip()

    api_keys = payload.get("apiKeys")
    if api_keys is not None:
        if not isinstance(api_keys, dict):
            raise SettingsValidationError("apiKeys must be an object.")
        unknown = sorted(set(api_keys) - set(API_KEY_PROVIDERS))
        if unknown:
            raise SettingsValidationError(f"Unsupported apiKeys providers: {', '.join(unknown)}")
        for provider, key in api_keys.items():
            if key is not None and not isinstance(key, str):
                raise SettingsValidationError(f"apiKeys.{provider} must be a string.")
        updates["apiKeys"] = _clean_payload(
            {provider: (key.strip() or None) if isinstance(key, str) else None for provider, key in api_keys.items()}
        )

    preferences = payload.get("preferences")
    if preferences is not None:
        if not isinstance(preferences, dict):
            raise SettingsValidationError("preferences must be an object.")
        theme = preferences.get("theme")
        if theme is not None and theme not in THEMES:
            raise SettingsValidationError(f"preferences.theme must be one of: {', '.join(THEMES)}")
        code_theme = preferences.get("codeTheme")
        if code_theme is not None and not isinstance(code_theme, str):
            raise SettingsValidationError("preferences.codeTheme must be a string.")
        streaming = preferences.get("streamingEnabled")
        if streaming is not None and not isinstance(streaming, bool):
            raise SettingsValidationError("preferences.streamingEnabled must be a boolean.")
        updates["preferences"] = _clean_payload(
            {"theme": theme, "codeTheme": code_theme, "streamingEnabled": streaming}
        )

    return updates


def update_user_settings(uid: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Write the provided sections; the first write also fills in defaults.

    ``apiKeys`` replaces the stored map, so omitted or blank providers are
    removed. ``preferences`` fields are merged onto the stored ones.
    """
    updates = validate_settings_update(payload)
    if not updates:
        raise SettingsValidationError(
            "Provide at least one of defaultModel, apiKeys or preferences."
        )

    doc_ref = _settings_ref(uid)
    try:
        snapshot = doc_ref.get()
        current = (snapshot.to_dict() or {}) if snapshot.exists else default_settings()
        document = dict(updates)
        if "preferences" in updates:
            stored_preferences = current.get("preferences")
            if not isinstance(stored_preferences, dict):
                stored_preferences = {}
            document["preferences"] = {**stored_preferences, **updates["preferences"]}
        document["userId"] = uid
        document["updatedAt"] = firebase_firestore.SERVER_TIMESTAMP
        if snapshot.exists:
            # update() replaces each top-level field instead of deep-merging maps.
            doc_ref.update(document)
        else:
            doc_ref.set({**current, **document})
        final_snapshot = doc_ref.get()
    except google_exceptions.GoogleAPICallError as exc:
        raise UserStoreError(str(exc)) from exc

    log.info("Updated settings for %s (%s)", uid, ", ".join(sorted(updates)))
    return final_snapshot.to_dict() or {}


def openrouter_key_for(settings: Optional[dict[str, Any]]) -> Optional[str]:
    if not settings:
        return None
    api_keys = settings.get("apiKeys") or {}
    key = api_keys.get("openrouter") if isinstance(api_keys, dict) else None
    return key or None


def streaming_enabled(settings: Optional[dict[str, Any]]) -> bool:
    if not settings:
        return True
    preferences = settings.get("preferences") or {}
    if not isinstance(preferences, dict):
        return True
    return preferences.get("streamingEnabled", True) is not False
