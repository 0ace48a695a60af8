from __future__ import annotations

from http import HTTPStatus
from typing import Any, Optional
import logging

import requests
from flask import Blueprint, current_app, jsonify, request
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions

from ..users.service import UserStoreError, serialize_user_profile, upsert_user_profile

log = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

SIGN_IN_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signInWithPassword"
REFRESH_URL = "https://securetoken.googleapis.com/v1/token"


def _parse_json_body() -> dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            return payload
    return {}


def _missing_fields_response(payload: dict[str, Any], fields: tuple[str, ...]):
    missing = [name for name in fields if not payload.get(name)]
    if not missing:
        return None
    return (
        jsonify({
            "error": "validation_error",
            "message": f"Missing required fields: {', '.join(missing)}",
        }),
        HTTPStatus.BAD_REQUEST,
    )


def _call_identity_api(url: str, body: dict[str, Any], failure_message: str):
    """POST to a Firebase Auth REST endpoint; returns ``(data, None)`` or ``(None, response)``."""
    api_key = current_app.config.get("FIREBASE_WEB_API_KEY")
    if not api_key:
        return None, (
            jsonify({
                "error": "not_configured",
                "message": "FIREBASE_WEB_API_KEY is not set. Add it to backend/.env.",
            }),
            HTTPStatus.SERVICE_UNAVAILABLE,
        )

    try:
        response = requests.post(url, params={"key": api_key}, json=body, timeout=10)
    except requests.RequestException as exc:
        log.warning("Firebase Auth request to %s failed: %s", url, exc)
        return None, (
            jsonify({"error": "network_error", "message": "Authentication service unreachable."}),
            HTTPStatus.BAD_GATEWAY,
        )

    if not response.ok:
        try:
            error_message = response.json().get("error", {}).get("message", failure_message)
        except ValueError:
            error_message = failure_message
        return None, (
            jsonify({"error": "firebase_auth_error", "message": error_message}),
            HTTPStatus.UNAUTHORIZED,
        )

    return response.json(), None


def _sync_profile(uid: str, **fields: Optional[str]) -> Optional[dict[str, Any]]:
    try:
        return serialize_user_profile(upsert_user_profile(uid, **fields))
    except UserStoreError:
        log.exception("Failed to sync profile for %s", uid)
        return None


@auth_bp.post("/signup")
def signup() -> tuple[Any, int]:
    payload = _parse_json_body()
    invalid = _missing_fields_response(payload, ("email", "password"))
    if invalid:
        return invalid

    try:
        user_record = firebase_auth.create_user(
            email=payload["email"],
            password=payload["password"],
            display_name=payload.get("displayName"),
        )
    except firebase_exceptions.AlreadyExistsError:
        return (
            jsonify({"error": "email_in_use", "message": "Email already registered."}),
            HTTPStatus.CONFLICT,
        )
    except ValueError as exc:
        return jsonify({"error": "validation_error", "message": str(exc)}), HTTPStatus.BAD_REQUEST
    except firebase_exceptions.FirebaseError as exc:
        log.error("Firebase user creation failed: %s", exc)
        return (
            jsonify({"error": "firebase_error", "message": "Unable to create the account."}),
            HTTPStatus.INTERNAL_SERVER_ERROR,
        )

    try:
        profile = upsert_user_profile(
            user_record.uid,
            email=user_record.email,
            display_name=user_record.display_name,
        )
    except UserStoreError:
        log.exception("Failed to create profile for %s", user_record.uid)
        try:
            firebase_auth.delete_user(user_record.uid)
        except firebase_exceptions.FirebaseError as delete_exc:
            log.error("Unable to roll back Firebase user %s: %s", user_record.uid, delete_exc)
        return (
            jsonify({
                "error": "profile_store_error",
                "message": "Failed to persist user profile information. Please try again.",
            }),
            HTTPStatus.SERVICE_UNAVAILABLE,
        )

    return (
        jsonify({
            "uid": user_record.uid,
            "email": user_record.email,
            "displayName": user_record.display_name,
            "profile": serialize_user_profile(profile),
        }),
        HTTPStatus.CREATED,
    )


@auth_bp.post("/login")
def login() -> tuple[Any, int]:
    payload = _parse_json_body()
    invalid = _missing_fields_response(payload, ("email", "password"))
    if invalid:
        return invalid

    data, error_response = _call_identity_api(
        SIGN_IN_URL,
        {"email": payload["email"], "password": payload["password"], "returnSecureToken": True},
        "Login failed.",
    )
    if error_response:
        return error_response

    uid = data.get("localId")
    profile = _sync_profile(uid, email=data.get("email"), display_name=data.get("displayName")) if uid else None

    response_payload = {
        "idToken": data.get("idToken"),
        "refreshToken": data.get("refreshToken"),
        "expiresIn": data.get("expiresIn"),
        "localId": uid,
        "email": data.get("email"),
        "displayName": data.get("displayName"),
        "profileSynced": profile is not None,
    }
    if profile:
        response_payload["profile"] = profile
    return jsonify(response_payload), HTTPStatus.OK


@auth_bp.post("/refresh-token")
def refresh_token() -> tuple[Any, int]:
    payload = _parse_json_body()
    invalid = _missing_fields_response(payload, ("refreshToken",))
    if invalid:
        return invalid

    data, error_response = _call_identity_api(
        REFRESH_URL,
        {"grant_type": "refresh_token", "refresh_token": payload["refreshToken"]},
        "Token refresh failed.",
    )
    if error_response:
        return error_response

    return (
        jsonify({
            "idToken": data.get("id_token"),
            "refreshToken": data.get("refresh_token"),
            "expiresIn": data.get("expires_in"),
            "localId": data.get("user_id"),
        }),
        HTTPStatus.OK,
    )
