from __future__ import annotations

from http import HTTPStatus
from typing import Any
import logging

from flask import Blueprint, jsonify, request

from ..auth.utils import AuthError, require_firebase_user
from .service import (
    SettingsValidationError,
    UserStoreError,
    get_user_profile,
    get_user_settings,
    serialize_user_profile,
    update_user_settings,
)

users_bp = Blueprint("users", __name__, url_prefix="/users")
log = logging.getLogger(__name__)


def _store_error_response(detail: str):
    log.error("User store failure: %s", detail)
    return (
        jsonify({
            "error": "profile_store_error",
            "message": "Unable to read or persist user information.",
        }),
        HTTPStatus.SERVICE_UNAVAILABLE,
    )


@users_bp.get("/me")
def get_profile() -> tuple[Any, int]:
    try:
        auth_ctx = require_firebase_user()
    except AuthError as exc:
        return exc.to_response()

    try:
        profile = get_user_profile(auth_ctx.uid)
    except UserStoreError as exc:
        return _store_error_response(str(exc))

    if profile is None:
        return (
            jsonify({"error": "not_found", "message": "User profile not found."}),
            HTTPStatus.NOT_FOUND,
        )
    return jsonify(serialize_user_profile(profile)), HTTPStatus.OK


@users_bp.get("/me/settings")
def get_settings() -> tuple[Any, int]:
    """Stored settings of the caller, or the defaults."""
    try:
        auth_ctx = require_firebase_user()
    except AuthError as exc:
        return exc.to_response()

    try:
        settings = get_user_settings(auth_ctx.uid)
    except UserStoreError as exc:
        return _store_error_response(str(exc))

    settings.pop("updatedAt", None)
    return jsonify(settings), HTTPStatus.OK


@users_bp.patch("/me/settings")
def update_settings() -> tuple[Any, int]:
    try:
        auth_ctx = require_firebase_user()
    except AuthError as exc:
        return exc.to_response()

    payload = request.get_json(silent=True) if request.is_json else None
    if not isinstance(payload, dict):
        payload = {}

    try:
        settings = update_user_settings(auth_ctx.uid, payload)
    except SettingsValidationError as exc:
        return jsonify({"error": "validation_error", "message": str(exc)}), HTTPStatus.BAD_REQUEST
    except UserStoreError as exc:
        return _store_error_response(str(exc))

    settings.pop("updatedAt", None)
    return jsonify(settings), HTTPStatus.OK
