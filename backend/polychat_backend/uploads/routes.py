from __future__ import annotations

from http import HTTPStatus
from typing import Any
import logging

from flask import Blueprint, current_app, jsonify, request

from ..auth.utils import AuthError, require_firebase_user
from .storage import AttachmentError, StorageUnavailableError, create_upload_url

uploads_bp = Blueprint("uploads", __name__, url_prefix="/uploads")
log = logging.getLogger(__name__)


@uploads_bp.post("")
def generate_upload_url() -> tuple[Any, int]:
    """Hand out a signed URL the client can PUT one attachment to."""
    try:
        auth_ctx = require_firebase_user()
    except AuthError as exc:
        return exc.to_response()

    payload = request.get_json(silent=True) if request.is_json else None
    if not isinstance(payload, dict):
        payload = {}
    content_type = payload.get("contentType")
    if content_type is not None and not isinstance(content_type, str):
        return (
            jsonify({"error": "validation_error", "message": "contentType must be a string."}),
            HTTPStatus.BAD_REQUEST,
        )
    content_type = (content_type or "").strip()
    if not content_type:
        return (
            jsonify({"error": "validation_error", "message": "contentType is required."}),
            HTTPStatus.BAD_REQUEST,
        )

    size = payload.get("size")
    max_size = int(current_app.config.get("MAX_UPLOAD_SIZE", 10 * 1024 * 1024))
    if size is not None:
        if isinstance(size, bool) or not isinstance(size, (int, float)) or size <= 0:
            return (
                jsonify({"error": "validation_error", "message": "size must be a positive number."}),
                HTTPStatus.BAD_REQUEST,
            )
        if size > max_size:
            return (
                jsonify({"error": "validation_error", "message": "File exceeds maximum allowed size."}),
                HTTPStatus.BAD_REQUEST,
            )

    ttl = int(current_app.config.get("UPLOAD_URL_TTL_SECONDS", 900))
    try:
        upload = create_upload_url(auth_ctx.uid, content_type, ttl)
    except AttachmentError as exc:
        return jsonify({"error": "validation_error", "message": str(exc)}), HTTPStatus.BAD_REQUEST
    except StorageUnavailableError as exc:
        log.error("Unable to create upload URL for %s: %s", auth_ctx.uid, exc)
        return (
            jsonify({"error": "storage_unavailable", "message": "File uploads are not available right now."}),
            HTTPStatus.SERVICE_UNAVAILABLE,
        )

    name = payload.get("name")
    if isinstance(name, str) and name.strip():
        upload["name"] = name.strip()
    return jsonify(upload), HTTPStatus.CREATED
