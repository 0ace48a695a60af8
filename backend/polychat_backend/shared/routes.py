from __future__ import annotations

from http import HTTPStatus
from typing import Any

from flask import Blueprint, jsonify

from ..chats import service as chat_store
from ..chats.routes import _firestore_error_response, _serialize_chat, _serialize_messages

shared_bp = Blueprint("shared", __name__, url_prefix="/shared")


@shared_bp.get("/<share_id>")
def get_shared_chat(share_id: str) -> tuple[Any, int]:
    """Read-only view of a chat its owner has shared. No authentication."""
    try:
        chat = chat_store.get_shared_chat(share_id)
        if chat is None:
            return (
                jsonify({"error": "not_found", "message": "Shared chat not found."}),
                HTTPStatus.NOT_FOUND,
            )
        messages = chat_store.list_messages(chat["id"])
    except chat_store.ChatStoreError as exc:
        return _firestore_error_response(exc)

    return (
        jsonify(
            {
                "chat": _serialize_chat(chat, include_owner=False),
                "messages": _serialize_messages(messages),
            }
        ),
        HTTPStatus.OK,
    )
