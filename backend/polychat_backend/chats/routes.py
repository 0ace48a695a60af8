from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from functools import wraps
from http import HTTPStatus
from typing import Any, Callable, Generator, Iterable, Iterator, Optional

from flask import Blueprint, Response, current_app, jsonify, request, stream_with_context

from . import service as chat_store
from .generation import (
    ContextNotFoundError,
    GenerationEvent,
    GenerationSettings,
    generate_chat_title,
    generate_response,
    generate_streaming_response,
    stream_response,
)
from ..ai.client import OpenRouterAPIError, list_available_models
from ..ai.models import DEFAULT_MODEL, list_catalogue
from ..auth.utils import AuthContext, AuthError, require_firebase_user
from ..uploads.storage import AttachmentError, validate_attachments, with_download_urls
from ..users.service import UserStoreError, get_stored_settings, streaming_enabled

chats_bp = Blueprint("chats", __name__, url_prefix="/chats")
log = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


class RequestValidationError(ValueError):
    """Raised for malformed request payloads."""


def _sse_message(payload: dict[str, Any], event: str | None = None) -> str:
    body = json.dumps(payload, ensure_ascii=False)
    lines: list[str] = []
    if event:
        lines.append(f"event: {event}")
    for line in body.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


def _parse_json_body() -> dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if isinstance(payload, dict):
            return payload
    return {}


def _to_iso(value: Any) -> str | None:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    return None


def _serialize_chat(chat: dict[str, Any], *, include_owner: bool = True) -> dict[str, Any]:
    serialized = {
        "id": chat.get("id"),
        "title": chat.get("title"),
        "model": chat.get("model"),
        "isShared": bool(chat.get("isShared")),
        "shareId": chat.get("shareId"),
        "createdAt": _to_iso(chat.get("createdAt")),
        "lastMessageAt": _to_iso(chat.get("lastMessageAt")),
    }
    if include_owner:
        serialized["uid"] = chat.get("uid")
    return serialized


def _serialize_message(message: dict[str, Any], url_ttl: int) -> dict[str, Any]:
    serialized = {
        "id": message.get("id"),
        "role": message.get("role"),
        "content": message.get("content", ""),
        "parentId": message.get("parentId"),
        "createdAt": _to_iso(message.get("createdAt")),
    }
    attachments = message.get("attachments")
    if attachments:
        serialized["attachments"] = with_download_urls(attachments, url_ttl)
    metadata = message.get("metadata")
    if isinstance(metadata, dict) and metadata:
        serialized["metadata"] = metadata
    return serialized


def _serialize_messages(messages: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    url_ttl = int(current_app.config.get("UPLOAD_URL_TTL_SECONDS", 900))
    return [_serialize_message(message, url_ttl) for message in messages]


def _firestore_error_response(exc: Exception) -> tuple[Any, int]:
    log.error("Firestore request failed: %s", exc)
    return (
        jsonify(
            {
                "error": "firestore_service_unavailable",
                "message": "The chat store is temporarily unavailable. Please try again.",
            }
        ),
        HTTPStatus.SERVICE_UNAVAILABLE,
    )


def _chat_route(fn: Callable[..., Any]):
    """Authenticate the caller and translate store errors into JSON responses."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            auth_ctx = require_firebase_user()
            return fn(auth_ctx, *args, **kwargs)
        except AuthError as exc:
            return exc.to_response()
        except (chat_store.ChatNotFoundError, ContextNotFoundError):
            return jsonify({"error": "not_found", "message": "Chat not found."}), HTTPStatus.NOT_FOUND
        except chat_store.MessageNotFoundError as exc:
            return jsonify({"error": "message_not_found", "message": str(exc)}), HTTPStatus.NOT_FOUND
        except (RequestValidationError, AttachmentError) as exc:
            return jsonify({"error": "validation_error", "message": str(exc)}), HTTPStatus.BAD_REQUEST
        except (chat_store.ChatStoreError, UserStoreError) as exc:
            return _firestore_error_response(exc)

    return wrapper


def _generation_settings() -> GenerationSettings:
    return GenerationSettings.from_app_config(current_app.config)


def _wants_stream(payload: dict[str, Any]) -> bool:
    accept_header = (request.headers.get("Accept") or "").lower()
    return bool(payload.get("stream")) or "text/event-stream" in accept_header


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise RequestValidationError(f"{key} is required.")
    return value


def _require_parent_in_chat(chat_id: str, parent_id: Any) -> Optional[str]:
    if parent_id is None:
        return None
    if not isinstance(parent_id, str) or not parent_id:
        raise RequestValidationError("parentId must be a message id.")
    try:
        chat_store.get_message(chat_id, parent_id)
    except chat_store.MessageNotFoundError as exc:
        raise RequestValidationError("parentId does not belong to this chat.") from exc
    return parent_id


def _run_generation(chat_id: str, parent_id: str, settings: GenerationSettings, user_settings) -> Optional[str]:
    if streaming_enabled(user_settings):
        return generate_streaming_response(chat_id, parent_id, settings)
    return generate_response(chat_id, parent_id, settings)


def _drain(chat_id: str, events: Iterator[GenerationEvent]) -> None:
    # The reply is persisted even if the client disconnects mid-stream.
    try:
        for _ in events:
            pass
    except (ContextNotFoundError, chat_store.ChatStoreError, UserStoreError) as exc:
        log.error("Generation aborted for chat %s: %s", chat_id, exc)


def _event_stream(
    chat_id: str,
    parent_id: str,
    settings: GenerationSettings,
    prelude: list[dict[str, Any]],
    first_message: Optional[str] = None,
) -> Response:
    def generate() -> Generator[str, None, None]:
        events = stream_response(chat_id, parent_id, settings)
        try:
            for payload in prelude:
                yield _sse_message(payload)

            if first_message is not None:
                title = generate_chat_title(chat_id, first_message, settings)
                if title:
                    yield _sse_message({"type": "chat_title", "title": title})

            for event in events:
                yield _sse_message(event.to_payload())
        except (ContextNotFoundError, chat_store.ChatStoreError, UserStoreError) as exc:
            log.error("Generation aborted for chat %s: %s", chat_id, exc)
            yield _sse_message({"type": "error", "error": "generation_unavailable"})
        finally:
            _drain(chat_id, events)

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"
    return response


@chats_bp.post("")
@_chat_route
def create_chat(auth_ctx: AuthContext):
    payload = _parse_json_body()
    title = payload.get("title")
    if title is not None and not isinstance(title, str):
        raise RequestValidationError("title must be a string.")
    title = (title or "").strip()[:MAX_TITLE_LENGTH] or "New Chat"

    model = payload.get("model")
    if model is not None and (not isinstance(model, str) or not model.strip()):
        raise RequestValidationError("model must be a non-empty string.")
    if not model:
        stored = get_stored_settings(auth_ctx.uid) or {}
        model = stored.get("defaultModel") or DEFAULT_MODEL

    chat = chat_store.create_chat(auth_ctx.uid, title, model.strip())
    return jsonify(_serialize_chat(chat)), HTTPStatus.CREATED


@chats_bp.get("")
@_chat_route
def list_chats(auth_ctx: AuthContext):
    chats = chat_store.list_chats(auth_ctx.uid)
    return jsonify({"items": [_serialize_chat(chat) for chat in chats]}), HTTPStatus.OK


@chats_bp.get("/models")
@_chat_route
def list_chat_models(auth_ctx: AuthContext):
    body: dict[str, Any] = {"items": list_catalogue(), "defaultModel": DEFAULT_MODEL}

    live_param = (request.args.get("live") or "").strip().lower()
    if live_param in {"1", "true", "yes"}:
        stored = get_stored_settings(auth_ctx.uid) or {}
        api_key = (stored.get("apiKeys") or {}).get("openrouter") or current_app.config.get("OPENROUTER_API_KEY")
        try:
            body["available"] = list_available_models(
                api_key=api_key,
                server_url=current_app.config.get("AI_SERVER_URL"),
            )
        except OpenRouterAPIError as exc:
            log.warning("Unable to list provider models: %s", exc)
            return (
                jsonify({"error": "ai_models_unavailable", "message": "The model list is unavailable right now."}),
                HTTPStatus.BAD_GATEWAY,
            )

    return jsonify(body), HTTPStatus.OK


@chats_bp.get("/<chat_id>")
@_chat_route
def get_chat(auth_ctx: AuthContext, chat_id: str):
    chat = chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    return jsonify(_serialize_chat(chat)), HTTPStatus.OK


@chats_bp.patch("/<chat_id>")
@_chat_route
def update_chat(auth_ctx: AuthContext, chat_id: str):
    payload = _parse_json_body()
    title = _require_text(payload, "title").strip()[:MAX_TITLE_LENGTH]

    chat = chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    chat_store.update_title(chat_id, title)
    chat["title"] = title
    return jsonify(_serialize_chat(chat)), HTTPStatus.OK


@chats_bp.delete("/<chat_id>")
@_chat_route
def delete_chat(auth_ctx: AuthContext, chat_id: str):
    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    chat_store.delete_chat(chat_id)
    return "", HTTPStatus.NO_CONTENT


@chats_bp.post("/<chat_id>/share")
@_chat_route
def share_chat(auth_ctx: AuthContext, chat_id: str):
    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    share_id = chat_store.share_chat(chat_id)
    return jsonify({"shareId": share_id}), HTTPStatus.OK


@chats_bp.delete("/<chat_id>/share")
@_chat_route
def unshare_chat(auth_ctx: AuthContext, chat_id: str):
    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    chat_store.unshare_chat(chat_id)
    return "", HTTPStatus.NO_CONTENT


@chats_bp.get("/<chat_id>/messages")
@_chat_route
def list_messages(auth_ctx: AuthContext, chat_id: str):
    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    messages = chat_store.list_messages(chat_id)
    return jsonify({"items": _serialize_messages(messages)}), HTTPStatus.OK


@chats_bp.post("/<chat_id>/messages")
@_chat_route
def send_message(auth_ctx: AuthContext, chat_id: str):
    payload = _parse_json_body()
    content = _require_text(payload, "content")
    max_size = int(current_app.config.get("MAX_UPLOAD_SIZE", 10 * 1024 * 1024))
    attachments = validate_attachments(auth_ctx.uid, payload.get("attachments"), max_size)

    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    parent_id = _require_parent_in_chat(chat_id, payload.get("parentId"))

    existing_messages = chat_store.list_messages(chat_id)
    is_first_user_message = not any(message.get("role") == "user" for message in existing_messages)

    user_message_id = chat_store.add_message(
        chat_id,
        role="user",
        content=content,
        parent_id=parent_id,
        attachments=attachments,
    )
    log.info("Added user message %s to chat %s", user_message_id, chat_id)

    settings = _generation_settings()
    if _wants_stream(payload):
        prelude = [{"type": "user_message", "messageId": user_message_id}]
        return _event_stream(
            chat_id,
            user_message_id,
            settings,
            prelude,
            first_message=content if is_first_user_message else None,
        )

    if is_first_user_message:
        generate_chat_title(chat_id, content, settings)

    user_settings = get_stored_settings(auth_ctx.uid)
    assistant_message_id = _run_generation(chat_id, user_message_id, settings, user_settings)
    return (
        jsonify({"userMessageId": user_message_id, "assistantMessageId": assistant_message_id}),
        HTTPStatus.CREATED,
    )


@chats_bp.post("/<chat_id>/messages/<message_id>/branch")
@_chat_route
def branch_message(auth_ctx: AuthContext, chat_id: str, message_id: str):
    payload = _parse_json_body()
    content = _require_text(payload, "content")

    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    branch_id = chat_store.branch_message(chat_id, message_id, content)
    return jsonify({"messageId": branch_id}), HTTPStatus.CREATED


@chats_bp.post("/<chat_id>/regenerate")
@_chat_route
def regenerate(auth_ctx: AuthContext, chat_id: str):
    """Generate a reply to an existing user message, e.g. a freshly created branch."""
    payload = _parse_json_body()
    parent_id = _require_text(payload, "parentId")

    chat_store.get_chat_for_user(chat_id, auth_ctx.uid)
    try:
        parent = chat_store.get_message(chat_id, parent_id)
    except chat_store.MessageNotFoundError as exc:
        raise RequestValidationError("parentId does not belong to this chat.") from exc
    if parent.get("role") != "user":
        raise RequestValidationError("parentId must reference a user message.")

    settings = _generation_settings()
    if _wants_stream(payload):
        return _event_stream(chat_id, parent_id, settings, prelude=[])

    user_settings = get_stored_settings(auth_ctx.uid)
    assistant_message_id = _run_generation(chat_id, parent_id, settings, user_settings)
    return jsonify({"assistantMessageId": assistant_message_id}), HTTPStatus.CREATED
