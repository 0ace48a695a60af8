"""Firestore persistence for chats and their messages.

Chats live in the top-level ``chats`` collection; messages in the
``chats/{chatId}/messages`` subcollection. Every function performs plain
single-document writes (or one batch for deletion) and wraps Google API
failures in :class:`ChatStoreError`.
"""

from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from firebase_admin import firestore as firebase_firestore
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore_v1 import FieldFilter

from ..firebase import get_firestore_client

log = logging.getLogger(__name__)

MESSAGE_ROLES = ("user", "assistant", "system")
ATTACHMENT_TYPES = ("image", "pdf")
CHAT_LIST_LIMIT = 50
SHARE_ID_LENGTH = 13
_SHARE_ID_ALPHABET = string.ascii_lowercase + string.digits
# Firestore rejects batches with more than 500 writes.
_BATCH_LIMIT = 500


class ChatStoreError(Exception):
    """Raised when Firestore cannot serve a chat or message operation."""


class ChatNotFoundError(LookupError):
    """Raised when a chat does not exist or is not visible to the caller."""


class MessageNotFoundError(LookupError):
    """Raised when a message id does not belong to the chat."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _chats():
    return get_firestore_client().collection("chats")


def _messages(chat_id: str):
    return _chats().document(chat_id).collection("messages")


def _record(doc_id: str, data: Optional[dict[str, Any]]) -> dict[str, Any]:
    record = dict(data or {})
    record["id"] = doc_id
    return record


def new_share_id() -> str:
    return "".join(secrets.choice(_SHARE_ID_ALPHABET) for _ in range(SHARE_ID_LENGTH))


def create_chat(uid: str, title: str, model: str) -> dict[str, Any]:
    now = _now()
    data = {
        "uid": uid,
        "title": title,
        "model": model,
        "createdAt": now,
        "lastMessageAt": now,
    }
    chat_ref = _chats().document()
    try:
        chat_ref.set(data)
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    log.info("Created chat %s for %s with model %s", chat_ref.id, uid, model)
    return _record(chat_ref.id, data)


def list_chats(uid: str, limit: int = CHAT_LIST_LIMIT) -> list[dict[str, Any]]:
    """Most recently active chats of ``uid`` first."""
    query = (
        _chats()
        .where(filter=FieldFilter("uid", "==", uid))
        .order_by("lastMessageAt", direction=firebase_firestore.Query.DESCENDING)
        .limit(limit)
    )
    try:
        return [_record(doc.id, doc.to_dict()) for doc in query.stream()]
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc


def get_chat(chat_id: str) -> Optional[dict[str, Any]]:
    try:
        snapshot = _chats().document(chat_id).get()
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    if not snapshot.exists:
        return None
    return _record(chat_id, snapshot.to_dict())


def get_chat_for_user(chat_id: str, uid: str) -> dict[str, Any]:
    chat = get_chat(chat_id)
    if chat is None or chat.get("uid") != uid:
        raise ChatNotFoundError("Chat not found.")
    return chat


def get_shared_chat(share_id: str) -> Optional[dict[str, Any]]:
    query = _chats().where(filter=FieldFilter("shareId", "==", share_id)).limit(1)
    try:
        docs = list(query.stream())
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    if not docs:
        return None
    chat = _record(docs[0].id, docs[0].to_dict())
    if not chat.get("isShared"):
        return None
    return chat


def _update_chat(chat_id: str, updates: dict[str, Any]) -> None:
    try:
        _chats().document(chat_id).update(updates)
    except google_exceptions.NotFound as exc:
        raise ChatNotFoundError("Chat not found.") from exc
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc


def update_title(chat_id: str, title: str) -> None:
    _update_chat(chat_id, {"title": title})


def update_model(chat_id: str, model: str) -> None:
    _update_chat(chat_id, {"model": model})


def share_chat(chat_id: str) -> str:
    share_id = new_share_id()
    _update_chat(chat_id, {"isShared": True, "shareId": share_id})
    return share_id


def unshare_chat(chat_id: str) -> None:
    _update_chat(chat_id, {"isShared": False, "shareId": firebase_firestore.DELETE_FIELD})


def delete_chat(chat_id: str) -> int:
    """Delete every message of the chat, then the chat. Returns the message count."""
    db = get_firestore_client()
    chat_ref = _chats().document(chat_id)
    deleted = 0
    try:
        batch = db.batch()
        pending = 0
        for message_doc in chat_ref.collection("messages").stream():
            batch.delete(message_doc.reference)
            deleted += 1
            pending += 1
            if pending == _BATCH_LIMIT - 1:
                batch.commit()
                batch = db.batch()
                pending = 0
        batch.delete(chat_ref)
        batch.commit()
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    log.info("Deleted chat %s with %d messages", chat_id, deleted)
    return deleted


def list_messages(chat_id: str) -> list[dict[str, Any]]:
    """All messages of the chat in creation order."""
    try:
        docs = list(_messages(chat_id).order_by("createdAt").stream())
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    return [_record(doc.id, doc.to_dict()) for doc in docs]


def get_message(chat_id: str, message_id: str) -> dict[str, Any]:
    try:
        snapshot = _messages(chat_id).document(message_id).get()
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    if not snapshot.exists:
        raise MessageNotFoundError(f"Message {message_id} not found in this chat.")
    return _record(message_id, snapshot.to_dict())


def add_message(
    chat_id: str,
    *,
    role: str,
    content: str,
    parent_id: Optional[str] = None,
    attachments: Optional[Iterable[dict[str, Any]]] = None,
    metadata: Optional[dict[str, Any]] = None,
    touch_chat: bool = True,
) -> str:
    """Insert a message and bump the chat's ``lastMessageAt`` in one batch.

    Nothing is written when the chat document no longer exists.
    """
    if role not in MESSAGE_ROLES:
        raise ValueError(f"Unsupported message role: {role}")

    now = _now()
    data: dict[str, Any] = {"role": role, "content": content, "createdAt": now}
    if parent_id:
        data["parentId"] = parent_id
    attachment_list = list(attachments or [])
    if attachment_list:
        data["attachments"] = attachment_list
    if metadata:
        data["metadata"] = dict(metadata)

    db = get_firestore_client()
    message_ref = _messages(chat_id).document()
    batch = db.batch()
    batch.set(message_ref, data)
    if touch_chat:
        batch.update(_chats().document(chat_id), {"lastMessageAt": now})
    try:
        batch.commit()
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    return message_ref.id


def update_message_content(chat_id: str, message_id: str, content: str) -> None:
    try:
        _messages(chat_id).document(message_id).update({"content": content})
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc


def update_message_metadata(chat_id: str, message_id: str, metadata: dict[str, Any]) -> None:
    try:
        _messages(chat_id).document(message_id).update({"metadata": dict(metadata)})
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc


def branch_message(chat_id: str, message_id: str, content: str) -> str:
    """Create a user message that is a sibling of ``message_id`` (same parent)."""
    original = get_message(chat_id, message_id)
    return add_message(
        chat_id,
        role="user",
        content=content,
        parent_id=original.get("parentId"),
        touch_chat=False,
    )
