"""Reconstruct the prompt history of a conversation from parent pointers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

from . import service as chat_store
from ..users.service import get_stored_settings


@dataclass(slots=True)
class ConversationContext:
    chat: dict[str, Any]
    messages: list[dict[str, Any]]
    user_settings: Optional[dict[str, Any]] = None


def conversation_path(messages: Sequence[dict[str, Any]], target_id: Optional[str]) -> list[dict[str, Any]]:
    """Messages from the root down to ``target_id`` following ``parentId``.

    The walk stops at a message without parent, at a parent id that is not
    part of ``messages``, or when a message would be visited twice.
    """
    by_id = {message["id"]: message for message in messages}
    path: list[dict[str, Any]] = []
    seen: set[str] = set()
    current_id = target_id
    while current_id and current_id not in seen:
        message = by_id.get(current_id)
        if message is None:
            break
        seen.add(current_id)
        path.append(message)
        current_id = message.get("parentId")
    path.reverse()
    return path


def assemble_conversation(messages: Sequence[dict[str, Any]], target_id: Optional[str]) -> list[dict[str, Any]]:
    """Prompt history for a reply to ``target_id``.

    Root messages (no ``parentId``) that are not on the path come first, in
    the order of ``messages``; the path root -> target follows.
    """
    path = conversation_path(messages, target_id)
    on_path = {message["id"] for message in path}
    detached_roots = [
        message for message in messages
        if not message.get("parentId") and message["id"] not in on_path
    ]
    return detached_roots + path


def to_prompt(messages: Sequence[dict[str, Any]]) -> list[dict[str, str]]:
    return [
        {"role": message.get("role", "user"), "content": message.get("content") or ""}
        for message in messages
    ]


def build_context(chat_id: str, target_message_id: str) -> Optional[ConversationContext]:
    """Load the chat, its owner's settings and the history up to ``target_message_id``."""
    chat = chat_store.get_chat(chat_id)
    if chat is None:
        return None

    user_settings = get_stored_settings(chat["uid"]) if chat.get("uid") else None
    all_messages = chat_store.list_messages(chat_id)
    return ConversationContext(
        chat=chat,
        messages=assemble_conversation(all_messages, target_message_id),
        user_settings=user_settings,
    )
