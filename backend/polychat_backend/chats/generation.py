"""Produce assistant replies for a chat and persist them as they arrive.

A reply is always written to Firestore, even when the provider fails: the
placeholder message (or a freshly inserted one) then carries a user-facing
apology and the raw error text in ``metadata.error``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional

from . import service as chat_store
from .context import ConversationContext, build_context, to_prompt
from ..ai import client as ai_client
from ..ai.client import OpenRouterAPIError
from ..ai.models import resolve_model
from ..config import DEFAULT_FALLBACK_MODEL, DEFAULT_TITLE_MODEL
from ..users.service import openrouter_key_for

log = logging.getLogger(__name__)

APOLOGY_MESSAGE = (
    "I apologize, but I encountered an error while generating a response. Please try again."
)
EMPTY_REPLY_MESSAGE = "I apologize, but I couldn't generate a response."


class ContextNotFoundError(LookupError):
    """Raised when the chat to answer in no longer exists."""


@dataclass(slots=True)
class GenerationSettings:
    server_api_key: Optional[str] = None
    server_url: Optional[str] = None
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    title_model: str = DEFAULT_TITLE_MODEL
    flush_every: int = 3
    max_tokens: int = 4000
    temperature: float = 0.7

    @classmethod
    def from_app_config(cls, config: Mapping[str, Any]) -> "GenerationSettings":
        return cls(
            server_api_key=config.get("OPENROUTER_API_KEY"),
            server_url=config.get("AI_SERVER_URL"),
            fallback_model=config.get("FALLBACK_MODEL") or DEFAULT_FALLBACK_MODEL,
            title_model=config.get("TITLE_MODEL") or DEFAULT_TITLE_MODEL,
            flush_every=max(1, int(config.get("STREAM_FLUSH_EVERY") or 3)),
            max_tokens=int(config.get("MAX_COMPLETION_TOKENS") or 4000),
            temperature=float(config.get("COMPLETION_TEMPERATURE", 0.7)),
        )


@dataclass(slots=True)
class GenerationEvent:
    """Progress of a streamed reply: placeholder, delta, done or error."""

    type: str
    message_id: Optional[str]
    delta: str = ""
    text: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "messageId": self.message_id}
        if self.type == "delta":
            payload["token"] = self.delta
        if self.text:
            payload["text"] = self.text
        if self.metadata:
            payload["metadata"] = self.metadata
        return payload


def _prepare(chat_id: str, parent_message_id: str, settings: GenerationSettings) -> tuple[ConversationContext, str]:
    context = build_context(chat_id, parent_message_id)
    if context is None:
        raise ContextNotFoundError("Context not found")

    model, substituted = resolve_model(context.chat.get("model"), settings.fallback_model)
    if substituted:
        log.info("Falling back to default model: %s", model)
        chat_store.update_model(chat_id, model)
        context.chat["model"] = model
    return context, model


def _resolve_api_key(context: ConversationContext, settings: GenerationSettings) -> str:
    api_key = openrouter_key_for(context.user_settings) or settings.server_api_key
    if not api_key:
        raise OpenRouterAPIError("OpenRouter API key not found")
    return api_key


def _error_text(exc: Exception) -> str:
    return str(exc) or "Unknown error"


def _record_failure(
    chat_id: str,
    parent_message_id: str,
    assistant_id: Optional[str],
    metadata: dict[str, Any],
) -> Optional[str]:
    """Overwrite the placeholder with the apology, or insert a new apology message."""
    try:
        if assistant_id:
            chat_store.update_message_content(chat_id, assistant_id, APOLOGY_MESSAGE)
            chat_store.update_message_metadata(chat_id, assistant_id, metadata)
            return assistant_id
        return chat_store.add_message(
            chat_id,
            role="assistant",
            content=APOLOGY_MESSAGE,
            parent_id=parent_message_id,
            metadata=metadata,
        )
    except chat_store.ChatStoreError:
        log.exception("Unable to store the error reply for chat %s", chat_id)
        return assistant_id


def stream_response(
    chat_id: str,
    parent_message_id: str,
    settings: GenerationSettings,
) -> Iterator[GenerationEvent]:
    """Stream a reply to ``parent_message_id`` into a placeholder assistant message.

    Content is checkpointed every ``settings.flush_every`` non-empty chunks and
    whenever a chunk contains a newline. The final content and metadata are
    written once the provider stream ends.
    """
    context, model = _prepare(chat_id, parent_message_id, settings)

    metadata: dict[str, Any] = {"model": model}
    assistant_id: Optional[str] = None
    full_content = ""

    try:
        api_key = _resolve_api_key(context, settings)

        assistant_id = chat_store.add_message(
            chat_id,
            role="assistant",
            content="",
            parent_id=parent_message_id,
            metadata=metadata,
        )
        log.debug("Created assistant message %s for streaming", assistant_id)
        yield GenerationEvent("placeholder", assistant_id, metadata=dict(metadata))

        deltas = ai_client.stream_completion(
            to_prompt(context.messages),
            api_key=api_key,
            model=model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            server_url=settings.server_url,
        )

        chunk_count = 0
        for delta in deltas:
            if delta.content:
                full_content += delta.content
                chunk_count += 1
                if chunk_count % settings.flush_every == 0 or "\n" in delta.content:
                    chat_store.update_message_content(chat_id, assistant_id, full_content)
                yield GenerationEvent("delta", assistant_id, delta=delta.content, text=full_content)

            if delta.tokens is not None:
                metadata["tokens"] = delta.tokens
            if delta.finish_reason:
                metadata["finishReason"] = delta.finish_reason

        chat_store.update_message_content(chat_id, assistant_id, full_content)
        chat_store.update_message_metadata(chat_id, assistant_id, metadata)
        log.info("Streaming completed for message %s (%d chunks)", assistant_id, chunk_count)
    except Exception as exc:
        log.exception("Error generating streaming AI response for chat %s", chat_id)
        failure_metadata = {**metadata, "error": _error_text(exc)}
        message_id = _record_failure(chat_id, parent_message_id, assistant_id, failure_metadata)
        yield GenerationEvent("error", message_id, text=APOLOGY_MESSAGE)
        return

    yield GenerationEvent("done", assistant_id, text=full_content, metadata=dict(metadata))


def generate_streaming_response(
    chat_id: str,
    parent_message_id: str,
    settings: GenerationSettings,
) -> Optional[str]:
    """Run :func:`stream_response` to completion; returns the assistant message id."""
    message_id: Optional[str] = None
    for event in stream_response(chat_id, parent_message_id, settings):
        message_id = event.message_id or message_id
    return message_id


def generate_response(
    chat_id: str,
    parent_message_id: str,
    settings: GenerationSettings,
) -> str:
    """Single non-streaming completion stored as one assistant message."""
    context, model = _prepare(chat_id, parent_message_id, settings)
    metadata: dict[str, Any] = {"model": model}

    try:
        api_key = _resolve_api_key(context, settings)
        completion = ai_client.complete(
            to_prompt(context.messages),
            api_key=api_key,
            model=model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            server_url=settings.server_url,
        )
        response = completion.content or EMPTY_REPLY_MESSAGE
        if completion.tokens is not None:
            metadata["tokens"] = completion.tokens
        if completion.finish_reason:
            metadata["finishReason"] = completion.finish_reason
    except Exception as exc:
        log.exception("Error generating AI response for chat %s", chat_id)
        response = APOLOGY_MESSAGE
        metadata["error"] = _error_text(exc)

    return chat_store.add_message(
        chat_id,
        role="assistant",
        content=response,
        parent_id=parent_message_id,
        metadata=metadata,
    )


def generate_chat_title(chat_id: str, first_user_message: str, settings: GenerationSettings) -> Optional[str]:
    """Name the chat after its first user message. Failures never propagate."""
    if not settings.server_api_key:
        log.info("No OpenRouter API key found, skipping title generation")
        return None

    try:
        title = ai_client.generate_chat_title(
            first_user_message,
            api_key=settings.server_api_key,
            model=settings.title_model,
            server_url=settings.server_url,
        )
        chat_store.update_title(chat_id, title)
    except Exception as exc:
        log.warning("Error generating chat title for %s: %s", chat_id, exc, exc_info=True)
        return None

    log.info("Updated chat %s with title %r", chat_id, title)
    return title
