"""Catalogue of the OpenRouter models a chat can be bound to."""

from __future__ import annotations

import logging

log = logging.getLogger(__name__)

MODELS: dict[str, dict[str, str]] = {
    "openai/gpt-4o": {"name": "GPT-4o"},
    "openai/gpt-4o-mini": {"name": "GPT-4o Mini"},
    "openai/gpt-4-turbo": {"name": "GPT-4 Turbo"},
    "openai/gpt-3.5-turbo": {"name": "GPT-3.5 Turbo"},
    "anthropic/claude-3.5-sonnet": {"name": "Claude 3.5 Sonnet"},
    "anthropic/claude-3-haiku": {"name": "Claude 3 Haiku"},
    "google/gemini-flash-1.5": {"name": "Gemini 1.5 Flash"},
    "google/gemini-pro-1.5": {"name": "Gemini 1.5 Pro"},
    "google/gemini-2.5-flash-preview-05-20": {"name": "Gemini 2.5 Flash Preview"},
    "meta-llama/llama-3.1-405b-instruct": {"name": "Llama 3.1 405B"},
    "meta-llama/llama-3.1-70b-instruct": {"name": "Llama 3.1 70B"},
    "meta-llama/llama-3.3-8b-instruct:free": {"name": "Llama 3.3 8B (Free)"},
    "deepseek/deepseek-chat-v3-0324:free": {"name": "DeepSeek Chat V3"},
    "deepseek/deepseek-r1-0528:free": {"name": "DeepSeek R1"},
    "qwen/qwen3-235b-a22b-07-25:free": {"name": "Qwen 3 235B"},
}

DEFAULT_MODEL = "openai/gpt-4o-mini"


def is_supported_model(model_id: str | None) -> bool:
    return bool(model_id) and model_id in MODELS


def resolve_model(model_id: str | None, fallback: str) -> tuple[str, bool]:
    """Return ``(model, substituted)``; unknown ids are replaced by ``fallback``."""
    if is_supported_model(model_id):
        return model_id, False
    log.error(
        "Unsupported model: %s. Available models: %s",
        model_id,
        ", ".join(MODELS),
    )
    return fallback, True


def list_catalogue() -> list[dict[str, str]]:
    return [{"id": model_id, "name": info["name"]} for model_id, info in MODELS.items()]
