import logging
import time
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence

import openrouter
import requests

log = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
MODEL_CACHE_TTL_SECONDS = 300
_MODEL_CACHE: dict[str, Any] = {
    "timestamp": 0.0,
    "models": [],
    "server_url": None,
}

TITLE_INSTRUCTION = (
    "Generate a concise, descriptive title (2-6 words) for a chat conversation "
    "based on the user's first message. Return only the title, no quotes or additional text."
)
DEFAULT_TITLE = "New Chat"


class OpenRouterAPIError(RuntimeError):
    """Raised when the OpenRouter API responds with an error."""


@dataclass(slots=True)
class ChunkDelta:
    """The parts of one streamed chunk the orchestrator cares about."""

    content: str = ""
    finish_reason: Optional[str] = None
    tokens: Optional[int] = None


@dataclass(slots=True)
class Completion:
    content: str
    tokens: Optional[int] = None
    finish_reason: Optional[str] = None


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def _total_tokens(usage: Any) -> Optional[int]:
    tokens = _field(usage, "total_tokens")
    if tokens is None:
        tokens = _field(usage, "totalTokens")
    return tokens if isinstance(tokens, int) else None


def read_chunk(chunk: Any) -> ChunkDelta:
    """Normalise a streamed chunk from the SDK (object, SSE event wrapper or dict)."""
    # The SDK's event stream wraps the payload in ``.data``
    payload = _field(chunk, "data")
    if payload is None or isinstance(payload, str):
        payload = chunk

    delta = ChunkDelta(tokens=_total_tokens(_field(payload, "usage")))

    choices = _field(payload, "choices")
    if isinstance(choices, (list, tuple)) and choices:
        choice = choices[0]
        content = _field(_field(choice, "delta"), "content")
        if isinstance(content, str):
            delta.content = content
        finish_reason = _field(choice, "finish_reason")
        if finish_reason is None:
            finish_reason = _field(choice, "finishReason")
        if finish_reason:
            delta.finish_reason = str(finish_reason)

    return delta


def _client(api_key: str, server_url: Optional[str]) -> "openrouter.OpenRouter":
    return openrouter.OpenRouter(api_key=api_key, server_url=server_url)


def _iter_deltas(stream: Any) -> Iterator[ChunkDelta]:
    try:
        for chunk in stream:
            yield read_chunk(chunk)
    except OpenRouterAPIError:
        raise
    except Exception as exc:
        raise OpenRouterAPIError(str(exc)) from exc


def stream_completion(
    messages: Sequence[dict[str, Any]],
    api_key: str,
    model: str,
    *,
    max_tokens: int = 4000,
    temperature: float = 0.7,
    timeout: int = 120,
    server_url: Optional[str] = None,
) -> Iterator[ChunkDelta]:
    """Open a streaming completion and return an iterator of normalised chunks."""
    try:
        stream = _client(api_key, server_url).chat.send(
            model=model,
            messages=list(messages),
            max_tokens=max_tokens,
            temperature=temperature,
            stream=True,
            timeout_ms=timeout * 1000,
        )
    except Exception as exc:
        raise OpenRouterAPIError(str(exc)) from exc
    return _iter_deltas(stream)


def complete(
    messages: Sequence[dict[str, Any]],
    api_key: str,
    model: str,
    *,
    max_tokens: int = 4000,
    temperature: float = 0.7,
    timeout: int = 60,
    server_url: Optional[str] = None,
) -> Completion:
    """Call the chat-completion endpoint once, without streaming."""
    try:
        response = _client(api_key, server_url).chat.send(
            model=model,
            messages=list(messages),
            max_tokens=max_tokens,
            temperature=temperature,
            stream=False,
            timeout_ms=timeout * 1000,
        )
    except Exception as exc:
        raise OpenRouterAPIError(str(exc)) from exc

    choices = _field(response, "choices") or []
    first = choices[0] if choices else None
    content = _field(_field(first, "message"), "content")
    finish_reason = _field(first, "finish_reason") or _field(first, "finishReason")
    return Completion(
        content=content if isinstance(content, str) else "",
        tokens=_total_tokens(_field(response, "usage")),
        finish_reason=str(finish_reason) if finish_reason else None,
    )


def generate_chat_title(
    first_user_message: str,
    api_key: str,
    model: str,
    server_url: Optional[str] = None,
) -> str:
    """Produce a short chat title from the first user message."""
    messages = [
        {"role": "system", "content": TITLE_INSTRUCTION},
        {"role": "user", "content": first_user_message},
    ]
    completion = complete(
        messages,
        api_key=api_key,
        model=model,
        max_tokens=20,
        temperature=0.7,
        timeout=20,
        server_url=server_url,
    )
    return completion.content.strip() or DEFAULT_TITLE


def _resolve_base_url(server_url: Optional[str]) -> str:
    if server_url:
        trimmed = server_url.rstrip("/")
        if trimmed.endswith("/v1"):
            return trimmed
        return f"{trimmed}/v1"
    return OPENROUTER_BASE_URL


def list_available_models(
    *,
    api_key: Optional[str],
    server_url: Optional[str] = None,
    force_refresh: bool = False,
) -> list[dict[str, Any]]:
    """Fetch the provider's live model list, cached for a few minutes."""
    now = time.time()
    cached_models = _MODEL_CACHE.get("models")
    if (
        not force_refresh
        and cached_models
        and _MODEL_CACHE.get("server_url") == server_url
        and now - float(_MODEL_CACHE.get("timestamp") or 0.0) < MODEL_CACHE_TTL_SECONDS
    ):
        return list(cached_models)

    headers: dict[str, str] = {}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    try:
        response = requests.get(f"{_resolve_base_url(server_url)}/models", headers=headers, timeout=10)
    except requests.RequestException as exc:
        raise OpenRouterAPIError(f"Failed to fetch models: {exc}") from exc

    if response.status_code != 200:
        raise OpenRouterAPIError(
            f"Failed to fetch models: HTTP {response.status_code} - {response.text.strip()}"
        )

    models: list[dict[str, Any]] = []
    for item in response.json().get("data") or []:
        if not isinstance(item, dict):
            continue
        model_id = item.get("id") or item.get("name")
        if not model_id:
            continue
        models.append(
            {
                "id": model_id,
                "name": item.get("name") or model_id,
                "contextLength": item.get("context_length"),
                "pricing": item.get("pricing"),
            }
        )

    if not models:
        raise OpenRouterAPIError("Model list is empty.")

    _MODEL_CACHE.update({"timestamp": now, "models": models, "server_url": server_url})
    return list(models)
