from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_FALLBACK_MODEL = "deepseek/deepseek-chat-v3-0324:free"
DEFAULT_TITLE_MODEL = "qwen/qwen3-235b-a22b-07-25:free"


class ConfigError(Exception):
    """Raised when required configuration is missing or invalid."""


@dataclass(slots=True)
class AppConfig:
    port: int
    firebase_credentials_path: Path
    firebase_web_api_key: Optional[str] = None
    firestore_database_id: Optional[str] = None
    storage_bucket: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    ai_server_url: Optional[str] = None
    fallback_model: str = DEFAULT_FALLBACK_MODEL
    title_model: str = DEFAULT_TITLE_MODEL
    stream_flush_every: int = 3
    max_completion_tokens: int = 4000
    completion_temperature: float = 0.7
    upload_url_ttl_seconds: int = 900
    max_upload_size: int = 10 * 1024 * 1024


def _resolve_path(path_str: str, base_dir: Path) -> Path:
    # Normalize Windows-style backslashes to forward slashes so paths work across OSes.
    path_str = path_str.strip().replace("\\", "/")
    candidate = Path(path_str).expanduser()
    if candidate.is_absolute():
        return candidate

    for root in (base_dir, base_dir.parent):
        resolved = (root / candidate).resolve()
        if resolved.exists():
            return resolved

    return (base_dir / candidate).resolve()


def _int_env(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got '{raw}'") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _optional_env(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None:
        return None
    return value.strip() or None


def load_config() -> AppConfig:
    """Load configuration from environment variables/.env file."""
    backend_dir = Path(__file__).resolve().parent.parent
    load_dotenv(backend_dir / ".env")

    port = _int_env("PORT", 5000)

    credentials_path_raw = os.getenv("FIREBASE_CREDENTIALS_PATH")
    if not credentials_path_raw:
        raise ConfigError("FIREBASE_CREDENTIALS_PATH is required")

    credentials_path = _resolve_path(credentials_path_raw, backend_dir)
    if not credentials_path.exists():
        raise ConfigError(
            "Firebase credentials file not found at resolved path: "
            f"{credentials_path}"
        )

    temperature_raw = os.getenv("COMPLETION_TEMPERATURE", "0.7")
    try:
        temperature = float(temperature_raw)
    except ValueError as exc:
        raise ConfigError(f"COMPLETION_TEMPERATURE must be a number, got '{temperature_raw}'") from exc
    if not 0.0 <= temperature <= 2.0:
        raise ConfigError("COMPLETION_TEMPERATURE must be between 0 and 2")

    return AppConfig(
        port=port,
        firebase_credentials_path=credentials_path,
        firebase_web_api_key=_optional_env("FIREBASE_WEB_API_KEY"),
        firestore_database_id=_optional_env("FIRESTORE_DATABASE_ID"),
        storage_bucket=_optional_env("FIREBASE_STORAGE_BUCKET"),
        openrouter_api_key=_optional_env("OPENROUTER_API_KEY"),
        ai_server_url=_optional_env("AI_SERVER_URL"),
        fallback_model=_optional_env("FALLBACK_MODEL") or DEFAULT_FALLBACK_MODEL,
        title_model=_optional_env("TITLE_MODEL") or DEFAULT_TITLE_MODEL,
        stream_flush_every=_int_env("STREAM_FLUSH_EVERY", 3),
        max_completion_tokens=_int_env("MAX_COMPLETION_TOKENS", 4000),
        completion_temperature=temperature,
        upload_url_ttl_seconds=_int_env("UPLOAD_URL_TTL_SECONDS", 900),
        max_upload_size=_int_env("MAX_UPLOAD_SIZE", 10 * 1024 * 1024),
    )
