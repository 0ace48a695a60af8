from __future__ import annotations

import logging
import threading
import time

from flask import Flask, jsonify, request
from flask_cors import CORS

from .config import AppConfig, ConfigError, load_config
from .firebase import init_firebase
from .auth import auth_bp
from .chats import chats_bp
from .shared import shared_bp
from .uploads import uploads_bp
from .users import users_bp

log = logging.getLogger(__name__)

_API_USAGE = {
    "minute_count": 0,
    "minute_reset_time": 0.0,
    "hour_count": 0,
    "hour_reset_time": 0.0,
    "shutdown_until": 0.0,
    "lock": threading.Lock(),
}

API_USAGE_MINUTE_THRESHOLD = 1000
API_USAGE_HOUR_THRESHOLD = 20000
API_SHUTDOWN_MINUTE_DURATION = 60
API_SHUTDOWN_HOUR_DURATION = 360

# Blueprints that hit Firestore or Firebase Auth on every request.
GUARDED_BLUEPRINTS = {"auth", "chats", "users", "uploads"}


def _check_api_overuse(now: float | None = None) -> tuple[bool, int | None]:
    now = time.time() if now is None else now
    with _API_USAGE["lock"]:
        if _API_USAGE["shutdown_until"] > now:
            return False, int(_API_USAGE["shutdown_until"] - now)
        if now > _API_USAGE["minute_reset_time"]:
            _API_USAGE["minute_count"] = 0
            _API_USAGE["minute_reset_time"] = now + 60
        if now > _API_USAGE["hour_reset_time"]:
            _API_USAGE["hour_count"] = 0
            _API_USAGE["hour_reset_time"] = now + 3600
        _API_USAGE["minute_count"] += 1
        _API_USAGE["hour_count"] += 1
        if _API_USAGE["minute_count"] > API_USAGE_MINUTE_THRESHOLD:
            _API_USAGE["shutdown_until"] = now + API_SHUTDOWN_MINUTE_DURATION
            log.warning(
                "API usage exceeded %d requests per minute; pausing for %d seconds.",
                API_USAGE_MINUTE_THRESHOLD,
                API_SHUTDOWN_MINUTE_DURATION,
            )
            return False, API_SHUTDOWN_MINUTE_DURATION
        if _API_USAGE["hour_count"] > API_USAGE_HOUR_THRESHOLD:
            _API_USAGE["shutdown_until"] = now + API_SHUTDOWN_HOUR_DURATION
            log.warning(
                "API usage exceeded %d requests per hour; pausing for %d seconds.",
                API_USAGE_HOUR_THRESHOLD,
                API_SHUTDOWN_HOUR_DURATION,
            )
            return False, API_SHUTDOWN_HOUR_DURATION
        return True, None


def _reset_api_usage() -> None:
    with _API_USAGE["lock"]:
        _API_USAGE.update(
            minute_count=0,
            minute_reset_time=0.0,
            hour_count=0,
            hour_reset_time=0.0,
            shutdown_until=0.0,
        )


def register_blueprints(app: Flask) -> None:
    app.register_blueprint(auth_bp)
    app.register_blueprint(chats_bp)
    app.register_blueprint(shared_bp)
    app.register_blueprint(uploads_bp)
    app.register_blueprint(users_bp)


def create_app(config: AppConfig | None = None, *, init_services: bool = True) -> Flask:
    """Application factory for the Polychat backend."""
    if config is None:
        try:
            config = load_config()
        except ConfigError as exc:
            raise RuntimeError(f"Configuration error: {exc}") from exc

    app = Flask(__name__)

    @app.before_request
    def api_overuse_guard():
        if request.blueprint in GUARDED_BLUEPRINTS:
            ok, wait = _check_api_overuse()
            if not ok:
                return jsonify({
                    "error": "api_overuse",
                    "message": f"API temporarily disabled due to overuse. Try again in {wait} seconds.",
                }), 429

    app.config.update(
        PORT=config.port,
        FIREBASE_CREDENTIALS_PATH=str(config.firebase_credentials_path),
        FIREBASE_WEB_API_KEY=config.firebase_web_api_key,
        FIRESTORE_DATABASE_ID=config.firestore_database_id,
        FIREBASE_STORAGE_BUCKET=config.storage_bucket,
        OPENROUTER_API_KEY=config.openrouter_api_key,
        AI_SERVER_URL=config.ai_server_url,
        FALLBACK_MODEL=config.fallback_model,
        TITLE_MODEL=config.title_model,
        STREAM_FLUSH_EVERY=config.stream_flush_every,
        MAX_COMPLETION_TOKENS=config.max_completion_tokens,
        COMPLETION_TEMPERATURE=config.completion_temperature,
        UPLOAD_URL_TTL_SECONDS=config.upload_url_ttl_seconds,
        MAX_UPLOAD_SIZE=config.max_upload_size,
    )

    CORS(app,
         resources={r"/*": {
             "origins": [
                 r"^https?://localhost(:[0-9]+)?$",
                 r"^https?://127\.0\.0\.1(:[0-9]+)?$",
             ],
             "methods": ["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
             "allow_headers": ["Content-Type", "Authorization"],
             "expose_headers": ["Content-Type"],
             "supports_credentials": True,
             "max_age": 3600,
         }})

    if init_services:
        init_firebase(
            config.firebase_credentials_path,
            database_id=config.firestore_database_id,
            storage_bucket=config.storage_bucket,
        )

    register_blueprints(app)

    @app.get("/health")
    def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app
