from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from flask import Request, jsonify, request
from firebase_admin import auth as firebase_auth
from firebase_admin import exceptions as firebase_exceptions


class AuthError(Exception):
    """Raised when a request cannot be authenticated."""

    def __init__(self, error: str, message: str, status: HTTPStatus = HTTPStatus.UNAUTHORIZED) -> None:
        super().__init__(message)
        self.error = error
        self.message = message
        self.status = status

    def to_response(self) -> tuple[Any, int]:
        return jsonify({"error": self.error, "message": self.message}), self.status


@dataclass(slots=True)
class AuthContext:
    """Identity of the caller after a verified Firebase ID token."""

    uid: str
    token: str
    decoded_token: dict[str, Any]


# Checked in order: the expired/revoked errors subclass InvalidIdTokenError.
_TOKEN_ERRORS: tuple[tuple[type[Exception], str, str], ...] = (
    (firebase_auth.ExpiredIdTokenError, "token_expired", "Authentication token has expired."),
    (firebase_auth.RevokedIdTokenError, "token_revoked", "Authentication token has been revoked."),
    (firebase_auth.InvalidIdTokenError, "invalid_token", "Authentication token is malformed."),
    (firebase_exceptions.InvalidArgumentError, "invalid_token", "Authentication token is malformed."),
)


def _extract_bearer_token(req: Request) -> str:
    header = req.headers.get("Authorization", "").strip()
    if not header:
        raise AuthError("unauthorized", "Authorization header is required.")

    scheme, _, token = header.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or " " in token:
        raise AuthError("unauthorized", "Authorization header must be of the form 'Bearer <token>'.")
    if not token:
        raise AuthError("unauthorized", "Bearer token is empty.")
    return token


def _verify(token: str) -> dict[str, Any]:
    try:
        return firebase_auth.verify_id_token(token)
    except firebase_exceptions.FirebaseError as exc:
        for error_type, code, message in _TOKEN_ERRORS:
            if isinstance(exc, error_type):
                raise AuthError(code, message) from None
        raise AuthError("firebase_auth_error", str(exc), HTTPStatus.INTERNAL_SERVER_ERROR) from exc


def require_firebase_user() -> AuthContext:
    """Authenticate the current request from its ``Authorization: Bearer`` header."""
    token = _extract_bearer_token(request)
    decoded = _verify(token)

    uid = decoded.get("uid")
    if not isinstance(uid, str) or not uid:
        raise AuthError("invalid_token", "Authentication token missing uid claim.")

    return AuthContext(uid=uid, token=token, decoded_token=decoded)
