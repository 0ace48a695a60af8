from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Iterable, Optional
from uuid import uuid4

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions

from ..firebase import get_storage_bucket

log = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {
    "image/png": "image",
    "image/jpeg": "image",
    "image/gif": "image",
    "image/webp": "image",
    "application/pdf": "pdf",
}


class AttachmentError(ValueError):
    """Raised when an attachment descriptor or upload request is invalid."""


class StorageUnavailableError(RuntimeError):
    """Raised when signed URLs cannot be produced."""


def attachment_prefix(uid: str) -> str:
    return f"attachments/{uid}/"


def attachment_type_for(content_type: str) -> Optional[str]:
    return ALLOWED_CONTENT_TYPES.get((content_type or "").split(";")[0].strip().lower())


def create_upload_url(uid: str, content_type: str, ttl_seconds: int) -> dict[str, Any]:
    """Signed PUT URL for one new attachment object owned by ``uid``."""
    kind = attachment_type_for(content_type)
    if kind is None:
        raise AttachmentError(
            f"Unsupported content type '{content_type}'. Allowed: {', '.join(sorted(ALLOWED_CONTENT_TYPES))}"
        )

    storage_id = f"{attachment_prefix(uid)}{uuid4().hex}"
    try:
        blob = get_storage_bucket().blob(storage_id)
        upload_url = blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=ttl_seconds),
            method="PUT",
            content_type=content_type,
        )
    except (RuntimeError, google_auth_exceptions.GoogleAuthError, google_exceptions.GoogleAPICallError) as exc:
        raise StorageUnavailableError(str(exc)) from exc

    return {
        "uploadUrl": upload_url,
        "storageId": storage_id,
        "type": kind,
        "method": "PUT",
        "headers": {"Content-Type": content_type},
        "expiresIn": ttl_seconds,
    }


def download_url(storage_id: str, ttl_seconds: int) -> Optional[str]:
    try:
        blob = get_storage_bucket().blob(storage_id)
        return blob.generate_signed_url(
            version="v4",
            expiration=timedelta(seconds=ttl_seconds),
            method="GET",
        )
    except (RuntimeError, google_auth_exceptions.GoogleAuthError, google_exceptions.GoogleAPICallError) as exc:
        log.warning("Unable to sign download URL for %s: %s", storage_id, exc)
        return None


def with_download_urls(attachments: Iterable[dict[str, Any]], ttl_seconds: int) -> list[dict[str, Any]]:
    enriched: list[dict[str, Any]] = []
    for attachment in attachments:
        item = dict(attachment)
        storage_id = item.get("storageId")
        item["url"] = download_url(storage_id, ttl_seconds) if storage_id else None
        enriched.append(item)
    return enriched


def validate_attachments(uid: str, raw: Any, max_size: int) -> list[dict[str, Any]]:
    """Check client-supplied attachment descriptors against the caller's uploads."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise AttachmentError("attachments must be a list.")

    prefix = attachment_prefix(uid)
    attachments: list[dict[str, Any]] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise AttachmentError(f"attachments[{index}] must be an object.")
        kind = item.get("type")
        storage_id = item.get("storageId")
        name = item.get("name")
        size = item.get("size")
        if kind not in ("image", "pdf"):
            raise AttachmentError(f"attachments[{index}].type must be 'image' or 'pdf'.")
        if not isinstance(storage_id, str) or not storage_id.startswith(prefix):
            raise AttachmentError(f"attachments[{index}].storageId does not belong to you.")
        if not isinstance(name, str) or not name.strip():
            raise AttachmentError(f"attachments[{index}].name is required.")
        if isinstance(size, bool) or not isinstance(size, (int, float)) or size < 0:
            raise AttachmentError(f"attachments[{index}].size must be a non-negative number.")
        if size > max_size:
            raise AttachmentError(f"attachments[{index}] exceeds the maximum upload size.")
        attachments.append({"type": kind, "storageId": storage_id, "name": name.strip(), "size": size})
    return attachments
