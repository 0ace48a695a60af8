"""Maintenance jobs over the ``chats`` collection."""

from __future__ import annotations

from collections import Counter
import logging

from google.api_core import exceptions as google_exceptions

from .ai.models import is_supported_model
from .chats.service import ChatStoreError
from .firebase import get_firestore_client

log = logging.getLogger(__name__)

# Firestore rejects batches with more than 500 writes.
_BATCH_LIMIT = 500


def _chat_snapshots():
    try:
        return list(get_firestore_client().collection("chats").stream())
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc


def count_models() -> dict[str, int]:
    """Number of chats per stored model id."""
    counts: Counter[str] = Counter()
    for snapshot in _chat_snapshots():
        data = snapshot.to_dict() or {}
        counts[str(data.get("model") or "")] += 1
    log.info("Models in database: %s", dict(counts))
    return dict(counts)


def find_invalid_models() -> dict[str, int]:
    return {model: count for model, count in count_models().items() if not is_supported_model(model)}


def migrate_models(replacement: str) -> int:
    """Rewrite every chat whose model is outside the catalogue to ``replacement``."""
    if not is_supported_model(replacement):
        raise ValueError(f"Replacement model '{replacement}' is not in the catalogue")

    client = get_firestore_client()
    batch = client.batch()
    pending = 0
    updated = 0
    try:
        for snapshot in _chat_snapshots():
            model = (snapshot.to_dict() or {}).get("model")
            if is_supported_model(model):
                continue
            log.info("Chat %s uses unknown model %s; switching to %s", snapshot.id, model, replacement)
            batch.update(snapshot.reference, {"model": replacement})
            pending += 1
            updated += 1
            if pending >= _BATCH_LIMIT:
                batch.commit()
                batch = client.batch()
                pending = 0
        if pending:
            batch.commit()
    except google_exceptions.GoogleAPICallError as exc:
        raise ChatStoreError(str(exc)) from exc
    return updated
