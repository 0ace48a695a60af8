from __future__ import annotations

from pathlib import Path
from typing import Optional
import json
import os
import logging

import firebase_admin
from firebase_admin import credentials, firestore, storage
from google.cloud import firestore as gcloud_firestore

log = logging.getLogger(__name__)

# Ids that select the project's default Firestore database.
_DEFAULT_DATABASE_IDS = {"(default)", "default", ""}

firebase_app: Optional[firebase_admin.App] = None
_firestore_client: Optional[firestore.Client] = None
_database_id: Optional[str] = None
_project_id: Optional[str] = None
_bucket_name: Optional[str] = None


def _project_id_from(credentials_path: Path) -> Optional[str]:
    """project_id of the service account, overridable via FIREBASE_PROJECT_ID."""
    override = os.getenv("FIREBASE_PROJECT_ID")
    if override:
        return override
    try:
        with open(credentials_path, "r", encoding="utf-8") as fh:
            return json.load(fh).get("project_id")
    except (OSError, ValueError) as exc:
        log.debug("No project_id in %s: %s", credentials_path, exc)
        return None


def init_firebase(
    credentials_path: Path,
    database_id: Optional[str] = None,
    storage_bucket: Optional[str] = None,
) -> firebase_admin.App:
    """Initialise the Firebase app once; later calls only update the selections."""
    global firebase_app, _firestore_client, _database_id, _project_id, _bucket_name

    if firebase_app is None:
        _project_id = _project_id_from(credentials_path)
        if firebase_admin._apps:
            firebase_app = firebase_admin.get_app()
        else:
            options = {"projectId": _project_id, "storageBucket": storage_bucket}
            firebase_app = firebase_admin.initialize_app(
                credentials.Certificate(str(credentials_path)),
                options={key: value for key, value in options.items() if value} or None,
            )
            log.info("Initialized Firebase app for project %s", _project_id or "(from credentials)")
        _project_id = _project_id or getattr(firebase_app, "project_id", None)
        _database_id = database_id
        _bucket_name = storage_bucket
    else:
        if database_id and database_id != _database_id:
            _database_id = database_id
            _firestore_client = None
        if storage_bucket:
            _bucket_name = storage_bucket

    log.info(
        "Firestore database: %s; attachment bucket: %s",
        _database_id or "(default)",
        _bucket_name or "(not configured)",
    )
    return firebase_app


def _require_app() -> firebase_admin.App:
    if firebase_app is None:
        raise RuntimeError("Firebase app has not been initialised. Call init_firebase() first.")
    return firebase_app


def get_firestore_client() -> firestore.Client:
    """Shared Firestore client, bound to the configured named database if any."""
    global _firestore_client

    app = _require_app()
    if _firestore_client is not None:
        return _firestore_client

    if (_database_id or "") in _DEFAULT_DATABASE_IDS:
        _firestore_client = firestore.client(app=app)
        return _firestore_client

    project_id = _project_id or getattr(app, "project_id", None)
    if not project_id:
        raise RuntimeError("Unable to determine Firebase project ID for Firestore client.")
    _firestore_client = gcloud_firestore.Client(
        project=project_id,
        credentials=app.credential.get_credential(),
        database=_database_id,
    )
    log.debug("Created Firestore client for %s/%s", project_id, _database_id)
    return _firestore_client


def get_storage_bucket():
    """Return the Cloud Storage bucket that holds chat attachments."""
    app = _require_app()
    if not _bucket_name:
        raise RuntimeError("FIREBASE_STORAGE_BUCKET is not configured.")
    return storage.bucket(_bucket_name, app=app)
