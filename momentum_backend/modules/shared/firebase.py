"""
Momentum AI - Firebase Admin bootstrap
The server must start without Firebase; every accessor returns None when
the Admin SDK is not initialized.
"""
import os
import json
import logging
import threading

import firebase_admin
from firebase_admin import credentials, firestore, storage

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_initialized = False


def _load_credentials():
    path = os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")
    if path:
        if not os.path.exists(path):
            raise ValueError(f"Service account file not found: {path}")
        return credentials.Certificate(path)

    raw = (os.environ.get("FIREBASE_SERVICE_ACCOUNT") or "").strip()
    if raw:
        return credentials.Certificate(json.loads(raw))

    return None


def init_firebase() -> bool:
    """Initialize the Firebase Admin app once per process. Never raises."""
    global _initialized
    with _init_lock:
        if _initialized or firebase_admin._apps:
            _initialized = True
            return True

        try:
            cred = _load_credentials()
            if cred is None:
                logger.warning("⚠️ Firebase service account not configured - auth and Firestore disabled")
                return False

            options = {}
            bucket = os.environ.get("FIREBASE_STORAGE_BUCKET")
            if bucket:
                options["storageBucket"] = bucket
            project_id = os.environ.get("FIREBASE_PROJECT_ID")
            if project_id:
                options["projectId"] = project_id

            firebase_admin.initialize_app(cred, options)
            _initialized = True
            logger.info("✅ Firebase Admin initialized")
            return True

        except (ValueError, OSError) as e:
            logger.error(f"❌ Firebase initialization failed: {e}")
            return False


def is_firebase_initialized() -> bool:
    return _initialized or bool(firebase_admin._apps)


def get_firestore():
    """Firestore client, or None when Firebase is not available"""
    if not is_firebase_initialized():
        return None
    try:
        return firestore.client()
    except ValueError as e:
        logger.error(f"Firestore client unavailable: {e}")
        return None


def get_storage_bucket():
    """Default storage bucket, or None when not configured"""
    if not is_firebase_initialized():
        return None
    try:
        return storage.bucket()
    except ValueError as e:
        logger.warning(f"Firebase storage bucket unavailable: {e}")
        return None
