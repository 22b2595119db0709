"""
Momentum AI - Webhook idempotency store
Records processed Stripe event ids for 24 hours so retried deliveries are
acknowledged without being handled twice.

Backend selection: Redis when REDIS_URL is set, Firestore when a Firebase
project is configured, otherwise an in-process dictionary.
"""
import os
import json
import time
import logging
import threading
from typing import Dict, Optional

import redis
from firebase_admin import firestore

from ... import config
from ..shared.firebase import get_firestore, init_firebase

logger = logging.getLogger(__name__)

EVENT_TTL_SECONDS = 24 * 60 * 60
CLEANUP_INTERVAL_SECONDS = 60 * 60
REDIS_KEY_PREFIX = "webhook:event:"
FIRESTORE_COLLECTION = "webhook_events"


def _event_record(event_id: str, event_type: Optional[str], now: Optional[float] = None) -> dict:
    return {
        "eventId": event_id,
        "eventType": event_type,
        "timestamp": now if now is not None else time.time(),
        "processed": True,
    }


class IdempotencyStore:
    """Common interface; lookups fail open and marks are best effort"""

    store_type = "base"

    def is_processed(self, event_id: str) -> bool:
        try:
            return self._is_processed(event_id)
        except Exception as e:
            logger.error(f"Idempotency lookup failed for {event_id} ({self.store_type}): {e}")
            return False

    def mark_processed(self, event_id: str, event_type: Optional[str] = None):
        try:
            self._mark_processed(event_id, event_type)
        except Exception as e:
            logger.error(f"Failed to mark event {event_id} processed ({self.store_type}): {e}")

    def cleanup_expired(self) -> int:
        return 0

    def close(self):
        pass

    def _is_processed(self, event_id: str) -> bool:
        raise NotImplementedError

    def _mark_processed(self, event_id: str, event_type: Optional[str]):
        raise NotImplementedError


class MemoryIdempotencyStore(IdempotencyStore):
    """Single-process store with hourly background cleanup"""

    store_type = "memory"

    def __init__(self, ttl_seconds: int = EVENT_TTL_SECONDS,
                 cleanup_interval: Optional[int] = CLEANUP_INTERVAL_SECONDS,
                 clock=time.time):
        self.ttl_seconds = ttl_seconds
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._events: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._timer = None
        self._closed = False
        if cleanup_interval:
            self._schedule_cleanup()

    def _schedule_cleanup(self):
        if self._closed:
            return
        self._timer = threading.Timer(self.cleanup_interval, self._run_cleanup)
        self._timer.daemon = True
        self._timer.start()

    def _run_cleanup(self):
        removed = self.cleanup_expired()
        if removed:
            logger.debug(f"Removed {removed} expired webhook events from memory store")
        self._schedule_cleanup()

    def _expired(self, record: dict, now: float) -> bool:
        return now - record["timestamp"] > self.ttl_seconds

    def _is_processed(self, event_id: str) -> bool:
        now = self._clock()
        with self._lock:
            record = self._events.get(event_id)
            if record is None:
                return False
            if self._expired(record, now):
                del self._events[event_id]
                return False
            return True

    def _mark_processed(self, event_id: str, event_type: Optional[str]):
        with self._lock:
            self._events[event_id] = _event_record(event_id, event_type, self._clock())

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [eid for eid, rec in self._events.items() if self._expired(rec, now)]
            for eid in expired:
                del self._events[eid]
        return len(expired)

    def __len__(self):
        with self._lock:
            return len(self._events)

    def close(self):
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        with self._lock:
            self._events.clear()


class RedisIdempotencyStore(IdempotencyStore):
    """Redis keys expire on their own; no cleanup pass needed"""

    store_type = "redis"

    def __init__(self, client, ttl_seconds: int = EVENT_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, password: Optional[str] = None):
        kwargs = {"socket_connect_timeout": 5, "socket_timeout": 5}
        if password:
            kwargs["password"] = password
        client = redis.from_url(url, **kwargs)
        client.ping()
        return cls(client)

    def _key(self, event_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}{event_id}"

    def _is_processed(self, event_id: str) -> bool:
        return bool(self.client.exists(self._key(event_id)))

    def _mark_processed(self, event_id: str, event_type: Optional[str]):
        self.client.setex(
            self._key(event_id),
            self.ttl_seconds,
            json.dumps(_event_record(event_id, event_type)),
        )

    def close(self):
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.warning(f"Error closing Redis idempotency client: {e}")


class FirestoreIdempotencyStore(IdempotencyStore):
    store_type = "firestore"

    def __init__(self, db, ttl_seconds: int = EVENT_TTL_SECONDS, clock=time.time):
        self.db = db
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _collection(self):
        return self.db.collection(FIRESTORE_COLLECTION)

    def _is_processed(self, event_id: str) -> bool:
        snapshot = self._collection().document(event_id).get()
        if not snapshot.exists:
            return False
        record = snapshot.to_dict() or {}
        timestamp = record.get("timestamp") or 0
        return self._clock() - timestamp <= self.ttl_seconds

    def _mark_processed(self, event_id: str, event_type: Optional[str]):
        self._collection().document(event_id).set(_event_record(event_id, event_type, self._clock()))

    def cleanup_expired(self) -> int:
        cutoff = self._clock() - self.ttl_seconds
        removed = 0
        try:
            query = self._collection().where(filter=firestore.FieldFilter("timestamp", "<", cutoff))
            for snapshot in query.stream():
                snapshot.reference.delete()
                removed += 1
        except Exception as e:
            logger.error(f"Firestore webhook event cleanup failed: {e}")
        return removed


def detect_store_type() -> str:
    if config.get_redis_url():
        return "redis"
    if (os.environ.get("FIREBASE_PROJECT_ID")
            or os.environ.get("FIREBASE_DATABASE_URL")
            or os.environ.get("FIREBASE_SERVICE_ACCOUNT")
            or os.environ.get("FIREBASE_SERVICE_ACCOUNT_PATH")):
        return "firestore"
    return "memory"


def create_idempotency_store() -> IdempotencyStore:
    """Build the configured backend, falling back to memory when it cannot start"""
    store_type = detect_store_type()

    if store_type == "redis":
        try:
            store = RedisIdempotencyStore.from_url(config.get_redis_url(), os.environ.get("REDIS_PASSWORD"))
            logger.info("✅ Webhook idempotency store: Redis")
            return store
        except redis.RedisError as e:
            logger.error(f"❌ Redis idempotency store unavailable, falling back to memory: {e}")

    elif store_type == "firestore":
        init_firebase()
        db = get_firestore()
        if db is not None:
            logger.info("✅ Webhook idempotency store: Firestore")
            return FirestoreIdempotencyStore(db)
        logger.error("❌ Firestore idempotency store unavailable, falling back to memory")

    if config.is_production():
        logger.error("❌ Using in-memory webhook idempotency store in production - "
                     "duplicates are not detected across instances")
    else:
        logger.warning("⚠️ Using in-memory webhook idempotency store")
    return MemoryIdempotencyStore()


_store = None
_store_lock = threading.Lock()


def get_idempotency_store() -> IdempotencyStore:
    global _store
    with _store_lock:
        if _store is None:
            _store = create_idempotency_store()
        return _store


def reset_idempotency_store():
    """Close and forget the process store"""
    global _store
    with _store_lock:
        if _store is not None:
            _store.close()
        _store = None
