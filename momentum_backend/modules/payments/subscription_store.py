"""
Momentum AI - Subscription state in Firestore
subscriptions/<uid> holds the latest Stripe state written by webhooks,
usage/<uid> holds monthly counters.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from firebase_admin import firestore

from ..shared.firebase import get_firestore
from .payment_config import normalize_plan_name

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_COLLECTION = "subscriptions"
USAGE_COLLECTION = "usage"
USAGE_FIELDS = ("images", "ai_requests")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def epoch_to_iso(value) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).isoformat()


def parse_iso(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def save_subscription_state(user_id: str, data: dict) -> bool:
    """Merge subscription fields into subscriptions/<uid>"""
    db = get_firestore()
    if db is None:
        logger.warning(f"Firestore unavailable; subscription state for {user_id} not persisted")
        return False

    payload = dict(data)
    payload.setdefault("updated_at", utc_now_iso())
    db.collection(SUBSCRIPTIONS_COLLECTION).document(user_id).set(payload, merge=True)
    logger.info(f"Subscription state persisted for user {user_id} (status={payload.get('status')})")
    return True


def get_subscription_record(user_id: str) -> Optional[dict]:
    db = get_firestore()
    if db is None or not user_id:
        return None
    snapshot = db.collection(SUBSCRIPTIONS_COLLECTION).document(user_id).get()
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


def get_user_subscription(user_id: str) -> dict:
    """Normalized view of a user's subscription; free/active when none exists"""
    try:
        record = get_subscription_record(user_id)
    except Exception as e:
        logger.error(f"Error reading subscription for {user_id}: {e}")
        record = None

    if not record:
        return {"plan": "free", "status": "active", "subscription_id": None, "current_period_end": None}

    return {
        "plan": normalize_plan_name(record.get("plan")),
        "status": record.get("status") or "active",
        "subscription_id": record.get("subscription_id"),
        "current_period_end": record.get("current_period_end"),
    }


def _month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def get_monthly_usage(user_id: str, now: Optional[datetime] = None) -> dict:
    """Usage counters for the current calendar month, resetting stale ones"""
    now = now or datetime.now(timezone.utc)
    empty = {field: 0 for field in USAGE_FIELDS}

    db = get_firestore()
    if db is None or not user_id:
        return empty

    ref = db.collection(USAGE_COLLECTION).document(user_id)
    snapshot = ref.get()
    data = snapshot.to_dict() if snapshot.exists else None

    last_reset = parse_iso((data or {}).get("last_reset"))
    if data is None or last_reset is None or last_reset < _month_start(now):
        ref.set({**empty, "last_reset": now.isoformat()}, merge=True)
        return empty

    return {field: int(data.get(field) or 0) for field in USAGE_FIELDS}


def increment_usage(user_id: str, field: str, amount: int = 1):
    if field not in USAGE_FIELDS:
        raise ValueError(f"Unknown usage field: {field}")
    db = get_firestore()
    if db is None or not user_id:
        return
    db.collection(USAGE_COLLECTION).document(user_id).set(
        {field: firestore.Increment(amount), "updated_at": utc_now_iso()},
        merge=True,
    )
