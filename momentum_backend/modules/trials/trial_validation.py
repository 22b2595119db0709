"""
Momentum AI - Trial validation and anti-abuse
Per-IP account-creation limits inside a fixed window, plus checks of the
user's subscription state before trials and gated features.
"""
import os
import math
import time
import logging
import threading
from datetime import datetime, timezone
from functools import wraps
from typing import Dict, Optional

import redis
from flask import request, jsonify, g

from ... import config
from ..payments.stripe_service import get_stripe_service, stripe_field
from ..payments.subscription_store import get_subscription_record, parse_iso

logger = logging.getLogger(__name__)

TRIAL_PERIOD_DAYS = 3
MAX_ACCOUNTS_PER_IP = 2
IP_TRACKING_WINDOW_SECONDS = 24 * 60 * 60
CLEANUP_INTERVAL_SECONDS = 60 * 60

IP_LIMIT_REASON = (
    "Too many accounts created from this IP address. "
    "Please contact support if you believe this is an error."
)
TRIAL_ENDED_REASON = "Trial period has ended for this account. Please upgrade to continue."


def get_client_ip(req=None) -> str:
    """First X-Forwarded-For hop, then X-Real-IP, then the socket address"""
    req = req or request
    forwarded = req.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = (req.headers.get("X-Real-IP") or "").strip()
    if real_ip:
        return real_ip
    return req.remote_addr or "unknown"


class IPTracker:
    """Counts account creations per IP; Redis when available, memory otherwise"""

    def __init__(self, redis_client=None,
                 max_accounts: int = MAX_ACCOUNTS_PER_IP,
                 window_seconds: int = IP_TRACKING_WINDOW_SECONDS,
                 clock=time.time):
        self.redis_client = redis_client
        self.max_accounts = max_accounts
        self.window_seconds = window_seconds
        self._clock = clock
        self._tracking: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def _track_memory(self, ip: str) -> bool:
        now = self._clock()
        with self._lock:
            tracking = self._tracking.get(ip)

            if tracking is None or now - tracking["first_attempt"] > self.window_seconds:
                self._tracking[ip] = {"count": 1, "first_attempt": now, "accounts": []}
                return True

            if tracking["count"] >= self.max_accounts:
                logger.warning(f"IP {ip} exceeded account creation limit: "
                               f"{tracking['count']}/{self.max_accounts}")
                return False

            tracking["count"] += 1
            return True

    def _track_redis(self, ip: str) -> bool:
        key = f"trial:ip:{ip}"
        count = self.redis_client.incr(key)
        if count == 1:
            self.redis_client.expire(key, self.window_seconds)
        if count > self.max_accounts:
            logger.warning(f"IP {ip} exceeded account creation limit (Redis): {count}/{self.max_accounts}")
            return False
        return True

    def track_account_creation(self, ip: str) -> bool:
        """Record an attempt; False when the IP is over its limit"""
        if self.redis_client is not None:
            try:
                return self._track_redis(ip)
            except redis.RedisError as e:
                logger.warning(f"Redis IP tracking failed; falling back to memory: {e}")
        return self._track_memory(ip)

    def add_account(self, ip: str, user_id: str):
        with self._lock:
            tracking = self._tracking.get(ip)
            if tracking is not None and user_id not in tracking["accounts"]:
                tracking["accounts"].append(user_id)

    def get(self, ip: str) -> Optional[dict]:
        with self._lock:
            tracking = self._tracking.get(ip)
            return dict(tracking, accounts=list(tracking["accounts"])) if tracking else None

    def cleanup_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [ip for ip, t in self._tracking.items()
                       if now - t["first_attempt"] > self.window_seconds]
            for ip in expired:
                del self._tracking[ip]
        return len(expired)


_tracker = None
_tracker_lock = threading.Lock()
_cleanup_timer = None


def _schedule_cleanup(tracker: IPTracker):
    global _cleanup_timer

    def _run():
        tracker.cleanup_expired()
        _schedule_cleanup(tracker)

    _cleanup_timer = threading.Timer(CLEANUP_INTERVAL_SECONDS, _run)
    _cleanup_timer.daemon = True
    _cleanup_timer.start()


def _connect_redis():
    url = config.get_redis_url()
    if not url:
        return None
    try:
        client = redis.from_url(url, password=os.environ.get("REDIS_PASSWORD") or None,
                                socket_connect_timeout=5, socket_timeout=5)
        client.ping()
        logger.info("✅ Trial/IP anti-abuse using Redis backend")
        return client
    except redis.RedisError as e:
        logger.warning(f"⚠️ Redis unavailable for trial/IP anti-abuse; using memory: {e}")
        return None


def get_ip_tracker() -> IPTracker:
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = IPTracker(redis_client=_connect_redis())
            _schedule_cleanup(_tracker)
        return _tracker


def reset_ip_tracker(tracker: Optional[IPTracker] = None):
    """Replace the process tracker (None rebuilds it lazily)"""
    global _tracker, _cleanup_timer
    with _tracker_lock:
        if _cleanup_timer is not None:
            _cleanup_timer.cancel()
            _cleanup_timer = None
        _tracker = tracker


def add_account_to_ip_tracking(ip: str, user_id: str):
    get_ip_tracker().add_account(ip, user_id)


def evaluate_subscription_record(record: Optional[dict], now: Optional[datetime] = None) -> Optional[dict]:
    """
    Verdict from a stored subscription record.

    Returns {is_valid, is_paid, days_remaining?, reason?}, or None when the
    record does not settle the question.
    """
    if not record:
        return None

    now = now or datetime.now(timezone.utc)
    status = str(record.get("status") or "").lower()
    period_end = parse_iso(record.get("current_period_end"))

    if status == "active":
        return {"is_valid": True, "is_paid": True}
    if status == "trialing" and period_end and period_end > now:
        days = math.ceil((period_end - now).total_seconds() / 86400)
        return {"is_valid": True, "is_paid": False, "days_remaining": days}
    if status == "trialing" and period_end and period_end <= now:
        return {"is_valid": False, "is_paid": False, "reason": TRIAL_ENDED_REASON}
    if status:
        return {"is_valid": False, "is_paid": False, "reason": f"Subscription status: {status}"}
    return None


def check_trial_eligibility(email: Optional[str], ip: str, user_id: Optional[str] = None) -> dict:
    """Can this user start a trial from this IP? Fails open on errors."""
    try:
        if not get_ip_tracker().track_account_creation(ip):
            return {"allowed": False, "reason": IP_LIMIT_REASON}

        if user_id:
            try:
                record = get_subscription_record(user_id)
            except Exception as e:
                logger.warning(f"Failed to read subscription state during trial check: {e}")
                record = None

            if record:
                status = str(record.get("status") or "").lower()
                period_end = parse_iso(record.get("current_period_end"))
                trial_over = (status == "trialing" and period_end is not None
                              and period_end <= datetime.now(timezone.utc))
                if status == "canceled" or trial_over:
                    return {"allowed": False, "reason": TRIAL_ENDED_REASON}

        return {"allowed": True}

    except Exception as e:
        logger.error(f"Error checking trial eligibility for {email}: {e}")
        return {"allowed": True}


def validate_trial_period(subscription, now: Optional[float] = None) -> dict:
    """Verdict from a Stripe subscription object"""
    if subscription is None:
        return {"is_valid": False, "is_paid": False, "reason": "No active subscription found"}

    status = stripe_field(subscription, "status")
    if status == "trialing":
        trial_end = stripe_field(subscription, "trial_end")
        if trial_end:
            now = now if now is not None else time.time()
            days_remaining = math.ceil((trial_end - now) / 86400)
            if days_remaining > 0:
                return {"is_valid": True, "is_paid": False, "days_remaining": days_remaining}
            return {"is_valid": False, "is_paid": False, "reason": "Trial period has expired"}

    if status == "active":
        return {"is_valid": True, "is_paid": True}

    return {"is_valid": False, "is_paid": False, "reason": f"Subscription status: {status}"}


def _resolve_trial_status(user_id: str) -> Optional[dict]:
    """Firestore fast path, then Stripe; None means allow without a verdict"""
    validation = None
    try:
        validation = evaluate_subscription_record(get_subscription_record(user_id))
    except Exception as e:
        logger.warning(f"Firestore subscription read failed, falling back to Stripe: {e}")

    if validation and validation["is_valid"]:
        return validation

    stripe_service = get_stripe_service()
    if not stripe_service.is_configured():
        logger.warning("Stripe not available for trial validation - allowing access")
        return None

    return validate_trial_period(stripe_service.find_user_subscription(user_id))


def requires_valid_trial(f):
    """Block users whose trial has ended; stack after requires_firebase_auth"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "user", None)
        if not user or not user.get("uid"):
            return f(*args, **kwargs)

        try:
            validation = _resolve_trial_status(user["uid"])
        except Exception as e:
            logger.error(f"Error in trial validation: {e}")
            validation = None

        if validation is not None:
            if not validation["is_valid"] and not validation["is_paid"]:
                return jsonify({
                    "error": "Trial expired",
                    "message": validation.get("reason") or "Your trial period has expired. Please upgrade to continue.",
                    "requiresUpgrade": True,
                }), 403

            g.trial_info = {
                "is_valid": validation["is_valid"],
                "days_remaining": validation.get("days_remaining"),
                "is_paid": validation.get("is_paid", False),
            }

        return f(*args, **kwargs)
    return decorated_function
