"""
Momentum AI - Health checks (no authentication required)
Plain liveness checks for load balancers plus a diagnostic /api/health summary
"""
import os
import logging
from datetime import datetime, timezone

import psutil
from flask import Blueprint, jsonify

from ... import config
from ...security_config import limiter
from ..shared.firebase import is_firebase_initialized
from ..payments.payment_config import is_stripe_configured
from ..payments.idempotency_store import detect_store_type

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__)


@health_bp.get("/health")
@limiter.exempt
def health():
    """Default health check"""
    return jsonify(status="ok", healthy=True), 200


@health_bp.get("/healthz")
@limiter.exempt
def healthz():
    """Kubernetes-style health check"""
    return jsonify(status="ok"), 200


@health_bp.get("/readyz")
@limiter.exempt
def readyz():
    return jsonify(ready=True), 200


def _memory_usage():
    try:
        memory = psutil.Process().memory_info()
        return {
            "rss_mb": round(memory.rss / (1024 * 1024), 1),
            "vms_mb": round(memory.vms / (1024 * 1024), 1),
        }
    except psutil.Error as e:
        logger.warning(f"Could not read process memory: {e}")
        return {"rss_mb": None, "vms_mb": None}


@health_bp.get("/api/health")
@limiter.exempt
def api_health():
    """Configuration summary; reports what is configured, never secrets"""
    openai_configured = bool(os.getenv("OPENAI_API_KEY"))
    ollama_configured = bool(os.getenv("OLLAMA_URL") or os.getenv("OLLAMA_API_URL"))

    return jsonify({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": {
            "env": config.get_environment(),
            "vercel": config.is_vercel(),
            "vercelUrl": os.getenv("VERCEL_URL", "not set"),
            "region": os.getenv("VERCEL_REGION", "not set"),
        },
        "services": {
            "firebase": is_firebase_initialized(),
            "aiProvider": os.getenv("AI_PROVIDER", "not set"),
            "aiConfigured": openai_configured or ollama_configured,
            "providers": {
                "ollama": ollama_configured,
                "openai": openai_configured,
            },
            "stripe": is_stripe_configured(),
            "idempotencyStore": detect_store_type(),
        },
        "memory": _memory_usage(),
    })
