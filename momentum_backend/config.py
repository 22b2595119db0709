"""
Momentum AI - Environment Configuration
All settings are read from the process environment at call time so tests
can patch os.environ without reloading modules.
"""
import os
import logging
from typing import List

logger = logging.getLogger(__name__)

DEFAULT_FRONTEND_URL = "http://localhost:5173"
DEV_ORIGINS = ["http://localhost:5173", "http://localhost:3000"]


def get_environment() -> str:
    return os.environ.get("ENVIRONMENT") or os.environ.get("FLASK_ENV") or "development"


def is_production() -> bool:
    return get_environment() == "production"


def is_vercel() -> bool:
    return bool(os.environ.get("VERCEL"))


def is_free_ai_mode() -> bool:
    """AI routes are public (rate limited) unless FREE_AI_MODE is explicitly false"""
    return os.environ.get("FREE_AI_MODE", "true").strip().lower() != "false"


def get_frontend_origins() -> List[str]:
    raw = os.environ.get("FRONTEND_URL", "")
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


def get_frontend_url() -> str:
    """First configured frontend origin, used for redirect URLs"""
    origins = get_frontend_origins()
    return origins[0] if origins else DEFAULT_FRONTEND_URL


def get_allowed_origins() -> List[str]:
    origins = get_frontend_origins()
    if not origins and not is_production():
        origins = list(DEV_ORIGINS)
    if is_production() and any("*" in origin for origin in origins):
        logger.warning("⚠️ Wildcard CORS origin configured in production: %s", origins)
    return origins


def get_redis_url():
    return os.environ.get("REDIS_URL") or None


def get_secret_key() -> str:
    secret_key = os.environ.get("FLASK_SECRET_KEY") or os.environ.get("SECRET_KEY")
    if not secret_key:
        if is_production():
            logger.error("❌ FLASK_SECRET_KEY not set in production")
        secret_key = "dev-only-change-me-in-production"
    return secret_key
