# tests/conftest.py
"""
Shared fixtures: a fresh app per test, a clean environment and patched
Firebase token verification.
"""
import os
import pytest
from unittest.mock import patch

from momentum_backend.app import create_app
from momentum_backend.modules.payments.stripe_service import reset_stripe_service
from momentum_backend.modules.payments.idempotency_store import reset_idempotency_store
from momentum_backend.modules.trials.trial_validation import reset_ip_tracker, IPTracker
from momentum_backend.modules.ai.ai_service import reset_ai_service
from momentum_backend.modules.images.image_service import reset_image_service

MANAGED_PREFIXES = (
    "STRIPE_",
    "FIREBASE_",
    "SMTP_",
    "OLLAMA_",
    "OPENAI_",
    "VERCEL",
)

MANAGED_VARS = (
    "ENVIRONMENT",
    "FLASK_ENV",
    "FRONTEND_URL",
    "REDIS_URL",
    "REDIS_PASSWORD",
    "AI_PROVIDER",
    "AI_DEFAULT_MODEL",
    "IMAGE_PROVIDER",
    "STABILITY_API_KEY",
    "FREE_AI_MODE",
    "CONTACT_EMAIL",
)

TEST_USER = {
    "uid": "user_123",
    "email": "user@example.com",
    "email_verified": True,
}

AUTH_HEADERS = {"Authorization": "Bearer test-id-token"}


def _reset_singletons():
    reset_stripe_service()
    reset_idempotency_store()
    reset_ai_service()
    reset_image_service()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Every test starts with no provider credentials configured"""
    for name in list(os.environ):
        if name.startswith(MANAGED_PREFIXES) or name in MANAGED_VARS:
            monkeypatch.delenv(name, raising=False)

    _reset_singletons()
    reset_ip_tracker(IPTracker())
    yield
    _reset_singletons()
    reset_ip_tracker()


@pytest.fixture
def app():
    app = create_app({"TESTING": True, "RATELIMIT_ENABLED": False})
    return app


@pytest.fixture
def client(app):
    """Create test client"""
    return app.test_client()


@pytest.fixture
def firebase_user():
    """Accept any bearer token as TEST_USER"""
    with patch("momentum_backend.modules.auth.firebase_auth.is_firebase_initialized", return_value=True), \
         patch("momentum_backend.modules.auth.firebase_auth.auth.verify_id_token",
               return_value=dict(TEST_USER)) as verify:
        yield verify


@pytest.fixture
def stripe_env(monkeypatch):
    """Stripe credentials and a price table"""
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setenv("STRIPE_MONTHLY_PRO_PRICE_ID", "price_pro_monthly")
    monkeypatch.setenv("STRIPE_6MONTH_PRO_PRICE_ID", "price_pro_6month")
    monkeypatch.setenv("STRIPE_MONTHLY_BUSINESS_PRICE_ID", "price_business_monthly")
    monkeypatch.setenv("STRIPE_YEARLY_BUSINESS_PRICE_ID", "price_business_yearly")
    monkeypatch.setenv("STRIPE_MONTHLY_BUSINESS_PLUS_PRICE_ID", "price_bplus_monthly")
    reset_stripe_service()
    yield
    reset_stripe_service()
