"""
Momentum AI - Payments Module
Stripe checkout, webhooks and subscription state
"""

from .payment_config import (
    VALID_PLANS,
    VALID_BILLING_CYCLES,
    PLAN_LIMITS,
    get_stripe_config,
    is_stripe_configured,
    get_price_ids,
    get_price_id,
    validate_plan_request,
    normalize_plan_name,
)
from .stripe_service import StripeService, get_stripe_service
from .idempotency_store import get_idempotency_store, create_idempotency_store

__all__ = [
    'VALID_PLANS',
    'VALID_BILLING_CYCLES',
    'PLAN_LIMITS',
    'get_stripe_config',
    'is_stripe_configured',
    'get_price_ids',
    'get_price_id',
    'validate_plan_request',
    'normalize_plan_name',
    'StripeService',
    'get_stripe_service',
    'get_idempotency_store',
    'create_idempotency_store'
]
