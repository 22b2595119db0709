"""
Momentum AI - Payment Configuration
Static price table keyed by (billing cycle, plan), read from the environment
"""
import os
import logging
from typing import Optional, Tuple

from ... import config

logger = logging.getLogger(__name__)

VALID_PLANS = ["free", "pro", "business", "businessPlus"]
PAID_PLANS = ["pro", "business", "businessPlus"]
VALID_BILLING_CYCLES = ["monthly", "6months", "12months"]

FREE_TRIAL_DAYS = 3

# Marker stored in the table where a combination deliberately does not exist
NO_YEARLY_PRO = "NO_YEARLY_PLAN_EXISTS_FOR_PRO"

_CYCLE_ENV_PREFIX = {
    "monthly": "STRIPE_MONTHLY",
    "6months": "STRIPE_6MONTH",
    "12months": "STRIPE_YEARLY",
}

_PLAN_ENV_SUFFIX = {
    "pro": "PRO",
    "business": "BUSINESS",
    "businessPlus": "BUSINESS_PLUS",
}

_DEFAULT_PRODUCT_IDS = {
    "pro": "prod_momentum_pro",
    "business": "prod_momentum_business",
    "businessPlus": "prod_momentum_business_plus",
}

BILLING_INTERVALS = {
    "monthly": ("month", 1),
    "6months": ("month", 6),
    "12months": ("year", 1),
}

# images: monthly image generations, -1 = unlimited
PLAN_LIMITS = {
    "free": {"images": 10, "team_members": 1},
    "pro": {"images": 100, "team_members": 1},
    "business": {"images": 500, "team_members": 5},
    "businessPlus": {"images": -1, "team_members": -1},
}

PLAN_NAMES = {
    "free": "Free Momentum",
    "pro": "Momentum Pro",
    "business": "Momentum Business",
    "businessPlus": "Momentum Business Plus",
}


def get_stripe_config() -> dict:
    """Get Stripe configuration from environment"""
    return {
        'secret_key': os.environ.get('STRIPE_SECRET_KEY'),
        'publishable_key': os.environ.get('STRIPE_PUBLISHABLE_KEY'),
        'webhook_secret': os.environ.get('STRIPE_WEBHOOK_SECRET'),
    }


def is_stripe_configured() -> bool:
    return bool(get_stripe_config()['secret_key'])


def get_price_ids() -> dict:
    """{cycle: {plan: price_id or None}}"""
    table = {}
    for cycle, prefix in _CYCLE_ENV_PREFIX.items():
        table[cycle] = {
            plan: os.environ.get(f"{prefix}_{suffix}_PRICE_ID") or None
            for plan, suffix in _PLAN_ENV_SUFFIX.items()
        }
    if not table["12months"]["pro"]:
        table["12months"]["pro"] = NO_YEARLY_PRO
    return table


def get_price_id(plan: str, billing_cycle: str) -> Optional[str]:
    price_id = get_price_ids().get(billing_cycle, {}).get(plan)
    if not price_id or price_id == NO_YEARLY_PRO:
        return None
    return price_id


def get_product_id(plan: str) -> Optional[str]:
    suffix = _PLAN_ENV_SUFFIX.get(plan)
    if not suffix:
        return None
    return os.environ.get(f"STRIPE_{suffix}_PRODUCT_ID") or _DEFAULT_PRODUCT_IDS[plan]


def billing_interval(billing_cycle: str) -> Tuple[str, int]:
    return BILLING_INTERVALS.get(billing_cycle, ("month", 1))


def validate_plan_request(plan: str, billing_cycle: str, custom_price: bool = False) -> tuple:
    """Validate plan and billing parameters against the price table.

    custom_price skips the price-id lookup for Business Plus sessions that
    carry their own add-on pricing.
    """
    if plan not in VALID_PLANS:
        return False, f"Invalid plan. Must be one of: {', '.join(VALID_PLANS)}"

    if billing_cycle not in VALID_BILLING_CYCLES:
        return False, f"Invalid billing cycle. Must be one of: {', '.join(VALID_BILLING_CYCLES)}"

    if plan == "free" or (custom_price and plan == "businessPlus"):
        return True, "Valid"

    if plan == "pro" and billing_cycle == "12months" and get_price_id(plan, billing_cycle) is None:
        return False, "Yearly Pro plan is not available. Please choose monthly or 6-month billing."

    if get_price_id(plan, billing_cycle) is None:
        logger.error(f"Price ID not configured for {plan} ({billing_cycle})")
        return False, "The selected plan and billing cycle combination is not available."

    return True, "Valid"


def normalize_plan_name(raw: Optional[str]) -> str:
    """Map price ids, nicknames and casing variants onto a known plan"""
    if not raw:
        return "free"

    value = str(raw).strip()
    if value in VALID_PLANS:
        return value

    for cycle_prices in get_price_ids().values():
        for plan, price_id in cycle_prices.items():
            if price_id and price_id == value:
                return plan

    lowered = value.lower().replace("-", "").replace("_", "").replace(" ", "")
    if "businessplus" in lowered or "plus" in lowered:
        return "businessPlus"
    if "business" in lowered:
        return "business"
    if "pro" in lowered:
        return "pro"
    return "free"


def get_plan_limits(plan: str) -> dict:
    return dict(PLAN_LIMITS.get(normalize_plan_name(plan), PLAN_LIMITS["free"]))


def get_success_url() -> str:
    """Success URL for Stripe checkout"""
    return f"{config.get_frontend_url()}/dashboard?payment=success&session_id={{CHECKOUT_SESSION_ID}}"


def get_cancel_url() -> str:
    return f"{config.get_frontend_url()}/pricing?payment=cancelled"


def get_marketplace_success_url(item_id: str) -> str:
    return (
        f"{config.get_frontend_url()}/growth/marketplace"
        f"?payment=success&itemId={item_id}&session_id={{CHECKOUT_SESSION_ID}}"
    )


def get_marketplace_cancel_url() -> str:
    return f"{config.get_frontend_url()}/growth/marketplace?payment=cancelled"
