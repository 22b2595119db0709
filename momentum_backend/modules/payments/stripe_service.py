"""
Momentum AI - Stripe Payment Service
Checkout-session construction, webhook verification and subscription lookups
"""
import json
import logging
import threading
from typing import Iterable, Optional

import stripe

from .payment_config import (
    get_stripe_config,
    get_price_id,
    get_product_id,
    billing_interval,
    get_success_url,
    get_cancel_url,
    get_marketplace_success_url,
    get_marketplace_cancel_url,
    FREE_TRIAL_DAYS,
    PLAN_NAMES,
)

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    """Raised when a webhook payload cannot be verified"""


def stripe_field(obj, key, default=None):
    """Read a field from a StripeObject or a plain dict"""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        value = getattr(obj, key, default)
    return default if value is None else value


def first_price(subscription):
    """First line item price of a subscription, or None"""
    items = stripe_field(stripe_field(subscription, "items"), "data") or []
    if not items:
        return None
    return stripe_field(items[0], "price")


class StripeService:
    """Handles Stripe payment processing"""

    def __init__(self, api_key: Optional[str] = None):
        self.config = get_stripe_config()
        self.api_key = api_key or self.config['secret_key']
        self._free_lock = threading.Lock()
        self._free_product_id = None
        self._free_price_id = None
        if self.api_key:
            stripe.api_key = self.api_key
            self.stripe = stripe
        else:
            self.stripe = None

    def is_configured(self) -> bool:
        """Check if Stripe is properly configured"""
        return self.stripe is not None

    @property
    def webhook_secret(self) -> Optional[str]:
        return get_stripe_config()['webhook_secret']

    def _subscription_session_args(self, email: str) -> dict:
        return {
            "payment_method_types": ["card"],
            "mode": "subscription",
            "payment_method_collection": "always",
            "success_url": get_success_url(),
            "cancel_url": get_cancel_url(),
            "customer_email": email,
        }

    def get_free_product_and_price(self) -> dict:
        """Find or create the $0 monthly Free Momentum price; cached per process"""
        with self._free_lock:
            if self._free_product_id and self._free_price_id:
                return {"product_id": self._free_product_id, "price_id": self._free_price_id}

            free_name = PLAN_NAMES["free"]
            products = self.stripe.Product.list(limit=100, active=True)
            free_product = next(
                (
                    p for p in stripe_field(products, "data", [])
                    if stripe_field(p, "name") == free_name
                    or stripe_field(stripe_field(p, "metadata", {}), "plan") == "free"
                ),
                None,
            )
            if free_product is None:
                free_product = self.stripe.Product.create(
                    name=free_name,
                    description="Free plan with limited features",
                    metadata={"plan": "free"},
                )
                logger.info(f"Created Stripe product for free plan: {stripe_field(free_product, 'id')}")

            prices = self.stripe.Price.list(product=stripe_field(free_product, "id"), active=True, limit=100)
            free_price = next(
                (
                    p for p in stripe_field(prices, "data", [])
                    if stripe_field(p, "unit_amount") == 0
                    and stripe_field(stripe_field(p, "recurring"), "interval") == "month"
                ),
                None,
            )
            if free_price is None:
                free_price = self.stripe.Price.create(
                    product=stripe_field(free_product, "id"),
                    unit_amount=0,
                    currency="usd",
                    recurring={"interval": "month"},
                    metadata={"plan": "free"},
                )
                logger.info(f"Created $0 monthly price for free plan: {stripe_field(free_price, 'id')}")

            self._free_product_id = stripe_field(free_product, "id")
            self._free_price_id = stripe_field(free_price, "id")
            return {"product_id": self._free_product_id, "price_id": self._free_price_id}

    def create_subscription_checkout(
        self,
        plan: str,
        billing_cycle: str,
        email: str,
        user_id: str,
        selected_add_ons: Iterable[dict] = (),
        final_price: Optional[float] = None,
    ) -> dict:
        """Create Stripe checkout session for a subscription plan"""
        if not self.stripe:
            return {"success": False, "error": "Payment service unavailable. Please contact support."}

        try:
            args = self._subscription_session_args(email)

            if plan == "businessPlus" and final_price:
                add_ons = list(selected_add_ons or [])
                add_ons_total = sum(float(a.get("price") or 0) for a in add_ons if isinstance(a, dict))
                base_price = float(final_price) - add_ons_total
                interval, interval_count = billing_interval(billing_cycle)
                product_id = get_product_id(plan)

                args.update(
                    line_items=[{
                        "price_data": {
                            "currency": "usd",
                            "product": product_id,
                            "recurring": {"interval": interval, "interval_count": interval_count},
                            "unit_amount": int(round(float(final_price) * 100)),
                        },
                        "quantity": 1,
                    }],
                    automatic_tax={"enabled": True},
                    metadata={
                        "plan": plan,
                        "billing_cycle": billing_cycle,
                        "product_id": product_id,
                        "add_ons": json.dumps(add_ons),
                        "base_price": str(base_price),
                        "add_ons_total": str(add_ons_total),
                        "final_price": str(final_price),
                        "user_id": user_id,
                    },
                )

            elif plan == "free":
                free = self.get_free_product_and_price()
                args.update(
                    line_items=[{"price": free["price_id"], "quantity": 1}],
                    subscription_data={
                        "trial_period_days": FREE_TRIAL_DAYS,
                        "trial_settings": {"end_behavior": {"missing_payment_method": "cancel"}},
                    },
                    metadata={"plan": "free", "billing_cycle": billing_cycle, "user_id": user_id},
                )

            else:
                price_id = get_price_id(plan, billing_cycle)
                if not price_id:
                    return {
                        "success": False,
                        "error": "The selected plan and billing cycle combination is not available.",
                    }
                args.update(
                    line_items=[{"price": price_id, "quantity": 1}],
                    automatic_tax={"enabled": True},
                    metadata={
                        "plan": plan,
                        "billing_cycle": billing_cycle,
                        "product_id": get_product_id(plan) or "",
                        "user_id": user_id,
                    },
                )

            checkout_session = self.stripe.checkout.Session.create(**args)

            logger.info(f"Stripe subscription checkout created for user {user_id}: {plan} ({billing_cycle})")

            return {
                "success": True,
                "session_id": stripe_field(checkout_session, "id"),
                "checkout_url": stripe_field(checkout_session, "url"),
            }

        except (stripe.StripeError, ValueError, OverflowError) as e:
            logger.error(f"Stripe subscription checkout error: {e}")
            return {
                "success": False,
                "error": "Failed to create checkout session. Please try again."
            }

    def create_marketplace_checkout(self, item_id: str, item_name: str, price: float, email: str) -> dict:
        """Create a one-time payment session for a marketplace item"""
        if not self.stripe:
            return {"success": False, "error": "Payment service unavailable. Please contact support."}

        try:
            checkout_session = self.stripe.checkout.Session.create(
                payment_method_types=["card"],
                line_items=[{
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": item_name,
                            "description": "Marketplace item purchase",
                        },
                        "unit_amount": int(round(float(price) * 100)),
                    },
                    "quantity": 1,
                }],
                mode="payment",
                automatic_tax={"enabled": True},
                success_url=get_marketplace_success_url(item_id),
                cancel_url=get_marketplace_cancel_url(),
                customer_email=email,
                metadata={
                    "type": "marketplace_purchase",
                    "itemId": item_id,
                    "itemName": item_name,
                },
            )

            logger.info(f"Marketplace checkout created for item {item_id}")
            return {"success": True, "session_id": stripe_field(checkout_session, "id")}

        except (stripe.StripeError, ValueError, OverflowError) as e:
            logger.error(f"Stripe marketplace checkout error: {e}")
            return {
                "success": False,
                "error": "Failed to create checkout session. Please try again."
            }

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verify a webhook payload against the endpoint secret"""
        secret = self.webhook_secret
        if not secret:
            raise WebhookSignatureError("Webhook secret not configured")
        if not signature:
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            return self.stripe.Webhook.construct_event(payload, signature, secret)
        except (stripe.SignatureVerificationError, ValueError) as e:
            raise WebhookSignatureError(str(e)) from e

    def retrieve_subscription(self, subscription_id: str):
        if not self.stripe or not subscription_id:
            return None
        return self.stripe.Subscription.retrieve(subscription_id)

    def find_user_subscription(self, user_id: str):
        """Most recent subscription of the customer tagged with this user id"""
        if not self.stripe:
            logger.error("Stripe not initialized")
            return None

        try:
            customers = self.stripe.Customer.list(limit=100)
            customer = next(
                (
                    c for c in stripe_field(customers, "data", [])
                    if user_id in (
                        stripe_field(stripe_field(c, "metadata", {}), "user_id"),
                        stripe_field(stripe_field(c, "metadata", {}), "userId"),
                    )
                ),
                None,
            )
            if customer is None:
                return None

            subscriptions = self.stripe.Subscription.list(
                customer=stripe_field(customer, "id"), status="all", limit=10
            )
            data = stripe_field(subscriptions, "data", [])
            return data[0] if data else None

        except stripe.StripeError as e:
            logger.error(f"Error getting Stripe subscription for user {user_id}: {e}")
            return None


_service = None
_service_lock = threading.Lock()


def get_stripe_service() -> StripeService:
    """Process-wide StripeService"""
    global _service
    with _service_lock:
        if _service is None:
            _service = StripeService()
            if _service.is_configured():
                logger.info("✅ Stripe initialized")
            else:
                logger.warning("⚠️ STRIPE_SECRET_KEY not set - payment routes disabled")
        return _service


def reset_stripe_service():
    global _service
    with _service_lock:
        _service = None
