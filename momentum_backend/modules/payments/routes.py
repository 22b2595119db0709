"""
Momentum AI - Payment Routes
Checkout sessions, Stripe webhooks and subscription status
"""
import json
import math
import logging

from flask import Blueprint, request, jsonify, g

from ...security_config import limiter, limit_body, json_body, WEBHOOK_LIMIT
from ..auth.firebase_auth import AuthError, verify_bearer_token, user_from_token, requires_firebase_auth
from ..trials.trial_validation import get_client_ip, check_trial_eligibility, add_account_to_ip_tracking
from .payment_config import validate_plan_request, get_plan_limits
from .stripe_service import get_stripe_service, WebhookSignatureError
from .idempotency_store import get_idempotency_store
from .subscription_store import get_user_subscription, get_monthly_usage
from .webhook_handlers import handle_event

logger = logging.getLogger(__name__)

# Create blueprint for payment routes
payments_bp = Blueprint('payments', __name__)

_CHECKOUT_AUTH_ERRORS = {
    "expired": ("Session expired", "Please sign in again to continue"),
    "revoked": ("Session revoked", "Please sign in again to continue"),
    "missing": ("Authentication required", "Please sign in to continue with your subscription"),
    "unavailable": ("Authentication service unavailable", "Please try again later"),
}


def _finite_number(value):
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _valid_add_on(add_on) -> bool:
    if not isinstance(add_on, dict):
        return False
    price = add_on.get("price")
    return price is None or _finite_number(price) is not None


@payments_bp.route("/api/webhook", methods=["POST"])
@limiter.limit(WEBHOOK_LIMIT)
def stripe_webhook():
    """Verify, de-duplicate and handle a Stripe event"""
    stripe_service = get_stripe_service()
    if not stripe_service.is_configured():
        logger.error("Stripe not initialized. Cannot process webhook.")
        return jsonify({"error": "Stripe service unavailable"}), 503

    if not stripe_service.webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        return jsonify({"error": "Webhook configuration error"}), 500

    payload = request.get_data()
    try:
        stripe_service.construct_event(payload, request.headers.get("Stripe-Signature"))
        event = json.loads(payload)
    except (WebhookSignatureError, ValueError) as e:
        logger.error(f"Webhook signature verification failed from {request.remote_addr}: {e}")
        return jsonify({"error": "Webhook signature verification failed"}), 400

    event_id = event.get("id")
    event_type = event.get("type")

    store = get_idempotency_store()
    if store.is_processed(event_id):
        logger.info(f"Webhook event already processed, skipping: {event_id} ({event_type})")
        return jsonify({"received": True, "message": "Event already processed"}), 200

    # Marked before handling; a failed handler is not retried within the TTL
    store.mark_processed(event_id, event_type)

    try:
        handle_event(event, stripe_service)
    except Exception as e:
        logger.exception(f"Error processing webhook event {event_id} ({event_type}): {e}")
        return jsonify({"error": "Error processing webhook event"}), 500

    return jsonify({"received": True, "eventId": event_id}), 200


@payments_bp.route("/api/create-checkout-session", methods=["POST"])
@limit_body()
def create_checkout_session():
    """Create Stripe checkout session for plan subscription"""
    stripe_service = get_stripe_service()
    if not stripe_service.is_configured():
        logger.error("Stripe not initialized. Cannot create checkout session.")
        return jsonify({"error": "Payment service unavailable. Please contact support."}), 503

    data = json_body()
    plan = data.get("plan")
    billing_cycle = data.get("billingCycle")
    customer_email = data.get("customerEmail")
    selected_add_ons = data.get("selectedAddOns") or []
    final_price = data.get("finalPrice")

    try:
        decoded = verify_bearer_token(request.headers.get("Authorization"))
    except AuthError as e:
        logger.warning(f"Authentication error in checkout: {e.reason}")
        error, message = _CHECKOUT_AUTH_ERRORS.get(
            e.reason, ("Authentication failed", "Please sign in to continue with your subscription")
        )
        return jsonify({"error": error, "message": message}), e.status_code

    user = user_from_token(decoded)
    g.user = user

    email = customer_email or user["email"]
    if not email:
        return jsonify({
            "error": "Email required",
            "message": "Email address is required for checkout"
        }), 400

    if not isinstance(selected_add_ons, list) or not all(_valid_add_on(a) for a in selected_add_ons):
        return jsonify({
            "error": "Invalid request data",
            "message": "selectedAddOns must be a list of add-ons with numeric prices",
        }), 400

    if final_price is not None:
        final_price = _finite_number(final_price)
        if final_price is None:
            return jsonify({"error": "Invalid request data", "message": "finalPrice must be a number"}), 400
        if final_price <= 0:
            final_price = None

    client_ip = get_client_ip()
    eligibility = check_trial_eligibility(user["email"], client_ip, user["uid"])
    if not eligibility["allowed"]:
        logger.warning(f"Trial eligibility check failed for user {user['uid']}: {eligibility.get('reason')}")
        return jsonify({
            "error": "Trial not available",
            "message": eligibility.get("reason") or "You are not eligible for a trial. Please contact support.",
        }), 403

    custom_price = plan == "businessPlus" and bool(final_price)
    is_valid, error_msg = validate_plan_request(plan, billing_cycle, custom_price=custom_price)
    if not is_valid:
        return jsonify({"error": "Invalid plan or billing cycle", "message": error_msg}), 400

    result = stripe_service.create_subscription_checkout(
        plan,
        billing_cycle,
        email,
        user["uid"],
        selected_add_ons=selected_add_ons,
        final_price=final_price if custom_price else None,
    )

    if not result["success"]:
        logger.error(f"Checkout session creation failed for {user['uid']}: {result['error']}")
        return jsonify({"error": "Failed to create checkout session. Please try again."}), 500

    add_account_to_ip_tracking(client_ip, user["uid"])
    return jsonify({"sessionId": result["session_id"]})


@payments_bp.route("/api/marketplace/checkout", methods=["POST"])
@limit_body()
def marketplace_checkout():
    """One-time payment for a marketplace item"""
    stripe_service = get_stripe_service()
    if not stripe_service.is_configured():
        return jsonify({"error": "Payment service unavailable. Please contact support."}), 503

    try:
        verify_bearer_token(request.headers.get("Authorization"))
    except AuthError as e:
        logger.warning(f"Token verification failed for marketplace checkout: {e.reason}")
        return jsonify({"error": "Unauthorized"}), 401

    data = json_body()
    item_id = data.get("itemId")
    item_name = data.get("itemName")
    price = data.get("price")
    customer_email = data.get("customerEmail")

    if not item_id or not item_name or not price or not customer_email:
        return jsonify({
            "error": "Missing required fields",
            "message": "itemId, itemName, price, and customerEmail are required"
        }), 400

    price = _finite_number(price) or 0
    if price <= 0:
        return jsonify({"error": "Invalid price", "message": "price must be a positive number"}), 400

    result = stripe_service.create_marketplace_checkout(str(item_id), str(item_name), price, customer_email)
    if not result["success"]:
        return jsonify({"error": "Failed to create checkout session. Please try again."}), 500

    return jsonify({"sessionId": result["session_id"]})


@payments_bp.route("/api/subscription", methods=["GET"])
@requires_firebase_auth
def subscription_status():
    """Current plan, monthly usage and plan limits for the signed-in user"""
    uid = g.user["uid"]
    subscription = get_user_subscription(uid)
    try:
        usage = get_monthly_usage(uid)
    except Exception as e:
        logger.error(f"Error reading usage for {uid}: {e}")
        usage = {}

    return jsonify({
        "subscription": subscription,
        "usage": usage,
        "limits": get_plan_limits(subscription["plan"]),
    })
