"""
Momentum AI - Stripe webhook event handlers
Each handler persists the resulting subscription state for the user named
in the object's metadata.
"""
import logging
from typing import Optional

import stripe

from .stripe_service import stripe_field, first_price
from .subscription_store import save_subscription_state, epoch_to_iso, utc_now_iso

logger = logging.getLogger(__name__)


def _user_id(obj: dict, allow_client_reference: bool = False) -> Optional[str]:
    metadata = obj.get("metadata") or {}
    user_id = metadata.get("userId") or metadata.get("user_id")
    if not user_id and allow_client_reference:
        user_id = obj.get("client_reference_id")
    return user_id


def _subscription_fields(subscription) -> dict:
    price = first_price(subscription)
    return {
        "status": stripe_field(subscription, "status"),
        "current_period_end": epoch_to_iso(stripe_field(subscription, "current_period_end")),
        "canceled_at": epoch_to_iso(stripe_field(subscription, "canceled_at")),
        "subscription_id": stripe_field(subscription, "id"),
        "plan_from_price": stripe_field(price, "id") or stripe_field(price, "nickname"),
    }


def _fetch_subscription(stripe_service, subscription_id: str, event_type: str):
    try:
        return stripe_service.retrieve_subscription(subscription_id)
    except stripe.StripeError as e:
        logger.warning(f"Unable to fetch subscription {subscription_id} for {event_type}: {e}")
        return None


def _persist(user_id: str, data: dict, event_type: str):
    try:
        save_subscription_state(user_id, data)
    except Exception as e:
        logger.error(f"Failed to persist subscription state on {event_type} for {user_id}: {e}")


def handle_checkout_completed(session: dict, stripe_service):
    logger.info(f"Checkout session completed: {session.get('id')} (amount={session.get('amount_total')})")

    user_id = _user_id(session, allow_client_reference=True)
    if not user_id:
        logger.warning("No userId metadata on checkout.session.completed; skipping subscription persistence")
        return

    data = {
        "status": "completed",
        "plan": (session.get("metadata") or {}).get("plan"),
        "customer": session.get("customer"),
        "session_id": session.get("id"),
    }

    subscription_id = session.get("subscription")
    if subscription_id:
        subscription = _fetch_subscription(stripe_service, subscription_id, "checkout.session.completed")
        if subscription is not None:
            fields = _subscription_fields(subscription)
            plan = fields.pop("plan_from_price") or data["plan"]
            data.update(fields, plan=plan)

    _persist(user_id, data, "checkout.session.completed")


def handle_payment_succeeded(invoice: dict, stripe_service):
    logger.info(f"Payment succeeded: invoice {invoice.get('id')} (amount={invoice.get('amount_paid')})")

    user_id = _user_id(invoice)
    if not user_id:
        logger.debug("No userId metadata on invoice.payment_succeeded; skipping")
        return

    subscription_id = invoice.get("subscription")
    data = {
        "status": "active",
        "customer": invoice.get("customer"),
        "subscription_id": subscription_id,
    }

    if subscription_id:
        subscription = _fetch_subscription(stripe_service, subscription_id, "invoice.payment_succeeded")
        if subscription is not None:
            fields = _subscription_fields(subscription)
            data["status"] = fields["status"] or data["status"]
            data["current_period_end"] = fields["current_period_end"]
            data["canceled_at"] = fields["canceled_at"]
            data["plan"] = fields["plan_from_price"]

    _persist(user_id, data, "invoice.payment_succeeded")


def handle_subscription_updated(subscription: dict, stripe_service=None):
    logger.info(f"Subscription updated: {subscription.get('id')} status={subscription.get('status')}")

    user_id = _user_id(subscription)
    if not user_id:
        logger.warning("No userId metadata on customer.subscription.updated; skipping subscription persistence")
        return

    fields = _subscription_fields(subscription)
    _persist(user_id, {
        "status": fields["status"],
        "plan": fields["plan_from_price"],
        "current_period_end": fields["current_period_end"],
        "canceled_at": fields["canceled_at"],
        "customer": subscription.get("customer"),
        "subscription_id": subscription.get("id"),
    }, "customer.subscription.updated")


def handle_subscription_deleted(subscription: dict, stripe_service=None):
    logger.info(f"Subscription deleted: {subscription.get('id')}")

    user_id = _user_id(subscription)
    if not user_id:
        logger.warning("No userId metadata on customer.subscription.deleted; skipping subscription persistence")
        return

    _persist(user_id, {
        "status": "canceled",
        "canceled_at": epoch_to_iso(subscription.get("canceled_at")) or utc_now_iso(),
        "subscription_id": subscription.get("id"),
        "customer": subscription.get("customer"),
    }, "customer.subscription.deleted")


EVENT_HANDLERS = {
    "checkout.session.completed": handle_checkout_completed,
    "invoice.payment_succeeded": handle_payment_succeeded,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
}


def handle_event(event: dict, stripe_service) -> bool:
    """Dispatch a verified event; returns False for ignored event types"""
    event_type = event.get("type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.debug(f"Unhandled webhook event type: {event_type} ({event.get('id')})")
        return False

    obj = (event.get("data") or {}).get("object") or {}
    handler(obj, stripe_service)
    return True
