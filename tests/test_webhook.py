# tests/test_webhook.py
"""
Stripe webhook endpoint and event handlers
"""
import json
import pytest
import stripe
from unittest.mock import patch, MagicMock

from momentum_backend.modules.payments.webhook_handlers import (
    handle_event,
    handle_checkout_completed,
    handle_payment_succeeded,
)

WEBHOOK_URL = "/api/webhook"
SIGNATURE = {"Stripe-Signature": "t=1,v1=deadbeef"}


def _event(event_id="evt_1", event_type="customer.subscription.deleted", obj=None):
    return {
        "id": event_id,
        "type": event_type,
        "data": {"object": obj if obj is not None else {
            "id": "sub_1",
            "customer": "cus_1",
            "canceled_at": 1700000000,
            "metadata": {"userId": "user_123"},
        }},
    }


@pytest.fixture
def verified():
    """Signature checks pass"""
    with patch("stripe.Webhook.construct_event", return_value={}) as construct:
        yield construct


@pytest.fixture
def saved():
    with patch("momentum_backend.modules.payments.webhook_handlers.save_subscription_state",
               return_value=True) as save:
        yield save


def _post(client, event, headers=SIGNATURE):
    return client.post(WEBHOOK_URL, data=json.dumps(event), headers=headers,
                       content_type="application/json")


def test_webhook_unavailable_without_stripe(client):
    response = _post(client, _event())
    assert response.status_code == 503
    assert response.get_json() == {"error": "Stripe service unavailable"}


def test_webhook_requires_secret(client, stripe_env, monkeypatch):
    monkeypatch.delenv("STRIPE_WEBHOOK_SECRET")
    response = _post(client, _event())
    assert response.status_code == 500
    assert response.get_json() == {"error": "Webhook configuration error"}


def test_webhook_rejects_bad_signature(client, stripe_env, saved):
    with patch("stripe.Webhook.construct_event",
               side_effect=stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")):
        response = _post(client, _event())

    assert response.status_code == 400
    assert response.get_json() == {"error": "Webhook signature verification failed"}
    saved.assert_not_called()


def test_webhook_rejects_missing_signature_header(client, stripe_env, verified, saved):
    response = _post(client, _event(), headers={})
    assert response.status_code == 400
    verified.assert_not_called()


def test_webhook_passes_raw_body_to_verification(client, stripe_env, verified, saved):
    event = _event()
    _post(client, event)

    payload, signature, secret = verified.call_args.args
    assert json.loads(payload) == event
    assert signature == SIGNATURE["Stripe-Signature"]
    assert secret == "whsec_test"


def test_webhook_handles_event_once(client, stripe_env, verified, saved):
    first = _post(client, _event())
    assert first.status_code == 200
    assert first.get_json() == {"received": True, "eventId": "evt_1"}

    second = _post(client, _event())
    assert second.status_code == 200
    assert second.get_json() == {"received": True, "message": "Event already processed"}

    saved.assert_called_once()
    user_id, data = saved.call_args.args
    assert user_id == "user_123"
    assert data["status"] == "canceled"
    assert data["canceled_at"] == "2023-11-14T22:13:20+00:00"


def test_webhook_handler_failure_returns_500_and_stays_marked(client, stripe_env, verified):
    with patch("momentum_backend.modules.payments.routes.handle_event", side_effect=RuntimeError("boom")):
        response = _post(client, _event(event_id="evt_fail"))

    assert response.status_code == 500
    assert response.get_json() == {"error": "Error processing webhook event"}

    retry = _post(client, _event(event_id="evt_fail"))
    assert retry.get_json()["message"] == "Event already processed"


def test_webhook_acknowledges_unhandled_types(client, stripe_env, verified, saved):
    response = _post(client, _event(event_type="charge.refunded", obj={"id": "ch_1"}))
    assert response.status_code == 200
    saved.assert_not_called()


def test_webhook_persistence_failure_is_logged_not_raised(client, stripe_env, verified):
    with patch("momentum_backend.modules.payments.webhook_handlers.save_subscription_state",
               side_effect=RuntimeError("firestore down")):
        response = _post(client, _event(event_id="evt_persist"))
    assert response.status_code == 200


def _subscription(**overrides):
    sub = {
        "id": "sub_1",
        "status": "trialing",
        "current_period_end": 1700000000,
        "canceled_at": None,
        "items": {"data": [{"price": {"id": "price_pro_monthly", "nickname": "Pro Monthly"}}]},
    }
    sub.update(overrides)
    return sub


def test_checkout_completed_overlays_subscription(saved):
    service = MagicMock()
    service.retrieve_subscription.return_value = _subscription()

    handle_checkout_completed({
        "id": "cs_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"plan": "pro", "user_id": "user_123"},
    }, service)

    service.retrieve_subscription.assert_called_once_with("sub_1")
    user_id, data = saved.call_args.args
    assert user_id == "user_123"
    assert data["status"] == "trialing"
    assert data["plan"] == "price_pro_monthly"
    assert data["subscription_id"] == "sub_1"
    assert data["session_id"] == "cs_1"
    assert data["current_period_end"] == "2023-11-14T22:13:20+00:00"
    assert data["canceled_at"] is None


def test_checkout_completed_uses_client_reference_id(saved):
    handle_checkout_completed({"id": "cs_2", "client_reference_id": "user_ref", "metadata": {}}, MagicMock())
    user_id, data = saved.call_args.args
    assert user_id == "user_ref"
    assert data["status"] == "completed"


def test_checkout_completed_survives_retrieval_failure(saved):
    service = MagicMock()
    service.retrieve_subscription.side_effect = stripe.StripeError("rate limited")

    handle_checkout_completed({
        "id": "cs_3",
        "subscription": "sub_1",
        "metadata": {"plan": "business", "userId": "user_123"},
    }, service)

    _, data = saved.call_args.args
    assert data["status"] == "completed"
    assert data["plan"] == "business"


def test_payment_succeeded_marks_active(saved):
    service = MagicMock()
    service.retrieve_subscription.return_value = _subscription(status="active")

    handle_payment_succeeded({
        "id": "in_1",
        "customer": "cus_1",
        "subscription": "sub_1",
        "metadata": {"userId": "user_123"},
    }, service)

    _, data = saved.call_args.args
    assert data["status"] == "active"
    assert data["subscription_id"] == "sub_1"
    assert data["plan"] == "price_pro_monthly"


def test_events_without_user_are_skipped(saved):
    assert handle_event(_event(event_type="customer.subscription.updated", obj={"id": "sub_9"}), MagicMock())
    saved.assert_not_called()


def test_subscription_updated_persists_state(saved):
    handle_event(_event(event_type="customer.subscription.updated", obj=_subscription(
        status="past_due", customer="cus_1", metadata={"userId": "user_123"},
    )), MagicMock())

    _, data = saved.call_args.args
    assert data["status"] == "past_due"
    assert data["customer"] == "cus_1"


def test_unknown_event_type_is_ignored():
    assert handle_event({"id": "evt_x", "type": "payout.paid", "data": {"object": {}}}, MagicMock()) is False
