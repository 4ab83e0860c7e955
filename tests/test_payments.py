"""Stripe checkout, billing portal, Connect and webhook handling."""
from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest
import stripe
from sqlalchemy.exc import SQLAlchemyError

from beautybook import billing
from beautybook.extensions import db
from beautybook.models import Booking, Profile, ProviderProfile, Service
from beautybook.onboarding import evaluate_readiness


@pytest.fixture
def stripe_app(app):
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    app.config["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
    return app


def _webhook_stripe(mock_stripe, event=None, error=None):
    mock_stripe.SignatureVerificationError = stripe.SignatureVerificationError
    mock_stripe.StripeError = stripe.StripeError
    if error is not None:
        mock_stripe.Webhook.construct_event.side_effect = error
    else:
        mock_stripe.Webhook.construct_event.return_value = event
    return mock_stripe


def _post_event(client, mock_stripe, event):
    _webhook_stripe(mock_stripe, event)
    return client.post("/api/webhooks/stripe", data=b"{}", headers={"Stripe-Signature": "t=1,v1=abc"})


def _subscription(user_id, status="active", price_id="price_pro_fallback"):
    return {
        "id": "sub_123",
        "status": status,
        "metadata": {"user_id": user_id},
        "items": {"data": [{"price": {"id": price_id}}]},
        "current_period_end": 1900000000,
    }


# --- Webhook -----------------------------------------------------------------


def test_webhook_without_secret_is_acknowledged(client) -> None:
    response = client.post("/api/webhooks/stripe", data=b"{}")

    assert response.status_code == 200
    assert response.get_json() == {"received": True}


def test_webhook_invalid_payload(stripe_app, client) -> None:
    with patch("beautybook.routes_payments.stripe") as mock_stripe:
        _webhook_stripe(mock_stripe, error=ValueError("bad json"))
        response = client.post("/api/webhooks/stripe", data=b"nope")

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_payload"


def test_webhook_invalid_signature(stripe_app, client) -> None:
    with patch("beautybook.routes_payments.stripe") as mock_stripe:
        _webhook_stripe(mock_stripe, error=stripe.SignatureVerificationError("bad signature", "t=1,v1=abc"))
        response = client.post("/api/webhooks/stripe", data=b"{}")

    assert response.status_code == 400
    assert response.get_json()["error"] == "invalid_signature"


def test_checkout_completed_activates_subscription(stripe_app, client, make_provider) -> None:
    provider_id = make_provider(payments=False)
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": "cs_123",
            "customer": "cus_123",
            "subscription": "sub_123",
            "metadata": {"user_id": provider_id, "subscription_tier": "pro"},
        }},
    }

    with patch("beautybook.routes_payments.stripe") as route_stripe, \
            patch("beautybook.billing.stripe") as billing_stripe:
        billing_stripe.Subscription.retrieve.return_value = _subscription(provider_id)
        response = _post_event(client, route_stripe, event)

    assert response.status_code == 200
    assert response.get_json() == {"received": True, "handled": True}
    billing_stripe.Subscription.retrieve.assert_called_once_with("sub_123")
    with stripe_app.app_context():
        provider = db.session.get(ProviderProfile, provider_id)
        assert provider.subscription_status == "active"
        assert provider.subscription_price_id == "price_pro_fallback"
        assert provider.subscription_current_period_end is not None
        assert db.session.get(Profile, provider_id).stripe_customer_id == "cus_123"
        assert evaluate_readiness(provider_id).is_complete is True


@pytest.mark.parametrize("stripe_status, stored", [
    ("past_due", "past_due"),
    ("unpaid", "past_due"),
    ("trialing", "active"),
    ("incomplete", "inactive"),
    ("canceled", "canceled"),
])
def test_subscription_updates_map_status(stripe_app, client, make_provider, stripe_status, stored) -> None:
    provider_id = make_provider()
    event = {"type": "customer.subscription.updated", "data": {"object": _subscription(provider_id, stripe_status)}}

    with patch("beautybook.routes_payments.stripe") as route_stripe:
        response = _post_event(client, route_stripe, event)

    assert response.status_code == 200
    with stripe_app.app_context():
        assert db.session.get(ProviderProfile, provider_id).subscription_status == stored


def test_subscription_deleted_reopens_payments_step(stripe_app, client, make_provider) -> None:
    provider_id = make_provider()
    event = {"type": "customer.subscription.deleted", "data": {"object": _subscription(provider_id, "canceled")}}

    with patch("beautybook.routes_payments.stripe") as route_stripe:
        _post_event(client, route_stripe, event)

    with stripe_app.app_context():
        provider = db.session.get(ProviderProfile, provider_id)
        assert provider.subscription_status == "canceled"
        assert provider.subscription_price_id is None
        assert evaluate_readiness(provider_id).next_step.value == "payments"


def test_failed_invoice_resyncs_subscription(stripe_app, client, make_provider) -> None:
    provider_id = make_provider()
    event = {"type": "invoice.payment_failed", "data": {"object": {"id": "in_1", "subscription": "sub_123"}}}

    with patch("beautybook.routes_payments.stripe") as route_stripe, \
            patch("beautybook.billing.stripe") as billing_stripe:
        billing_stripe.Subscription.retrieve.return_value = _subscription(provider_id, "past_due")
        _post_event(client, route_stripe, event)

    with stripe_app.app_context():
        assert db.session.get(ProviderProfile, provider_id).subscription_status == "past_due"


def test_payment_intent_succeeded_confirms_booking(stripe_app, client, make_provider, make_user) -> None:
    provider_id = make_provider()
    client_id = make_user(role="client")
    with stripe_app.app_context():
        service = Service.query.filter_by(provider_id=provider_id).first()
        start = datetime(2030, 1, 7, 9, 0)
        booking = Booking(
            client_id=client_id,
            provider_id=provider_id,
            service_id=service.service_id,
            start_time=start,
            end_time=start + timedelta(minutes=60),
            timezone="UTC",
            total_price_cents=5000,
            platform_fee_cents=500,
        )
        db.session.add(booking)
        db.session.commit()
        booking_id = booking.booking_id

    event = {
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": "pi_123", "amount": 5000, "metadata": {"booking_id": str(booking_id)}}},
    }
    with patch("beautybook.routes_payments.stripe") as route_stripe:
        response = _post_event(client, route_stripe, event)

    assert response.status_code == 200
    with stripe_app.app_context():
        stored = db.session.get(Booking, booking_id)
        assert stored.payment_status == "paid"
        assert stored.status == "confirmed"
        assert stored.stripe_payment_intent_id == "pi_123"


def test_unhandled_event_type(stripe_app, client) -> None:
    with patch("beautybook.routes_payments.stripe") as route_stripe:
        response = _post_event(client, route_stripe, {"type": "charge.refunded", "data": {"object": {}}})

    assert response.status_code == 200
    assert response.get_json() == {"received": True, "handled": False}


def test_subscription_without_user_metadata_is_ignored(stripe_app, client, make_provider) -> None:
    provider_id = make_provider()
    subscription = _subscription(provider_id, "canceled")
    subscription["metadata"] = {}

    with patch("beautybook.routes_payments.stripe") as route_stripe:
        response = _post_event(client, route_stripe, {"type": "customer.subscription.updated", "data": {"object": subscription}})

    assert response.status_code == 200
    with stripe_app.app_context():
        assert db.session.get(ProviderProfile, provider_id).subscription_status == "active"


def test_database_failure_asks_stripe_to_retry(stripe_app, client) -> None:
    event = {"type": "customer.subscription.updated", "data": {"object": {}}}

    with patch("beautybook.routes_payments.stripe") as route_stripe, \
            patch("beautybook.routes_payments.billing.handle_event", side_effect=SQLAlchemyError("locked")):
        response = _post_event(client, route_stripe, event)

    assert response.status_code == 500


# --- Checkout / portal ---------------------------------------------------------


def test_checkout_endpoint(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_123")
        mock_stripe.checkout.Session.create.return_value = MagicMock(url="https://checkout.test/cs", id="cs_1")
        response = client.post("/api/stripe/checkout", json={"tier": "elite"}, headers=auth_headers(provider_id))

    assert response.status_code == 200
    assert response.get_json() == {"url": "https://checkout.test/cs", "session_id": "cs_1"}
    customer_kwargs = mock_stripe.Customer.create.call_args.kwargs
    assert customer_kwargs["metadata"]["user_id"] == provider_id
    assert customer_kwargs["metadata"]["created_via"] == "checkout"


def test_checkout_reuses_existing_customer(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()
    with stripe_app.app_context():
        db.session.get(Profile, provider_id).stripe_customer_id = "cus_existing"
        db.session.commit()

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.checkout.Session.create.return_value = MagicMock(url="https://checkout.test/cs", id="cs_1")
        client.post("/api/stripe/checkout", json={"tier": "starter"}, headers=auth_headers(provider_id))

    mock_stripe.Customer.create.assert_not_called()
    assert mock_stripe.checkout.Session.create.call_args.kwargs["customer"] == "cus_existing"


def test_checkout_validation(app, client, make_provider, make_user, auth_headers) -> None:
    provider_id = make_provider()
    client_id = make_user(role="client")

    bad_tier = client.post("/api/stripe/checkout", json={"tier": "platinum"}, headers=auth_headers(provider_id))
    not_configured = client.post("/api/stripe/checkout", json={"tier": "pro"}, headers=auth_headers(provider_id))
    wrong_role = client.post("/api/stripe/checkout", json={"tier": "pro"}, headers=auth_headers(client_id))
    anonymous = client.post("/api/stripe/checkout", json={"tier": "pro"})

    assert bad_tier.status_code == 400
    assert bad_tier.get_json()["valid_tiers"] == ["starter", "pro", "elite"]
    assert not_configured.status_code == 500
    assert wrong_role.status_code == 403
    assert anonymous.status_code == 401


def test_checkout_stripe_error(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.Customer.create.side_effect = stripe.StripeError("card network down")
        response = client.post("/api/stripe/checkout", json={"tier": "pro"}, headers=auth_headers(provider_id))

    assert response.status_code == 500
    assert response.get_json()["error"] == "payment_error"


def test_billing_portal(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()
    stripe_app.config["STRIPE_BILLING_PORTAL_CONFIGURATION_ID"] = "bpc_123"

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.Customer.create.return_value = MagicMock(id="cus_123")
        mock_stripe.billing_portal.Session.create.return_value = MagicMock(url="https://billing.test/session")
        response = client.post("/api/stripe/billing-portal", headers=auth_headers(provider_id))

    assert response.status_code == 200
    assert response.get_json() == {"url": "https://billing.test/session"}
    kwargs = mock_stripe.billing_portal.Session.create.call_args.kwargs
    assert kwargs["customer"] == "cus_123"
    assert kwargs["configuration"] == "bpc_123"
    assert kwargs["return_url"].endswith("/provider/dashboard")


# --- Connect -----------------------------------------------------------------


def test_connect_return_stores_account(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.OAuth.token.return_value = {"stripe_user_id": "acct_123"}
        response = client.get("/provider/stripe/return?code=ac_123", headers=auth_headers(provider_id))

    assert response.status_code == 302
    assert response.headers["Location"] == "/provider/dashboard?stripe=connected"
    with stripe_app.app_context():
        assert db.session.get(ProviderProfile, provider_id).stripe_connect_id == "acct_123"


def test_connect_return_during_onboarding(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider(service=False, availability=False)

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.OAuth.token.return_value = {"stripe_user_id": "acct_123"}
        response = client.get("/provider/stripe/return?code=ac_123", headers=auth_headers(provider_id))

    assert response.headers["Location"] == "/provider/onboarding?stripe=connected"


def test_connect_return_without_code(client, make_provider, auth_headers) -> None:
    provider_id = make_provider()

    response = client.get("/provider/stripe/return", headers=auth_headers(provider_id))

    assert response.status_code == 302
    assert response.headers["Location"] == "/provider/onboarding?error=stripe-error"


def test_connect_link(stripe_app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()
    stripe_app.config["STRIPE_CONNECT_CLIENT_ID"] = "ca_123"

    with patch("beautybook.routes_provider.stripe") as mock_stripe:
        mock_stripe.OAuth.authorize_url.return_value = "https://connect.stripe.test/authorize"
        response = client.get("/provider/stripe/connect", headers=auth_headers(provider_id))

    assert response.status_code == 200
    assert response.get_json() == {"url": "https://connect.stripe.test/authorize"}
    kwargs = mock_stripe.OAuth.authorize_url.call_args.kwargs
    assert kwargs["client_id"] == "ca_123"
    assert kwargs["state"] == provider_id


def test_status_mapping_defaults_to_inactive(app, make_provider) -> None:
    provider_id = make_provider()

    with app.app_context():
        assert billing.sync_subscription(_subscription(provider_id, "paused")) is True
        assert db.session.get(ProviderProfile, provider_id).subscription_status == "inactive"
        assert billing.sync_subscription(_subscription("nobody")) is False
