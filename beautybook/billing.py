"""Stripe integration: subscriptions, customers, Connect and webhook events."""
from __future__ import annotations

from datetime import datetime, timezone

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .extensions import db
from .models import Booking, Profile, ProviderProfile

SUBSCRIPTION_TIERS = ("starter", "pro", "elite")

# Stripe subscription states folded into the four we store.
_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}


class StripeNotConfigured(RuntimeError):
    pass


def _field(obj, key: str, default=None):
    """Read ``key`` from a Stripe object or plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


def configure_stripe() -> None:
    """Load the API key from config; raise if payments are not set up."""
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        current_app.logger.warning("Stripe secret key not configured")
        raise StripeNotConfigured("Payments are not currently available. Please contact support.")
    stripe.api_key = key


def price_ids() -> dict[str, str]:
    config = current_app.config
    return {
        "starter": config["STRIPE_PRICE_ID_STARTER"],
        "pro": config["STRIPE_PRICE_ID_PRO"],
        "elite": config["STRIPE_PRICE_ID_ELITE"],
    }


def tier_for_price(price_id: str | None) -> str | None:
    for tier, candidate in price_ids().items():
        if candidate == price_id:
            return tier
    return None


def site_url(path: str) -> str:
    return current_app.config["SITE_URL"].rstrip("/") + path


def ensure_customer(profile: Profile, created_via: str) -> str:
    """Return the profile's Stripe customer id, creating the customer if needed."""
    if profile.stripe_customer_id:
        return profile.stripe_customer_id

    customer = stripe.Customer.create(
        email=profile.email,
        name=profile.display_name,
        metadata={
            "user_id": profile.user_id,
            "platform": "beautybook",
            "created_via": created_via,
        },
    )
    profile.stripe_customer_id = customer.id
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        # The customer exists in Stripe; the next call creates another one.
        db.session.rollback()
        current_app.logger.exception("Failed to save Stripe customer id for %s", profile.user_id, exc_info=exc)
    return customer.id


def create_subscription_checkout(profile: Profile, tier: str):
    customer_id = ensure_customer(profile, "checkout")
    metadata = {"user_id": profile.user_id, "subscription_tier": tier}
    return stripe.checkout.Session.create(
        customer=customer_id,
        line_items=[{"price": price_ids()[tier], "quantity": 1}],
        mode="subscription",
        success_url=site_url("/provider/dashboard?session_id={CHECKOUT_SESSION_ID}"),
        cancel_url=site_url("/provider/onboarding?step=payments&cancelled=true"),
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )


def create_billing_portal(profile: Profile):
    customer_id = ensure_customer(profile, "billing_portal")
    params = {
        "customer": customer_id,
        "return_url": site_url("/provider/dashboard"),
    }
    configuration = current_app.config.get("STRIPE_BILLING_PORTAL_CONFIGURATION_ID")
    if configuration:
        params["configuration"] = configuration
    return stripe.billing_portal.Session.create(**params)


def connect_account_from_code(code: str) -> str:
    """Exchange a Connect OAuth ``code`` for the connected account id."""
    response = stripe.OAuth.token(grant_type="authorization_code", code=code)
    return _field(response, "stripe_user_id")


def create_payment_intent(booking: Booking):
    return stripe.PaymentIntent.create(
        amount=int(booking.total_price_cents),
        currency=current_app.config["STRIPE_CURRENCY"],
        metadata={
            "booking_id": str(booking.booking_id),
            "client_id": booking.client_id,
            "provider_id": booking.provider_id,
        },
    )


# --- Webhook events ---------------------------------------------------------


def sync_subscription(subscription) -> bool:
    """Copy a Stripe subscription's state onto the provider profile."""
    user_id = _field(_field(subscription, "metadata", {}), "user_id")
    if not user_id:
        current_app.logger.error("No user id in subscription %s metadata", _field(subscription, "id"))
        return False

    provider = db.session.get(ProviderProfile, user_id)
    if provider is None:
        current_app.logger.warning("Subscription %s for unknown provider %s", _field(subscription, "id"), user_id)
        return False

    items = _field(_field(subscription, "items", {}), "data", [])
    price_id = _field(_field(items[0], "price", {}), "id") if items else None
    period_end = _field(subscription, "current_period_end")

    provider.subscription_status = _STATUS_MAP.get(_field(subscription, "status"), "inactive")
    provider.subscription_price_id = price_id
    provider.subscription_current_period_end = (
        datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
    )
    db.session.commit()
    current_app.logger.info(
        "Updated provider %s subscription: status=%s tier=%s",
        user_id,
        provider.subscription_status,
        tier_for_price(price_id),
    )
    return True


def _on_checkout_completed(session) -> None:
    user_id = _field(_field(session, "metadata", {}), "user_id")
    if not user_id:
        current_app.logger.error("No user id in checkout session %s metadata", _field(session, "id"))
        return

    customer_id = _field(session, "customer")
    if customer_id:
        profile = db.session.get(Profile, user_id)
        if profile is not None and profile.stripe_customer_id != customer_id:
            profile.stripe_customer_id = customer_id
            db.session.commit()

    subscription_id = _field(session, "subscription")
    if subscription_id:
        sync_subscription(stripe.Subscription.retrieve(subscription_id))


def _on_subscription_changed(subscription) -> None:
    sync_subscription(subscription)


def _on_subscription_deleted(subscription) -> None:
    user_id = _field(_field(subscription, "metadata", {}), "user_id")
    if not user_id:
        current_app.logger.error("No user id in subscription %s metadata", _field(subscription, "id"))
        return
    provider = db.session.get(ProviderProfile, user_id)
    if provider is None:
        return
    provider.subscription_status = "canceled"
    provider.subscription_price_id = None
    provider.subscription_current_period_end = None
    db.session.commit()
    current_app.logger.info("Provider %s subscription canceled", user_id)


def _on_invoice(invoice) -> None:
    subscription_id = _field(invoice, "subscription")
    if subscription_id:
        sync_subscription(stripe.Subscription.retrieve(subscription_id))


def _on_payment_intent_succeeded(intent) -> None:
    booking_id = _field(_field(intent, "metadata", {}), "booking_id")
    if not booking_id:
        current_app.logger.info(
            "payment_intent.succeeded %s without booking metadata; skipping", _field(intent, "id")
        )
        return
    booking = db.session.get(Booking, int(booking_id))
    if booking is None:
        current_app.logger.warning("payment_intent.succeeded for unknown booking %s", booking_id)
        return
    if booking.payment_status == "paid":
        return
    booking.payment_status = "paid"
    booking.stripe_payment_intent_id = _field(intent, "id")
    if booking.status == "pending":
        booking.status = "confirmed"
    db.session.commit()


EVENT_HANDLERS = {
    "checkout.session.completed": _on_checkout_completed,
    "customer.subscription.created": _on_subscription_changed,
    "customer.subscription.updated": _on_subscription_changed,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.payment_succeeded": _on_invoice,
    "invoice.payment_failed": _on_invoice,
    "payment_intent.succeeded": _on_payment_intent_succeeded,
}


def handle_event(event) -> bool:
    """Dispatch a verified webhook event. Returns ``False`` for unhandled types."""
    event_type = _field(event, "type")
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        current_app.logger.info("Unhandled Stripe event type: %s", event_type)
        return False

    current_app.logger.info("Processing Stripe event %s", event_type)
    data = _field(_field(event, "data", {}), "object", {})
    try:
        handler(data)
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("Duplicate write while handling Stripe event %s", event_type)
    except SQLAlchemyError:
        db.session.rollback()
        raise
    return True
