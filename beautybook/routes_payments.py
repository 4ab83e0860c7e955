"""Stripe-facing endpoints: checkout, billing portal, booking payments, webhooks."""
from __future__ import annotations

import stripe
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from . import billing
from .auth import require_session
from .extensions import db
from .models import Booking, Profile

bp_payments = Blueprint("payments", __name__)


@bp_payments.post("/api/stripe/checkout")
def create_checkout() -> tuple[dict[str, object], int]:
    """Start a subscription checkout for the signed-in provider.
    ---
    tags:
      - Payments
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            tier:
              type: string
              enum: [starter, pro, elite]
    responses:
      200:
        description: Checkout session created
        schema:
          type: object
          properties:
            url:
              type: string
            session_id:
              type: string
      400:
        description: Invalid tier
      401:
        description: Not signed in
      500:
        description: Payments not configured or Stripe error
    """
    session = require_session("provider")
    payload = request.get_json(silent=True) or {}
    tier = (payload.get("tier") or "").strip().lower()
    if tier not in billing.SUBSCRIPTION_TIERS:
        return jsonify({
            "error": "invalid_tier",
            "message": "Invalid subscription tier",
            "valid_tiers": list(billing.SUBSCRIPTION_TIERS),
        }), 400

    profile = db.session.get(Profile, session.user_id)
    try:
        billing.configure_stripe()
        checkout = billing.create_subscription_checkout(profile, tier)
    except billing.StripeNotConfigured as exc:
        return jsonify({"error": "server_error", "message": str(exc)}), 500
    except stripe.StripeError as exc:
        current_app.logger.exception("Error creating checkout session", exc_info=exc)
        return jsonify({"error": "payment_error", "message": "Failed to create checkout session"}), 500

    return jsonify({"url": checkout.url, "session_id": checkout.id}), 200


@bp_payments.post("/api/stripe/billing-portal")
def billing_portal() -> tuple[dict[str, object], int]:
    """Open the Stripe customer portal for managing the subscription."""
    session = require_session("provider")
    profile = db.session.get(Profile, session.user_id)
    try:
        billing.configure_stripe()
        portal = billing.create_billing_portal(profile)
    except billing.StripeNotConfigured as exc:
        return jsonify({"error": "server_error", "message": str(exc)}), 500
    except stripe.StripeError as exc:
        current_app.logger.exception("Error creating billing portal session", exc_info=exc)
        return jsonify({"error": "payment_error", "message": "Failed to open billing portal"}), 500

    return jsonify({"url": portal.url}), 200


@bp_payments.post("/api/bookings/<int:booking_id>/payment-intent")
def booking_payment_intent(booking_id: int) -> tuple[dict[str, object], int]:
    """Create (or reuse) the PaymentIntent that pays for a booking."""
    session = require_session("client")
    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.client_id != session.user_id:
        return jsonify({"error": "not_found", "message": "Booking not found"}), 404
    if booking.payment_status != "unpaid" or booking.status not in ("pending", "confirmed"):
        return jsonify({"error": "invalid_state", "message": "Booking cannot be paid"}), 409

    try:
        billing.configure_stripe()
        if booking.stripe_payment_intent_id:
            intent = stripe.PaymentIntent.retrieve(booking.stripe_payment_intent_id)
        else:
            intent = billing.create_payment_intent(booking)
    except billing.StripeNotConfigured as exc:
        return jsonify({"error": "server_error", "message": str(exc)}), 500
    except stripe.StripeError as exc:
        current_app.logger.exception("Error creating payment intent for booking %s", booking_id, exc_info=exc)
        return jsonify({"error": "payment_error", "message": "Failed to start payment"}), 500

    if not booking.stripe_payment_intent_id:
        try:
            booking.stripe_payment_intent_id = intent.id
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            current_app.logger.warning("Payment intent %s already attached to a booking", intent.id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to save payment intent id", exc_info=exc)
            return jsonify({"error": "database_error"}), 500

    return jsonify({
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "amount": booking.total_price_cents,
        "currency": current_app.config["STRIPE_CURRENCY"],
    }), 200


@bp_payments.post("/api/webhooks/stripe")
def stripe_webhook():
    """Stripe webhook endpoint to receive asynchronous events.
    ---
    tags:
      - Payments
    parameters:
      - name: Stripe-Signature
        in: header
        required: true
        type: string
    responses:
      200:
        description: Event received
      400:
        description: Invalid payload or signature
      500:
        description: Event could not be stored; Stripe retries
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

    if not webhook_secret:
        current_app.logger.error("Stripe webhook secret not configured - webhooks will not be processed")
        return jsonify({"received": True}), 200

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError:
        current_app.logger.warning("Invalid webhook payload")
        return jsonify({"error": "invalid_payload"}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Invalid signature for webhook")
        return jsonify({"error": "invalid_signature"}), 400

    try:
        handled = billing.handle_event(event)
    except SQLAlchemyError as exc:
        current_app.logger.exception("Failed to process Stripe event", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe lookup failed while processing event", exc_info=exc)
        return jsonify({"error": "payment_error"}), 500

    return jsonify({"received": True, "handled": handled}), 200
