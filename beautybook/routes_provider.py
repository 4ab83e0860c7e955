"""Provider area: onboarding, dashboard, services, availability, gallery, payouts."""
from __future__ import annotations

from datetime import datetime, time, timedelta
from zoneinfo import available_timezones

import stripe
from flask import Blueprint, current_app, jsonify, redirect, request
from sqlalchemy.exc import SQLAlchemyError

from . import billing, storage
from .auth import is_admin, require_session
from .booking import BLOCKING_STATUSES, provider_earnings, provider_now
from .errors import ProfileMissing, WriteFailure
from .extensions import db
from .guard import PROVIDER_DASHBOARD, onboarding_location
from .models import (AvailabilityException, AvailabilityRule, Booking, Category, MediaAsset,
                     ProviderProfile, Service)
from .onboarding import (PROFILE_FIELDS, OnboardingStep, StepResult, activate_subscription,
                         add_availability_rules, add_service, complete_step, evaluate_readiness,
                         read_readiness, save_business_profile)
from .routes import save_avatar

bp_provider = Blueprint("provider", __name__)

WEEKDAYS = ("sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday")


# --- Payload parsing --------------------------------------------------------


def _parse_time(value) -> time:
    if not isinstance(value, str):
        raise ValueError("times must be HH:MM strings")
    return datetime.strptime(value.strip()[:5], "%H:%M").time()


def _parse_service(payload: dict, partial: bool = False) -> dict[str, object]:
    """Validate a service form. Price may be given in cents or dollars."""
    fields: dict[str, object] = {}

    if "title" in payload or not partial:
        title = str(payload.get("title") or "").strip()
        if not title:
            raise ValueError("title is required")
        fields["title"] = title

    if "description" in payload:
        fields["description"] = (payload.get("description") or "").strip() or None

    if "duration_minutes" in payload or not partial:
        try:
            duration = int(payload.get("duration_minutes"))
        except (TypeError, ValueError):
            raise ValueError("duration_minutes must be a positive integer") from None
        if duration <= 0:
            raise ValueError("duration_minutes must be a positive integer")
        fields["duration_minutes"] = duration

    if "price_cents" in payload or "price" in payload or not partial:
        try:
            if payload.get("price_cents") is not None:
                price_cents = int(payload["price_cents"])
            else:
                price_cents = int(round(float(payload.get("price")) * 100))
        except (TypeError, ValueError):
            raise ValueError("price_cents must be a non-negative integer") from None
        if price_cents < 0:
            raise ValueError("price_cents must be a non-negative integer")
        fields["price_cents"] = price_cents

    if payload.get("category_id") is not None:
        try:
            category_id = int(payload["category_id"])
        except (TypeError, ValueError):
            raise ValueError("category_id must be an integer") from None
        if db.session.get(Category, category_id) is None:
            raise ValueError("unknown category_id")
        fields["category_id"] = category_id

    return fields


def _parse_availability(payload: dict) -> list[tuple[int, time, time, int]]:
    """Accept ``rules`` (a list) or ``days`` (weekday name -> {enabled, start, end})."""
    rules = []
    if isinstance(payload.get("days"), dict):
        for name, day in payload["days"].items():
            if name not in WEEKDAYS:
                raise ValueError(f"unknown weekday: {name}")
            if not isinstance(day, dict) or not day.get("enabled"):
                continue
            rules.append({
                "weekday": WEEKDAYS.index(name),
                "start_time": day.get("start", "09:00"),
                "end_time": day.get("end", "17:00"),
                "buffer_minutes": day.get("buffer_minutes", 0),
            })
    elif isinstance(payload.get("rules"), list):
        rules = payload["rules"]
    else:
        raise ValueError("rules or days are required")

    parsed = []
    for rule in rules:
        try:
            weekday = int(rule["weekday"])
            buffer_minutes = int(rule.get("buffer_minutes") or 0)
        except (KeyError, TypeError, ValueError):
            raise ValueError("each rule needs an integer weekday") from None
        if not 0 <= weekday <= 6:
            raise ValueError("weekday must be between 0 (Sunday) and 6 (Saturday)")
        start = _parse_time(rule.get("start_time"))
        end = _parse_time(rule.get("end_time"))
        if end <= start:
            raise ValueError("end_time must be after start_time")
        if buffer_minutes < 0:
            raise ValueError("buffer_minutes must not be negative")
        parsed.append((weekday, start, end, buffer_minutes))
    return parsed


def _step_response(result: StepResult) -> tuple[dict[str, object], int]:
    if not result.success:
        return jsonify({
            "success": False,
            "error": "database_error",
            "message": "Something went wrong. Please try again.",
        }), 500

    location = PROVIDER_DASHBOARD if result.is_complete else onboarding_location(result.next_step)
    return jsonify({**result.to_dict(), "redirect_to": location}), 200


def _write_failed(exc: WriteFailure) -> tuple[dict[str, object], int]:
    current_app.logger.exception(exc.message, exc_info=exc.__cause__)
    return jsonify({"success": False, "error": exc.code, "message": exc.message}), 500


# --- Onboarding -------------------------------------------------------------


@bp_provider.get("/provider/onboarding")
def onboarding_page() -> tuple[dict[str, object], int]:
    """Onboarding state: which step to show and the data to prefill it.
    ---
    tags:
      - Onboarding
    parameters:
      - name: step
        in: query
        type: string
        enum: [profile, payments, service, availability]
    """
    session = require_session("provider")
    readiness = evaluate_readiness(session.user_id)
    requested = OnboardingStep.parse(request.args.get("step"))
    current = requested or readiness.next_step or OnboardingStep.PROFILE

    provider = db.session.get(ProviderProfile, session.user_id)
    return jsonify({
        "status": readiness.to_dict(),
        "current_step": current.value,
        "profile": provider.to_dict() if provider else None,
        "categories": [c.to_dict() for c in Category.query.order_by(Category.name).all()],
        "error": request.args.get("error"),
    }), 200


@bp_provider.post("/provider/onboarding/profile")
def onboarding_profile() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    payload = request.get_json(silent=True) or {}

    fields = {name: str(payload.get(name) or "").strip() or None for name in PROFILE_FIELDS if name in payload}
    missing = [name for name in ("business_name", "address_line1", "city", "state", "zip") if not fields.get(name)]
    if missing:
        return jsonify({
            "error": "invalid_payload",
            "message": f"missing required fields: {', '.join(missing)}",
        }), 400

    try:
        save_business_profile(session.user_id, fields)
    except WriteFailure as exc:
        return _write_failed(exc)
    return _step_response(complete_step(session.user_id, OnboardingStep.PROFILE))


@bp_provider.post("/provider/onboarding/payments")
def onboarding_payments() -> tuple[dict[str, object], int]:
    """Start the subscription.

    With ``SUBSCRIPTION_STUB_ENABLED`` the subscription is activated at once;
    otherwise a Stripe Checkout session is created and the webhook flips the
    status once payment succeeds.
    """
    session = require_session("provider")

    if current_app.config.get("SUBSCRIPTION_STUB_ENABLED"):
        try:
            activate_subscription(session.user_id)
        except WriteFailure as exc:
            return _write_failed(exc)
        return _step_response(complete_step(session.user_id, OnboardingStep.PAYMENTS))

    payload = request.get_json(silent=True) or {}
    tier = (payload.get("tier") or "").strip().lower()
    if tier not in billing.SUBSCRIPTION_TIERS:
        return jsonify({
            "error": "invalid_tier",
            "message": "Invalid subscription tier",
            "valid_tiers": list(billing.SUBSCRIPTION_TIERS),
        }), 400

    provider = db.session.get(ProviderProfile, session.user_id)
    if provider is None:
        raise ProfileMissing("Provider profile not found")

    try:
        billing.configure_stripe()
        checkout = billing.create_subscription_checkout(provider.profile, tier)
    except billing.StripeNotConfigured as exc:
        return jsonify({"error": "server_error", "message": str(exc)}), 500
    except stripe.StripeError as exc:
        current_app.logger.exception("Checkout session creation failed", exc_info=exc)
        return jsonify({"error": "payment_error", "message": "Failed to create checkout session"}), 500

    return jsonify({"success": True, "checkout_url": checkout.url, "session_id": checkout.id}), 200


@bp_provider.post("/provider/onboarding/service")
def onboarding_service() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    try:
        fields = _parse_service(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": "invalid_payload", "message": str(exc)}), 400

    try:
        add_service(session.user_id, **fields)
    except WriteFailure as exc:
        return _write_failed(exc)
    return _step_response(complete_step(session.user_id, OnboardingStep.SERVICE))


@bp_provider.post("/provider/onboarding/availability")
def onboarding_availability() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    try:
        rules = _parse_availability(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": "invalid_payload", "message": str(exc)}), 400
    if not rules:
        return jsonify({
            "error": "invalid_payload",
            "message": "Please select at least one day of availability",
        }), 400

    try:
        add_availability_rules(session.user_id, rules)
    except WriteFailure as exc:
        return _write_failed(exc)
    return _step_response(complete_step(session.user_id, OnboardingStep.AVAILABILITY))


@bp_provider.post("/api/onboarding/status")
def onboarding_status() -> tuple[dict[str, object], int]:
    """Readiness of a provider; callers may query themselves, admins anyone.

    Unlike the page guard this reports lookup problems: an unknown provider
    is a 404 and a failed read a 500.
    """
    session = require_session()
    payload = request.get_json(silent=True) or {}
    provider_id = payload.get("provider_id") or payload.get("providerId")
    if not provider_id:
        return jsonify({"error": "invalid_payload", "message": "Provider ID is required"}), 400
    if provider_id != session.user_id and not is_admin(session.user_id):
        return jsonify({"error": "forbidden"}), 403

    return jsonify(read_readiness(provider_id).to_dict()), 200


# --- Dashboard --------------------------------------------------------------


@bp_provider.get("/provider/dashboard")
def provider_dashboard() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    try:
        provider = db.session.get(ProviderProfile, session.user_id)
        if provider is None:
            raise ProfileMissing("Provider profile not found")
        now = provider_now(provider)
        upcoming = (
            Booking.query.filter(
                Booking.provider_id == provider.provider_id,
                Booking.status.in_(BLOCKING_STATUSES),
                Booking.start_time >= now,
            )
            .order_by(Booking.start_time.asc())
            .limit(10)
            .all()
        )
        earnings = provider_earnings(provider.provider_id, now - timedelta(days=7))
        service_count = Service.query.filter_by(provider_id=provider.provider_id, is_active=True).count()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to load provider dashboard", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    readiness = evaluate_readiness(provider.provider_id)
    return jsonify({
        "provider": provider.to_dict(),
        "readiness": {
            "is_ready": readiness.is_complete,
            "missing_profile": not readiness.profile,
            "missing_subscription": not readiness.payments,
            "missing_service": not readiness.service,
            "missing_availability": not readiness.availability,
        },
        "upcoming_bookings": [b.to_dict() for b in upcoming],
        "earnings_7d": earnings,
        "active_services": service_count,
    }), 200


# --- Services ---------------------------------------------------------------


def _own_service(provider_id: str, service_id: int) -> Service | None:
    service = db.session.get(Service, service_id)
    if service is None or service.provider_id != provider_id:
        return None
    return service


@bp_provider.get("/provider/services")
def list_own_services() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    services = (
        Service.query.filter_by(provider_id=session.user_id)
        .order_by(Service.created_at.desc())
        .all()
    )
    return jsonify({"services": [s.to_dict() for s in services]}), 200


@bp_provider.post("/provider/services")
def create_own_service() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    try:
        fields = _parse_service(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": "invalid_payload", "message": str(exc)}), 400

    try:
        service = add_service(session.user_id, **fields)
    except WriteFailure as exc:
        return _write_failed(exc)
    return jsonify({"message": "Service created successfully", "service": service.to_dict()}), 201


@bp_provider.put("/provider/services/<int:service_id>")
def update_own_service(service_id: int) -> tuple[dict[str, object], int]:
    session = require_session("provider")
    service = _own_service(session.user_id, service_id)
    if service is None:
        return jsonify({"error": "not_found", "message": "Service not found"}), 404

    payload = request.get_json(silent=True) or {}
    try:
        fields = _parse_service(payload, partial=True)
    except ValueError as exc:
        return jsonify({"error": "invalid_payload", "message": str(exc)}), 400
    if "is_active" in payload:
        if not isinstance(payload["is_active"], bool):
            return jsonify({"error": "invalid_payload", "message": "is_active must be a boolean"}), 400
        fields["is_active"] = payload["is_active"]

    try:
        for name, value in fields.items():
            setattr(service, name, value)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"message": "Service updated successfully", "service": service.to_dict()}), 200


@bp_provider.delete("/provider/services/<int:service_id>")
def deactivate_own_service(service_id: int) -> tuple[dict[str, object], int]:
    """Services are deactivated, not deleted, so past bookings keep their service."""
    session = require_session("provider")
    service = _own_service(session.user_id, service_id)
    if service is None:
        return jsonify({"error": "not_found", "message": "Service not found"}), 404

    try:
        service.is_active = False
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to deactivate service", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"message": "Service deactivated", "service": service.to_dict()}), 200


# --- Availability -----------------------------------------------------------


@bp_provider.get("/provider/availability")
def get_availability() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    rules = (
        AvailabilityRule.query.filter_by(provider_id=session.user_id)
        .order_by(AvailabilityRule.weekday, AvailabilityRule.start_time)
        .all()
    )
    exceptions = (
        AvailabilityException.query.filter_by(provider_id=session.user_id)
        .order_by(AvailabilityException.date)
        .all()
    )
    return jsonify({
        "rules": [r.to_dict() for r in rules],
        "exceptions": [e.to_dict() for e in exceptions],
    }), 200


@bp_provider.put("/provider/availability")
def replace_availability() -> tuple[dict[str, object], int]:
    """Replace the weekly schedule. An empty list closes every day."""
    session = require_session("provider")
    try:
        rules = _parse_availability(request.get_json(silent=True) or {})
    except ValueError as exc:
        return jsonify({"error": "invalid_payload", "message": str(exc)}), 400

    try:
        created = add_availability_rules(session.user_id, rules, replace=True)
    except WriteFailure as exc:
        return _write_failed(exc)
    return jsonify({"rules": [r.to_dict() for r in created]}), 200


@bp_provider.post("/provider/availability/exceptions")
def add_availability_exception() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    payload = request.get_json(silent=True) or {}
    try:
        day = datetime.strptime(payload.get("date") or "", "%Y-%m-%d").date()
        is_open = bool(payload.get("is_open", False))
        start = _parse_time(payload["start_time"]) if payload.get("start_time") else None
        end = _parse_time(payload["end_time"]) if payload.get("end_time") else None
    except (TypeError, ValueError) as exc:
        return jsonify({"error": "invalid_payload", "message": f"invalid exception: {exc}"}), 400
    if is_open and (start is None or end is None or end <= start):
        return jsonify({
            "error": "invalid_payload",
            "message": "open exceptions need start_time before end_time",
        }), 400

    exception = AvailabilityException(
        provider_id=session.user_id,
        date=day,
        is_open=is_open,
        start_time=start,
        end_time=end,
        note=(payload.get("note") or "").strip() or None,
    )
    try:
        db.session.add(exception)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save availability exception", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"exception": exception.to_dict()}), 201


@bp_provider.delete("/provider/availability/exceptions/<int:exception_id>")
def delete_availability_exception(exception_id: int) -> tuple[dict[str, object], int]:
    session = require_session("provider")
    exception = db.session.get(AvailabilityException, exception_id)
    if exception is None or exception.provider_id != session.user_id:
        return jsonify({"error": "not_found"}), 404
    try:
        db.session.delete(exception)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete availability exception", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"deleted": exception_id}), 200


# --- Gallery ----------------------------------------------------------------


@bp_provider.get("/provider/gallery")
def list_gallery() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    media = (
        MediaAsset.query.filter_by(provider_id=session.user_id)
        .order_by(MediaAsset.created_at.desc())
        .all()
    )
    return jsonify({"media": [m.to_dict() for m in media]}), 200


@bp_provider.post("/provider/gallery")
def upload_gallery_item() -> tuple[dict[str, object], int]:
    """Upload an image or video (multipart field ``file``) to S3."""
    session = require_session("provider")

    file = request.files.get("file")
    if file is None or not file.filename:
        return jsonify({"error": "invalid_payload", "message": "file is required"}), 400
    kind = storage.media_kind(file.filename)
    if kind is None:
        return jsonify({"error": "invalid_payload", "message": "unsupported file type"}), 400

    size = storage.file_size(file)
    if size > current_app.config["MAX_UPLOAD_BYTES"]:
        return jsonify({"error": "invalid_payload", "message": "file is too large"}), 413

    try:
        key, url = storage.upload(file, f"gallery/{session.user_id}")
    except storage.StorageError as exc:
        current_app.logger.exception("Gallery upload failed", exc_info=exc)
        return jsonify({"error": "upload_failed", "message": "Upload failed. Please try again."}), 502

    asset = MediaAsset(
        provider_id=session.user_id,
        type=kind,
        storage_path=key,
        url=url,
        size_bytes=size,
        is_public=request.form.get("is_public", "true").lower() != "false",
    )
    try:
        db.session.add(asset)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save media asset", exc_info=exc)
        storage.delete(key)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"media": asset.to_dict()}), 201


@bp_provider.delete("/provider/gallery/<int:media_id>")
def delete_gallery_item(media_id: int) -> tuple[dict[str, object], int]:
    session = require_session("provider")
    asset = db.session.get(MediaAsset, media_id)
    if asset is None or asset.provider_id != session.user_id:
        return jsonify({"error": "not_found"}), 404

    key = asset.storage_path
    try:
        db.session.delete(asset)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to delete media asset", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    storage.delete(key)
    return jsonify({"deleted": media_id}), 200


# --- Account ----------------------------------------------------------------


@bp_provider.get("/provider/account/profile")
def get_account_profile() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    provider = db.session.get(ProviderProfile, session.user_id)
    if provider is None:
        raise ProfileMissing("Provider profile not found")
    return jsonify({"profile": provider.to_dict(), "account": provider.profile.to_dict_basic()}), 200


@bp_provider.put("/provider/account/profile")
def update_account_profile() -> tuple[dict[str, object], int]:
    """Edit business details and contact info after onboarding."""
    session = require_session("provider")
    payload = request.get_json(silent=True) or {}

    fields = {name: str(payload.get(name) or "").strip() or None for name in PROFILE_FIELDS if name in payload}
    cleared = [name for name in ("business_name", "address_line1", "city") if name in fields and not fields[name]]
    if cleared:
        return jsonify({"error": "invalid_payload", "message": f"{', '.join(cleared)} cannot be empty"}), 400
    if payload.get("timezone") and payload["timezone"] not in available_timezones():
        return jsonify({"error": "invalid_payload", "message": "unknown timezone"}), 400

    try:
        provider = save_business_profile(session.user_id, fields, commit=False)
        account = provider.profile
        if "display_name" in payload and (payload.get("display_name") or "").strip():
            account.display_name = payload["display_name"].strip()
        if "phone" in payload:
            account.phone = (payload.get("phone") or "").strip() or None
        if "timezone" in payload and payload["timezone"]:
            provider.timezone = payload["timezone"]
        db.session.commit()
    except WriteFailure as exc:
        return _write_failed(exc)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update account profile", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"profile": provider.to_dict(), "account": account.to_dict_basic()}), 200


@bp_provider.post("/provider/account/avatar")
def upload_provider_avatar() -> tuple[dict[str, object], int]:
    """Profile photo shown on the provider page (multipart field ``file``)."""
    session = require_session("provider")
    return save_avatar(session.user_id)


# --- Payouts / Stripe Connect -----------------------------------------------


@bp_provider.get("/provider/payouts")
def payouts() -> tuple[dict[str, object], int]:
    session = require_session("provider")
    provider = db.session.get(ProviderProfile, session.user_id)
    if provider is None:
        raise ProfileMissing("Provider profile not found")
    now = provider_now(provider)
    return jsonify({
        "connected": bool(provider.stripe_connect_id),
        "stripe_connect_id": provider.stripe_connect_id,
        "earnings_7d": provider_earnings(provider.provider_id, now - timedelta(days=7)),
        "earnings_30d": provider_earnings(provider.provider_id, now - timedelta(days=30)),
    }), 200


@bp_provider.get("/provider/stripe/connect")
def stripe_connect_link() -> tuple[dict[str, object], int]:
    """OAuth link that sends the provider to Stripe Connect."""
    session = require_session("provider")
    client_id = current_app.config.get("STRIPE_CONNECT_CLIENT_ID")
    try:
        billing.configure_stripe()
    except billing.StripeNotConfigured as exc:
        return jsonify({"error": "server_error", "message": str(exc)}), 500
    if not client_id:
        current_app.logger.warning("Stripe Connect client id not configured")
        return jsonify({"error": "server_error", "message": "Payouts are not currently available."}), 500

    url = stripe.OAuth.authorize_url(
        client_id=client_id,
        scope="read_write",
        redirect_uri=billing.site_url("/provider/stripe/return"),
        state=session.user_id,
    )
    return jsonify({"url": url}), 200


@bp_provider.get("/provider/stripe/return")
def stripe_connect_return():
    """Connect OAuth callback: store the account id and continue onboarding."""
    session = require_session("provider")
    code = request.args.get("code")
    if not code:
        current_app.logger.error("No Stripe Connect code provided")
        return redirect("/provider/onboarding?error=stripe-error")

    try:
        billing.configure_stripe()
        account_id = billing.connect_account_from_code(code)
    except billing.StripeNotConfigured:
        return redirect("/provider/onboarding?error=stripe-error")
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe Connect code exchange failed", exc_info=exc)
        return redirect("/provider/onboarding?error=stripe-error")

    try:
        provider = db.session.get(ProviderProfile, session.user_id)
        if provider is None:
            return redirect("/provider/onboarding?error=db-error")
        provider.stripe_connect_id = account_id
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Error updating Stripe Connect id", exc_info=exc)
        return redirect("/provider/onboarding?error=db-error")

    if evaluate_readiness(session.user_id).is_complete:
        return redirect("/provider/dashboard?stripe=connected")
    return redirect("/provider/onboarding?stripe=connected")
