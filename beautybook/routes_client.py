"""Client area and booking creation."""
from __future__ import annotations

from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from .auth import require_session
from .booking import BLOCKING_STATUSES, create_booking, provider_now, provider_zone, slots_for_service
from .errors import ProfileMissing, WriteFailure
from .extensions import db
from .models import Booking, Profile, ProviderProfile, Service
from .onboarding import evaluate_readiness
from .routes import save_avatar

bp_client = Blueprint("client", __name__)


def _to_provider_wall_clock(value: datetime, provider: ProviderProfile) -> datetime:
    """Aware datetimes are converted to the provider's timezone; naive ones are taken as-is."""
    if value.tzinfo is None:
        return value
    return value.astimezone(provider_zone(provider)).replace(tzinfo=None)


def _is_upcoming(booking: Booking) -> bool:
    # start_time is wall-clock time in the booking provider's zone
    return booking.start_time >= provider_now(booking.provider)


def _upcoming(client_id: str) -> list[Booking]:
    bookings = (
        Booking.query.filter(Booking.client_id == client_id, Booking.status.in_(BLOCKING_STATUSES))
        .order_by(Booking.start_time.asc())
        .all()
    )
    return [b for b in bookings if _is_upcoming(b)]


@bp_client.get("/client/dashboard")
def client_dashboard() -> tuple[dict[str, object], int]:
    session = require_session("client")
    try:
        upcoming = _upcoming(session.user_id)[:5]
        total = Booking.query.filter_by(client_id=session.user_id).count()
        completed = Booking.query.filter_by(client_id=session.user_id, status="completed").count()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to load client dashboard", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({
        "user": session.to_dict(),
        "upcoming_bookings": [b.to_dict() for b in upcoming],
        "stats": {"total_bookings": total, "completed_bookings": completed},
    }), 200


@bp_client.get("/client/bookings")
def client_bookings() -> tuple[dict[str, object], int]:
    """Client booking history.
    ---
    tags:
      - Bookings
    parameters:
      - name: scope
        in: query
        type: string
        enum: [upcoming, past, all]
        default: all
    """
    session = require_session("client")
    scope = request.args.get("scope", "all")
    if scope not in ("upcoming", "past", "all"):
        return jsonify({"error": "invalid_parameters", "message": "scope must be upcoming, past or all"}), 400

    try:
        if scope == "upcoming":
            bookings = _upcoming(session.user_id)
        else:
            bookings = (
                Booking.query.filter(Booking.client_id == session.user_id)
                .order_by(Booking.start_time.desc())
                .all()
            )
            if scope == "past":
                bookings = [b for b in bookings if not _is_upcoming(b)]
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch client bookings", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({"bookings": [b.to_dict() for b in bookings], "scope": scope}), 200


@bp_client.post("/client/bookings/<int:booking_id>/cancel")
def cancel_booking(booking_id: int) -> tuple[dict[str, object], int]:
    session = require_session("client")
    booking = db.session.get(Booking, booking_id)
    if booking is None or booking.client_id != session.user_id:
        return jsonify({"error": "not_found", "message": "Booking not found"}), 404
    if booking.status not in BLOCKING_STATUSES:
        return jsonify({
            "error": "invalid_state",
            "message": f"Cannot cancel a booking that is {booking.status}",
        }), 409
    if booking.start_time <= provider_now(booking.provider):
        return jsonify({"error": "invalid_state", "message": "Booking has already started"}), 409

    payload = request.get_json(silent=True) or {}
    try:
        booking.status = "canceled"
        booking.cancellation_reason = (payload.get("reason") or "").strip() or None
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to cancel booking %s", booking_id, exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    current_app.logger.info("Client %s canceled booking %s", session.user_id, booking_id)
    return jsonify({"booking": booking.to_dict()}), 200


@bp_client.get("/client/profile")
def get_client_profile() -> tuple[dict[str, object], int]:
    session = require_session("client")
    profile = db.session.get(Profile, session.user_id)
    if profile is None:
        raise ProfileMissing("Profile not found")
    return jsonify({"profile": profile.to_dict_basic()}), 200


@bp_client.put("/client/profile")
def update_client_profile() -> tuple[dict[str, object], int]:
    session = require_session("client")
    profile = db.session.get(Profile, session.user_id)
    if profile is None:
        raise ProfileMissing("Profile not found")

    payload = request.get_json(silent=True) or {}
    if "display_name" in payload:
        display_name = (payload.get("display_name") or "").strip()
        if not display_name:
            return jsonify({"error": "invalid_payload", "message": "display_name cannot be empty"}), 400
        profile.display_name = display_name
    if "phone" in payload:
        profile.phone = (payload.get("phone") or "").strip() or None
    if "locale" in payload:
        profile.locale = (payload.get("locale") or "").strip() or None

    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update client profile", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"profile": profile.to_dict_basic()}), 200


@bp_client.post("/client/profile/avatar")
def upload_client_avatar() -> tuple[dict[str, object], int]:
    session = require_session("client")
    return save_avatar(session.user_id)


@bp_client.post("/api/bookings")
def book_service() -> tuple[dict[str, object], int]:
    """Book one of the free slots of a provider's service.
    ---
    tags:
      - Bookings
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            provider_id:
              type: string
            service_id:
              type: integer
            start_time:
              type: string
              format: date-time
            notes:
              type: string
    responses:
      201:
        description: Booking created in ``pending``/``unpaid`` state
      409:
        description: Provider not bookable or slot no longer free
    """
    session = require_session("client")
    payload = request.get_json(silent=True) or {}

    provider_id = payload.get("provider_id")
    try:
        service_id = int(payload.get("service_id"))
        start = datetime.fromisoformat(payload.get("start_time") or "")
    except (TypeError, ValueError):
        return jsonify({
            "error": "invalid_payload",
            "message": "provider_id, service_id and an ISO start_time are required",
        }), 400
    if not provider_id:
        return jsonify({"error": "invalid_payload", "message": "provider_id is required"}), 400

    provider = db.session.get(ProviderProfile, provider_id)
    if provider is None:
        return jsonify({"error": "not_found", "message": "Provider not found"}), 404
    service = db.session.get(Service, service_id)
    if service is None or service.provider_id != provider_id or not service.is_active:
        return jsonify({"error": "not_found", "message": "Service not found"}), 404
    if not evaluate_readiness(provider_id).is_complete:
        return jsonify({"error": "provider_unavailable", "message": "Provider is not accepting bookings"}), 409

    start = _to_provider_wall_clock(start, provider)
    if not any(slot.start == start for slot in slots_for_service(provider, service)):
        return jsonify({"error": "slot_unavailable", "message": "That time is no longer available"}), 409

    try:
        booking = create_booking(session.user_id, provider, service, start, (payload.get("notes") or "").strip() or None)
    except WriteFailure as exc:
        current_app.logger.exception(exc.message, exc_info=exc.__cause__)
        return jsonify({"error": exc.code, "message": exc.message}), 500

    current_app.logger.info("Booking %s created for provider %s", booking.booking_id, provider_id)
    return jsonify({"booking": booking.to_dict()}), 201
