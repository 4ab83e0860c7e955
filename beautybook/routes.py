"""HTTP routes: health, authentication, marketplace browsing, profiles, settings, admin."""
from __future__ import annotations

from datetime import datetime, timezone
from urllib.parse import urlsplit

from flask import Blueprint, Flask, current_app, jsonify, request
from sqlalchemy import exists, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload
from werkzeug.security import check_password_hash, generate_password_hash

from . import storage
from .auth import (build_token, clear_session_cookie, current_session, require_session,
                   set_session_cookie)
from .booking import slots_for_service
from .errors import BeautyBookError, ProfileMissing
from .extensions import db
from .guard import CLIENT_DASHBOARD, provider_home
from .models import (AdminUser, AuthAccount, AvailabilityRule, Booking, Category, MediaAsset,
                     Profile, ProviderProfile, Service, UserSettings)
from .onboarding import evaluate_readiness

bp = Blueprint("api", __name__)


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health() -> tuple[dict[str, str], int]:
    """Check connectivity to the configured database."""
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Database connectivity check failed", exc_info=exc)
        return jsonify({"database": "unavailable"}), 500

    return jsonify({"database": "ok"}), 200


# --- Authentication ---------------------------------------------------------


def _safe_redirect(target: str | None) -> str | None:
    """Only local absolute paths are accepted as post sign-in targets."""
    if not target or not target.startswith("/"):
        return None
    if any(ord(char) < 32 for char in target):
        return None
    # browsers read a backslash as a slash, so "/\host" is scheme-relative
    normalized = target.replace("\\", "/")
    parts = urlsplit(normalized)
    if normalized.startswith("//") or parts.scheme or parts.netloc:
        return None
    return target


def _landing_path(profile: Profile, requested: str | None = None) -> str:
    target = _safe_redirect(requested)
    if target:
        return target
    if profile.role == "provider":
        return provider_home(evaluate_readiness(profile.user_id))
    return CLIENT_DASHBOARD


@bp.post("/auth/sign-up")
def sign_up() -> tuple[dict[str, object], int]:
    """Register a new client or provider account.
    ---
    tags:
      - Authentication
    parameters:
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            display_name:
              type: string
            email:
              type: string
            password:
              type: string
            role:
              type: string
              enum: [client, provider]
    responses:
      201:
        description: Account created, session issued
      400:
        description: Invalid payload
      409:
        description: Email already in use
    """
    payload = request.get_json(silent=True) or {}

    display_name = (payload.get("display_name") or payload.get("name") or "").strip()
    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    role = (payload.get("role") or "client").strip().lower()
    phone = (payload.get("phone") or "").strip() or None

    if not display_name or not email or not password:
        return (
            jsonify({"error": "invalid_payload", "message": "display_name, email, and password are required"}),
            400,
        )
    if len(password) < 8:
        return jsonify({"error": "invalid_payload", "message": "password must be at least 8 characters"}), 400
    if role not in ("client", "provider"):
        return jsonify({"error": "invalid_role", "message": "role must be 'client' or 'provider'"}), 400

    if Profile.query.filter_by(email=email).first():
        return jsonify({"error": "conflict", "message": "email address is already in use"}), 409

    try:
        profile = Profile(display_name=display_name, email=email, role=role, phone=phone)
        db.session.add(profile)
        db.session.flush()

        db.session.add(AuthAccount(user_id=profile.user_id, password_hash=generate_password_hash(password)))
        if role == "provider":
            # Empty business profile; onboarding fills it in.
            db.session.add(ProviderProfile(provider_id=profile.user_id))
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to register new user", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    token = build_token(profile.user_id)
    response = jsonify({
        "token": token,
        "user": profile.to_dict_basic(),
        "redirect_to": _landing_path(profile),
    })
    set_session_cookie(response, token)
    return response, 201


@bp.post("/auth/sign-in")
def sign_in() -> tuple[dict[str, object], int]:
    """Authenticate by email/password and issue a session token.
    ---
    tags:
      - Authentication
    responses:
      200:
        description: Signed in; ``redirect_to`` is where the client should go next
      400:
        description: Missing credentials
      401:
        description: Invalid email or password
    """
    payload = request.get_json(silent=True) or {}

    email = (payload.get("email") or "").strip().lower()
    password = payload.get("password") or ""
    requested = payload.get("redirect") or request.args.get("redirect")

    if not email or not password:
        return jsonify({"error": "invalid_payload", "message": "email and password are required"}), 400

    record = (
        db.session.query(Profile, AuthAccount)
        .join(AuthAccount, AuthAccount.user_id == Profile.user_id)
        .filter(Profile.email == email)
        .first()
    )
    if not record:
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    profile, auth_account = record
    if not check_password_hash(auth_account.password_hash, password):
        return jsonify({"error": "unauthorized", "message": "invalid email or password"}), 401

    auth_account.last_login_at = datetime.now(timezone.utc)
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to update last login timestamp", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    token = build_token(profile.user_id)
    response = jsonify({
        "token": token,
        "user": profile.to_dict_basic(),
        "redirect_to": _landing_path(profile, requested),
    })
    set_session_cookie(response, token)
    return response, 200


@bp.post("/auth/sign-out")
def sign_out() -> tuple[dict[str, object], int]:
    response = jsonify({"signed_out": True, "redirect_to": "/"})
    clear_session_cookie(response)
    return response, 200


@bp.get("/auth/me")
def who_am_i() -> tuple[dict[str, object], int]:
    session = current_session()
    if session is None:
        return jsonify({"user": None}), 200
    return jsonify({"user": session.to_dict()}), 200


# --- Marketplace ------------------------------------------------------------


def _ready_providers_query():
    """Providers that satisfy every onboarding requirement."""
    has_service = exists().where(Service.provider_id == ProviderProfile.provider_id, Service.is_active.is_(True))
    has_availability = exists().where(
        AvailabilityRule.provider_id == ProviderProfile.provider_id,
        AvailabilityRule.is_active.is_(True),
    )
    return ProviderProfile.query.options(joinedload(ProviderProfile.profile)).filter(
        ProviderProfile.subscription_status == "active",
        ProviderProfile.business_name != "",
        ProviderProfile.address_line1 != "",
        ProviderProfile.city != "",
        has_service,
        has_availability,
    )


@bp.get("/")
def home() -> tuple[dict[str, object], int]:
    """Landing page data: featured providers and categories."""
    try:
        featured = _ready_providers_query().order_by(ProviderProfile.created_at.desc()).limit(6).all()
        categories = Category.query.order_by(Category.name).all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to load landing page", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({
        "featured_providers": [p.to_public_dict() for p in featured],
        "categories": [c.to_dict() for c in categories],
        "error": request.args.get("error"),
    }), 200


@bp.get("/providers")
def list_providers() -> tuple[dict[str, object], int]:
    """Search bookable providers.
    ---
    tags:
      - Providers
    parameters:
      - name: query
        in: query
        type: string
      - name: city
        in: query
        type: string
      - name: category
        in: query
        type: string
        description: Category slug
      - name: page
        in: query
        type: integer
        default: 1
      - name: limit
        in: query
        type: integer
        default: 12
        maximum: 50
    """
    try:
        query = request.args.get("query", "").strip()
        city = request.args.get("city", "").strip()
        category = request.args.get("category", "").strip()
        page = max(1, int(request.args.get("page", 1)))
        limit = min(50, max(1, int(request.args.get("limit", 12))))

        provider_query = _ready_providers_query()
        if query:
            provider_query = provider_query.filter(ProviderProfile.business_name.ilike(f"%{query}%"))
        if city:
            provider_query = provider_query.filter(ProviderProfile.city.ilike(city))
        if category:
            provider_query = provider_query.filter(
                exists().where(
                    Service.provider_id == ProviderProfile.provider_id,
                    Service.is_active.is_(True),
                    Service.category_id == Category.category_id,
                    Category.slug == category,
                )
            )

        total = provider_query.count()
        providers = (
            provider_query.order_by(ProviderProfile.business_name.asc())
            .limit(limit)
            .offset((page - 1) * limit)
            .all()
        )
        return jsonify({
            "providers": [p.to_public_dict() for p in providers],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": (total + limit - 1) // limit,
            },
            "filters": {"query": query, "city": city, "category": category},
        }), 200

    except (ValueError, TypeError) as exc:
        current_app.logger.warning("Invalid pagination parameters: %s", exc)
        return jsonify({"error": "invalid_parameters"}), 400
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch providers", exc_info=exc)
        return jsonify({"error": "database_error"}), 500


@bp.get("/providers/<provider_id>")
def get_provider(provider_id: str) -> tuple[dict[str, object], int]:
    """Provider page: profile, active services, public gallery, weekly hours."""
    try:
        provider = db.session.get(ProviderProfile, provider_id)
        if provider is None:
            return jsonify({"error": "not_found", "message": "Provider not found"}), 404

        services = (
            Service.query.filter_by(provider_id=provider_id, is_active=True)
            .order_by(Service.price_cents.asc())
            .all()
        )
        media = (
            MediaAsset.query.filter_by(provider_id=provider_id, is_public=True)
            .order_by(MediaAsset.created_at.desc())
            .all()
        )
        rules = (
            AvailabilityRule.query.filter_by(provider_id=provider_id, is_active=True)
            .order_by(AvailabilityRule.weekday)
            .all()
        )
        readiness = evaluate_readiness(provider_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to fetch provider %s", provider_id, exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({
        "provider": provider.to_public_dict(),
        "is_bookable": readiness.is_complete,
        "services": [s.to_dict() for s in services],
        "gallery": [m.to_dict() for m in media],
        "availability": [r.to_dict() for r in rules],
    }), 200


@bp.get("/providers/<provider_id>/slots")
def get_provider_slots(provider_id: str) -> tuple[dict[str, object], int]:
    """Free start times for one of the provider's services."""
    service_id = request.args.get("service_id", type=int)
    if not service_id:
        return jsonify({"error": "invalid_payload", "message": "service_id is required"}), 400

    try:
        provider = db.session.get(ProviderProfile, provider_id)
        if provider is None:
            return jsonify({"error": "not_found", "message": "Provider not found"}), 404
        service = db.session.get(Service, service_id)
        if service is None or service.provider_id != provider_id or not service.is_active:
            return jsonify({"error": "not_found", "message": "Service not found"}), 404

        slots = slots_for_service(provider, service)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to compute slots", exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({
        "provider_id": provider_id,
        "service_id": service_id,
        "timezone": provider.timezone,
        "slots": [slot.to_dict() for slot in slots],
    }), 200


# --- Settings ---------------------------------------------------------------


def _settings_for(user_id: str) -> UserSettings:
    settings = UserSettings.query.filter_by(user_id=user_id).first()
    if settings is None:
        settings = UserSettings(user_id=user_id, email_notifications=True, dark_mode=False)
        db.session.add(settings)
        db.session.commit()
    return settings


@bp.get("/settings")
def get_settings() -> tuple[dict[str, object], int]:
    """Current user's settings; a default row is created on first read."""
    session = require_session()
    try:
        settings = _settings_for(session.user_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Error getting user settings", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"settings": settings.to_dict()}), 200


@bp.put("/settings")
def update_settings() -> tuple[dict[str, object], int]:
    session = require_session()
    payload = request.get_json(silent=True) or {}

    updates = {}
    for key in ("email_notifications", "dark_mode"):
        if key in payload:
            if not isinstance(payload[key], bool):
                return jsonify({"error": "invalid_payload", "message": f"{key} must be a boolean"}), 400
            updates[key] = payload[key]

    try:
        settings = _settings_for(session.user_id)
        for key, value in updates.items():
            setattr(settings, key, value)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Error updating user settings", exc_info=exc)
        return jsonify({"error": "database_error", "message": "Failed to update settings"}), 500

    return jsonify({"success": True, "settings": settings.to_dict()}), 200


# --- Profiles ---------------------------------------------------------------


def save_avatar(user_id: str) -> tuple[dict[str, object], int]:
    """Store the multipart ``file`` image as the user's avatar.

    Shared by the client and provider account pages. The uploaded object
    is removed again when the profile row cannot be updated.
    """
    file = request.files.get("file")
    if file is None or not file.filename:
        return jsonify({"error": "invalid_payload", "message": "file is required"}), 400
    if storage.media_kind(file.filename) != "image":
        return jsonify({"error": "invalid_payload", "message": "Please upload an image file."}), 400
    if storage.file_size(file) > current_app.config["MAX_UPLOAD_BYTES"]:
        return jsonify({"error": "invalid_payload", "message": "File is too large."}), 413

    profile = db.session.get(Profile, user_id)
    if profile is None:
        raise ProfileMissing("Profile not found")

    try:
        key, url = storage.upload(file, f"avatars/{user_id}")
    except storage.StorageError as exc:
        current_app.logger.exception("Avatar upload failed for %s", user_id, exc_info=exc)
        return jsonify({"error": "upload_failed", "message": "Failed to upload image. Please try again."}), 502

    try:
        profile.avatar_url = url
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to save avatar for %s", user_id, exc_info=exc)
        storage.delete(key)
        return jsonify({"error": "database_error", "message": "Failed to update profile. Please try again."}), 500

    return jsonify({"success": True, "avatar_url": url}), 200


@bp.get("/clients/<client_id>")
def client_profile(client_id: str) -> tuple[dict[str, object], int]:
    """Client card shown to providers who have served (or will serve) that client.
    ---
    tags:
      - Clients
    responses:
      200:
        description: Public client details and the booking count with the caller
      403:
        description: Caller is not a provider with a booking for this client
      404:
        description: Unknown client
    """
    session = require_session()
    try:
        profile = Profile.query.filter_by(user_id=client_id, role="client").first()
        if profile is None:
            return jsonify({"error": "not_found", "message": "Client not found"}), 404

        if session.user_id == client_id:
            shared = Booking.query.filter_by(client_id=client_id).count()
        elif session.is_provider:
            shared = Booking.query.filter_by(client_id=client_id, provider_id=session.user_id).count()
            if not shared:
                return jsonify({"error": "forbidden", "message": "No bookings with this client"}), 403
        else:
            return jsonify({"error": "forbidden", "message": "No bookings with this client"}), 403
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to load client %s", client_id, exc_info=exc)
        return jsonify({"error": "database_error"}), 500

    return jsonify({
        "client": {
            "user_id": profile.user_id,
            "display_name": profile.display_name,
            "avatar_url": profile.avatar_url,
            "phone": profile.phone,
            "role": profile.role,
            "created_at": profile.created_at.isoformat() if profile.created_at else None,
        },
        "booking_count": shared,
    }), 200


# --- Admin ------------------------------------------------------------------


@bp.get("/admin/dashboard")
def admin_dashboard() -> tuple[dict[str, object], int]:
    """Platform counts. Access is enforced by the route guard."""
    try:
        ready = _ready_providers_query().count()
        stats = {
            "clients": Profile.query.filter_by(role="client").count(),
            "providers": Profile.query.filter_by(role="provider").count(),
            "ready_providers": ready,
            "active_subscriptions": ProviderProfile.query.filter_by(subscription_status="active").count(),
            "bookings": Booking.query.count(),
            "pending_bookings": Booking.query.filter_by(status="pending").count(),
            "admins": AdminUser.query.count(),
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to build admin dashboard", exc_info=exc)
        return jsonify({"error": "database_error"}), 500
    return jsonify({"stats": stats}), 200


# --- Wiring -----------------------------------------------------------------


def _handle_domain_error(exc: BeautyBookError):
    return jsonify({"error": exc.code, "message": exc.message}), exc.status


def register_routes(app: Flask) -> None:
    from .routes_client import bp_client
    from .routes_payments import bp_payments
    from .routes_provider import bp_provider

    app.register_blueprint(bp)
    app.register_blueprint(bp_provider)
    app.register_blueprint(bp_client)
    app.register_blueprint(bp_payments)
    app.register_error_handler(BeautyBookError, _handle_domain_error)

