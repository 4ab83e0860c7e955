"""Database models for the BeautyBook marketplace."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


def _iso(value) -> str | None:
    return value.isoformat() if value else None


class Profile(db.Model):
    """Account record shared by clients and providers."""

    __tablename__ = "profiles"

    user_id = db.Column(db.String(36), primary_key=True, default=new_uuid)
    email = db.Column(db.String(255), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    role = db.Column(
        db.Enum(
            "client",
            "provider",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="client",
    )
    phone = db.Column(db.String(30))
    avatar_url = db.Column(db.String(500))
    locale = db.Column(db.String(10))
    stripe_customer_id = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    auth_account = db.relationship("AuthAccount", back_populates="profile", uselist=False)
    provider_profile = db.relationship("ProviderProfile", back_populates="profile", uselist=False)

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "user_id": self.user_id,
            "display_name": self.display_name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
            "avatar_url": self.avatar_url,
        }


class AuthAccount(db.Model):
    __tablename__ = "auth_accounts"

    user_id = db.Column(db.String(36), db.ForeignKey("profiles.user_id"), primary_key=True)
    password_hash = db.Column(db.String(255), nullable=False)
    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    profile = db.relationship("Profile", back_populates="auth_account")


class AdminUser(db.Model):
    __tablename__ = "admin_users"

    user_id = db.Column(db.String(36), db.ForeignKey("profiles.user_id"), primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)


class ProviderProfile(db.Model):
    """Business details and billing state of a provider."""

    __tablename__ = "provider_profiles"

    provider_id = db.Column(db.String(36), db.ForeignKey("profiles.user_id"), primary_key=True)
    business_name = db.Column(db.String(150), nullable=False, server_default="")
    bio = db.Column(db.Text)
    address_line1 = db.Column(db.String(150), nullable=False, server_default="")
    address_line2 = db.Column(db.String(150))
    city = db.Column(db.String(100), nullable=False, server_default="")
    state = db.Column(db.String(100), nullable=False, server_default="")
    zip = db.Column(db.String(20), nullable=False, server_default="")
    timezone = db.Column(db.String(64), nullable=False, server_default="America/New_York")
    hero_image_url = db.Column(db.String(500))
    is_verified = db.Column(db.Boolean, nullable=False, server_default="0")
    subscription_status = db.Column(
        db.Enum(
            "active",
            "inactive",
            "past_due",
            "canceled",
            name="subscription_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="inactive",
    )
    subscription_price_id = db.Column(db.String(100))
    subscription_current_period_end = db.Column(db.DateTime)
    stripe_connect_id = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    profile = db.relationship("Profile", back_populates="provider_profile")

    @property
    def has_business_details(self) -> bool:
        return bool(self.business_name and self.address_line1 and self.city)

    def to_dict(self) -> dict[str, object]:
        return {
            "provider_id": self.provider_id,
            "business_name": self.business_name,
            "bio": self.bio,
            "address": {
                "line1": self.address_line1,
                "line2": self.address_line2,
                "city": self.city,
                "state": self.state,
                "zip": self.zip,
            },
            "timezone": self.timezone,
            "hero_image_url": self.hero_image_url,
            "is_verified": bool(self.is_verified),
            "subscription_status": self.subscription_status,
            "stripe_connect_id": self.stripe_connect_id,
            "display_name": self.profile.display_name if self.profile else None,
            "avatar_url": self.profile.avatar_url if self.profile else None,
        }

    def to_public_dict(self) -> dict[str, object]:
        payload = self.to_dict()
        payload.pop("subscription_status")
        payload.pop("stripe_connect_id")
        return payload


class Category(db.Model):
    __tablename__ = "categories"

    category_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {"id": self.category_id, "name": self.name, "slug": self.slug}


class Service(db.Model):
    """A service a provider offers."""

    __tablename__ = "services"

    service_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(36), db.ForeignKey("provider_profiles.provider_id"), nullable=False)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.category_id"), nullable=True)
    title = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    duration_minutes = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    provider = db.relationship("ProviderProfile")
    category = db.relationship("Category")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "provider_id": self.provider_id,
            "category": self.category.to_dict() if self.category else None,
            "title": self.title,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "is_active": bool(self.is_active),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class AvailabilityRule(db.Model):
    """Weekly opening hours (weekday 0=Sunday .. 6=Saturday)."""

    __tablename__ = "availability_rules"

    rule_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(36), db.ForeignKey("provider_profiles.provider_id"), nullable=False)
    weekday = db.Column(db.Integer, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.rule_id,
            "provider_id": self.provider_id,
            "weekday": self.weekday,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "buffer_minutes": self.buffer_minutes or 0,
            "is_active": bool(self.is_active),
        }


class AvailabilityException(db.Model):
    """A single date that is closed or has different hours."""

    __tablename__ = "availability_exceptions"

    exception_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(36), db.ForeignKey("provider_profiles.provider_id"), nullable=False)
    date = db.Column(db.Date, nullable=False)
    is_open = db.Column(db.Boolean, nullable=False, default=False)
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    note = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.exception_id,
            "date": self.date.isoformat(),
            "is_open": bool(self.is_open),
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "note": self.note,
        }


class Booking(db.Model):
    """Client booking of a provider's service.

    ``start_time``/``end_time`` are wall-clock times in ``timezone``.
    """

    __tablename__ = "bookings"

    booking_id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.String(36), db.ForeignKey("profiles.user_id"), nullable=False)
    provider_id = db.Column(db.String(36), db.ForeignKey("provider_profiles.provider_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    start_time = db.Column(db.DateTime, nullable=False)
    end_time = db.Column(db.DateTime, nullable=False)
    timezone = db.Column(db.String(64), nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "confirmed",
            "canceled",
            "completed",
            "refunded",
            "no_show",
            name="booking_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    payment_status = db.Column(
        db.Enum(
            "unpaid",
            "paid",
            "refunded",
            name="payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="unpaid",
    )
    total_price_cents = db.Column(db.Integer, nullable=False)
    platform_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    stripe_payment_intent_id = db.Column(db.String(100), unique=True)
    notes = db.Column(db.Text)
    cancellation_reason = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    client = db.relationship("Profile")
    provider = db.relationship("ProviderProfile")
    service = db.relationship("Service")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.booking_id,
            "client_id": self.client_id,
            "client": {
                "display_name": self.client.display_name,
                "phone": self.client.phone,
            } if self.client else None,
            "provider_id": self.provider_id,
            "provider_name": self.provider.business_name if self.provider else None,
            "service_id": self.service_id,
            "service": {
                "title": self.service.title,
                "duration_minutes": self.service.duration_minutes,
                "price_cents": self.service.price_cents,
            } if self.service else None,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "timezone": self.timezone,
            "status": self.status,
            "payment_status": self.payment_status,
            "total_price_cents": self.total_price_cents,
            "platform_fee_cents": self.platform_fee_cents,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_at": _iso(self.created_at),
        }


class MediaAsset(db.Model):
    """Gallery image or video uploaded by a provider."""

    __tablename__ = "media_assets"

    media_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.String(36), db.ForeignKey("provider_profiles.provider_id"), nullable=False)
    type = db.Column(
        db.Enum("image", "video", name="media_type", native_enum=False, validate_strings=True),
        nullable=False,
    )
    storage_path = db.Column(db.String(500), nullable=False)
    url = db.Column(db.String(500), nullable=False)
    size_bytes = db.Column(db.Integer, nullable=False)
    is_public = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.media_id,
            "provider_id": self.provider_id,
            "type": self.type,
            "url": self.url,
            "size_bytes": self.size_bytes,
            "is_public": bool(self.is_public),
            "created_at": _iso(self.created_at),
        }


class UserSettings(db.Model):
    __tablename__ = "user_settings"

    settings_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey("profiles.user_id"), unique=True, nullable=False)
    email_notifications = db.Column(db.Boolean, nullable=False, default=True)
    dark_mode = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.settings_id,
            "user_id": self.user_id,
            "email_notifications": bool(self.email_notifications),
            "dark_mode": bool(self.dark_mode),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
