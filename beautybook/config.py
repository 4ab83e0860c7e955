"""Configuration objects for the BeautyBook backend."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Type

basedir = Path(__file__).resolve().parent


DEV_SECRET_KEY = "dev-secret-key"


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


class Config:
    """Base configuration shared by all environments."""

    SECRET_KEY: str | None = os.getenv("SECRET_KEY", DEV_SECRET_KEY)
    SQLALCHEMY_DATABASE_URI: str = os.getenv("DATABASE_URL", "sqlite:///:memory:")
    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False

    # Session token issued at sign-in, carried in a cookie or a Bearer header.
    AUTH_COOKIE_NAME: str = os.getenv("AUTH_COOKIE_NAME", "bb_session")
    AUTH_TOKEN_MAX_AGE: int = int(os.getenv("AUTH_TOKEN_MAX_AGE", "86400"))

    SITE_URL: str = os.getenv("SITE_URL", "http://localhost:5000")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    STRIPE_SECRET_KEY: str | None = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET: str | None = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_PRICE_ID_STARTER: str = os.getenv("STRIPE_PRICE_ID_STARTER", "price_starter_fallback")
    STRIPE_PRICE_ID_PRO: str = os.getenv("STRIPE_PRICE_ID_PRO", "price_pro_fallback")
    STRIPE_PRICE_ID_ELITE: str = os.getenv("STRIPE_PRICE_ID_ELITE", "price_elite_fallback")
    STRIPE_BILLING_PORTAL_CONFIGURATION_ID: str | None = os.getenv(
        "STRIPE_BILLING_PORTAL_CONFIGURATION_ID"
    )
    STRIPE_CURRENCY: str = os.getenv("STRIPE_CURRENCY", "usd")
    STRIPE_CONNECT_CLIENT_ID: str | None = os.getenv("STRIPE_CONNECT_CLIENT_ID")

    # Onboarding payments step activates the subscription without Stripe.
    SUBSCRIPTION_STUB_ENABLED: bool = _env_flag("SUBSCRIPTION_STUB_ENABLED", "0")

    PLATFORM_FEE_BPS: int = int(os.getenv("PLATFORM_FEE_BPS", "1000"))
    BOOKING_WINDOW_DAYS: int = int(os.getenv("BOOKING_WINDOW_DAYS", "30"))
    SLOT_INTERVAL_MINUTES: int = int(os.getenv("SLOT_INTERVAL_MINUTES", "30"))

    AWS_S3_BUCKET: str = os.getenv("AWS_S3_BUCKET", "beautybook-media")
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))


class DevelopmentConfig(Config):
    """Configuration suitable for local development."""

    _db_path = basedir.parent / "beautybook-dev.db"
    SQLALCHEMY_DATABASE_URI = os.getenv("DEV_DATABASE_URL", f"sqlite:///{_db_path}")
    SUBSCRIPTION_STUB_ENABLED = _env_flag("SUBSCRIPTION_STUB_ENABLED", "1")
    DEBUG = True


class TestingConfig(Config):
    """Configuration used by the test-suite."""

    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = None
    SUBSCRIPTION_STUB_ENABLED = True


class ProductionConfig(Config):
    """Configuration tailored for production deployments."""

    SECRET_KEY = os.getenv("SECRET_KEY")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///beautybook.db")
    DEBUG = False
    # create_app refuses to start without a real SECRET_KEY
    REQUIRE_SECRET_KEY = True


CONFIG_MAP: Dict[str, Type[Config]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}

# Stripe settings that must be present before payments can go live.
REQUIRED_STRIPE_KEYS = (
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "STRIPE_PRICE_ID_STARTER",
    "STRIPE_PRICE_ID_PRO",
    "STRIPE_PRICE_ID_ELITE",
    "SITE_URL",
)


def get_config(name: str | None) -> Type[Config]:
    """Retrieve the configuration class matching the supplied name."""

    if not name:
        return DevelopmentConfig
    return CONFIG_MAP.get(name.lower(), DevelopmentConfig)


def missing_stripe_settings(config: Any) -> list[str]:
    """Return the Stripe keys that are unset in ``config`` (a Flask config mapping)."""

    return [key for key in REQUIRED_STRIPE_KEYS if not config.get(key)]
