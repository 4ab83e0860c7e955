"""pytest configuration: app/client fixtures and data factories."""
from __future__ import annotations

import sys
from datetime import time
from pathlib import Path

import pytest

# Ensure the project root is available on sys.path so tests can import the app package.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from werkzeug.security import generate_password_hash  # noqa: E402

from beautybook import create_app  # noqa: E402
from beautybook.auth import build_token  # noqa: E402
from beautybook.config import TestingConfig  # noqa: E402
from beautybook.extensions import db  # noqa: E402
from beautybook.models import (AdminUser, AuthAccount, AvailabilityRule, Category, Profile,  # noqa: E402
                               ProviderProfile, Service)

PASSWORD = "password123"


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create an account and return its user id."""
    counter = {"n": 0}

    def _make(role: str = "client", email: str | None = None, admin: bool = False,
              display_name: str = "Test User") -> str:
        counter["n"] += 1
        with app.app_context():
            profile = Profile(
                email=email or f"{role}{counter['n']}@example.com",
                display_name=display_name,
                role=role,
            )
            db.session.add(profile)
            db.session.flush()
            db.session.add(AuthAccount(user_id=profile.user_id, password_hash=generate_password_hash(PASSWORD)))
            if admin:
                db.session.add(AdminUser(user_id=profile.user_id))
            db.session.commit()
            return profile.user_id

    return _make


@pytest.fixture
def make_provider(app, make_user):
    """Create a provider with the requested onboarding facts in place."""

    def _make(profile: bool = True, payments: bool = True, service: bool = True,
              availability: bool = True, timezone: str = "UTC", business_name: str = "Glow Studio",
              city: str = "Newark") -> str:
        provider_id = make_user(role="provider", display_name="Provider User")
        with app.app_context():
            provider = ProviderProfile(provider_id=provider_id, timezone=timezone)
            if profile:
                provider.business_name = business_name
                provider.address_line1 = "12 Main Street"
                provider.city = city
                provider.state = "NJ"
                provider.zip = "07102"
            provider.subscription_status = "active" if payments else "inactive"
            db.session.add(provider)
            db.session.flush()
            if service:
                db.session.add(Service(
                    provider_id=provider_id,
                    title="Haircut",
                    duration_minutes=60,
                    price_cents=5000,
                    is_active=True,
                ))
            if availability:
                db.session.add_all([
                    AvailabilityRule(
                        provider_id=provider_id,
                        weekday=weekday,
                        start_time=time(9, 0),
                        end_time=time(17, 0),
                        is_active=True,
                    )
                    for weekday in range(7)
                ])
            db.session.commit()
        return provider_id

    return _make


@pytest.fixture
def make_category(app):
    def _make(name: str = "Hair", slug: str = "hair") -> int:
        with app.app_context():
            category = Category(name=name, slug=slug)
            db.session.add(category)
            db.session.commit()
            return category.category_id

    return _make


@pytest.fixture
def auth_headers(app):
    """Bearer header carrying a session token for ``user_id``."""

    def _headers(user_id: str) -> dict[str, str]:
        with app.app_context():
            return {"Authorization": f"Bearer {build_token(user_id)}"}

    return _headers
