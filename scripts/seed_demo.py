#!/usr/bin/env python3
"""Seed categories and demo accounts for local development."""
import sys
from datetime import time
from pathlib import Path

from werkzeug.security import generate_password_hash

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from beautybook import create_app
from beautybook.extensions import db
from beautybook.models import AdminUser, AuthAccount, Category, Profile, ProviderProfile
from beautybook.onboarding import add_availability_rules, add_service, evaluate_readiness

DEMO_PASSWORD = "password123"

CATEGORIES = [
    ("Hair", "hair"),
    ("Nails", "nails"),
    ("Makeup", "makeup"),
    ("Skincare", "skincare"),
    ("Lashes & Brows", "lashes-brows"),
    ("Massage", "massage"),
]


def _account(email, display_name, role):
    profile = Profile.query.filter_by(email=email).first()
    if profile is not None:
        print(f"Account {email} already exists. Skipping...")
        return profile, False

    profile = Profile(email=email, display_name=display_name, role=role)
    db.session.add(profile)
    db.session.flush()
    db.session.add(AuthAccount(user_id=profile.user_id, password_hash=generate_password_hash(DEMO_PASSWORD)))
    db.session.commit()
    print(f"Created {role} {email}")
    return profile, True


def seed_demo():
    app = create_app()

    with app.app_context():
        db.create_all()

        for name, slug in CATEGORIES:
            if not Category.query.filter_by(slug=slug).first():
                db.session.add(Category(name=name, slug=slug))
        db.session.commit()
        print(f"{Category.query.count()} categories available")

        _account("client@beautybook.test", "Demo Client", "client")

        admin, created = _account("admin@beautybook.test", "Demo Admin", "client")
        if created:
            db.session.add(AdminUser(user_id=admin.user_id))
            db.session.commit()

        provider, created = _account("provider@beautybook.test", "Demo Provider", "provider")
        if created:
            db.session.add(ProviderProfile(
                provider_id=provider.user_id,
                business_name="Glow Studio",
                address_line1="12 Main Street",
                city="Newark",
                state="NJ",
                zip="07102",
                bio="Cuts, color and styling.",
                subscription_status="active",
            ))
            db.session.commit()

            hair = Category.query.filter_by(slug="hair").first()
            add_service(provider.user_id, title="Haircut", duration_minutes=45, price_cents=4500,
                        category_id=hair.category_id if hair else None)
            add_availability_rules(
                provider.user_id,
                [(weekday, time(9, 0), time(17, 0), 0) for weekday in range(1, 6)],
            )

        readiness = evaluate_readiness(provider.user_id)
        print(f"Demo provider ready: {readiness.is_complete}")
        print(f"All demo accounts use the password '{DEMO_PASSWORD}'")


if __name__ == "__main__":
    seed_demo()
