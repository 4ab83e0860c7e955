"""Utility to set an account password (and optionally grant admin) for local development."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

from werkzeug.security import generate_password_hash

# Ensure the project root is on sys.path so ``beautybook`` can be imported when the script is executed directly.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from beautybook import create_app
from beautybook.extensions import db
from beautybook.models import AdminUser, AuthAccount, Profile, ProviderProfile


def set_password(email: str, password: str, role: str = "client", admin: bool = False) -> None:
    if role not in ("client", "provider"):
        print(f"Error: Invalid role '{role}'. Valid roles are: client, provider")
        return

    app = create_app()
    with app.app_context():
        profile = Profile.query.filter_by(email=email).first()
        if profile is None:
            profile = Profile(display_name=email.split("@")[0], email=email, role=role)
            db.session.add(profile)
            db.session.flush()
            if role == "provider":
                db.session.add(ProviderProfile(provider_id=profile.user_id))

        account = db.session.get(AuthAccount, profile.user_id)
        if account is None:
            account = AuthAccount(user_id=profile.user_id, password_hash="")
            db.session.add(account)
        account.password_hash = generate_password_hash(password)

        if admin and db.session.get(AdminUser, profile.user_id) is None:
            db.session.add(AdminUser(user_id=profile.user_id))

        db.session.commit()
        print(f"Password updated for {email} (role={profile.role}, admin={admin})")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("email")
    parser.add_argument("password")
    parser.add_argument("--role", default="client", choices=["client", "provider"])
    parser.add_argument("--admin", action="store_true", help="grant access to /admin")
    args = parser.parse_args()
    set_password(args.email, args.password, args.role, args.admin)


if __name__ == "__main__":
    main()
