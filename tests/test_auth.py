"""Sign-up, sign-in and session tokens."""
from __future__ import annotations

import pytest

from beautybook.auth import build_token, read_token
from beautybook.extensions import db
from beautybook.models import AuthAccount, ProviderProfile

PASSWORD = "password123"


def test_sign_up_client_201(app, client) -> None:
    response = client.post("/auth/sign-up", json={
        "display_name": "Jane Doe",
        "email": "Jane@Example.com",
        "password": "supersecret",
        "role": "client",
    })
    data = response.get_json()

    assert response.status_code == 201
    assert data["user"]["email"] == "jane@example.com"
    assert data["user"]["role"] == "client"
    assert data["redirect_to"] == "/client/dashboard"
    assert "bb_session=" in response.headers["Set-Cookie"]
    assert "HttpOnly" in response.headers["Set-Cookie"]

    with app.app_context():
        assert read_token(data["token"]) == data["user"]["user_id"]
        assert db.session.get(AuthAccount, data["user"]["user_id"]) is not None


def test_sign_up_provider_starts_onboarding(app, client) -> None:
    response = client.post("/auth/sign-up", json={
        "name": "Glow Studio Owner",
        "email": "owner@example.com",
        "password": "supersecret",
        "role": "provider",
    })
    data = response.get_json()

    assert response.status_code == 201
    assert data["redirect_to"] == "/provider/onboarding?step=profile"
    with app.app_context():
        provider = db.session.get(ProviderProfile, data["user"]["user_id"])
        assert provider is not None
        assert provider.subscription_status == "inactive"
        assert provider.has_business_details is False


def test_sign_up_duplicate_email_409(client, make_user) -> None:
    make_user(email="taken@example.com")

    response = client.post("/auth/sign-up", json={
        "display_name": "Someone",
        "email": "taken@example.com",
        "password": "supersecret",
    })

    assert response.status_code == 409
    assert response.get_json()["error"] == "conflict"


def test_sign_up_validation_400(client) -> None:
    short = client.post("/auth/sign-up", json={"display_name": "A", "email": "a@example.com", "password": "short"})
    missing = client.post("/auth/sign-up", json={"email": "a@example.com", "password": "supersecret"})
    bad_role = client.post("/auth/sign-up", json={
        "display_name": "A",
        "email": "a@example.com",
        "password": "supersecret",
        "role": "admin",
    })

    assert short.status_code == 400
    assert missing.status_code == 400
    assert bad_role.status_code == 400
    assert bad_role.get_json()["error"] == "invalid_role"


def test_sign_in_routes_by_role_and_readiness(client, make_user, make_provider) -> None:
    make_user(role="client", email="client@example.com")
    ready_id = make_provider()
    make_provider(payments=False, service=False, availability=False)

    as_client = client.post("/auth/sign-in", json={"email": "client@example.com", "password": PASSWORD})
    as_ready = client.post("/auth/sign-in", json={"email": "provider2@example.com", "password": PASSWORD})
    as_new = client.post("/auth/sign-in", json={"email": "provider3@example.com", "password": PASSWORD})

    assert as_client.status_code == 200
    assert as_client.get_json()["redirect_to"] == "/client/dashboard"
    assert as_ready.get_json()["user"]["user_id"] == ready_id
    assert as_ready.get_json()["redirect_to"] == "/provider/dashboard"
    assert as_new.get_json()["redirect_to"] == "/provider/onboarding?step=payments"


def test_sign_in_honours_local_redirect_only(client, make_user) -> None:
    make_user(email="client@example.com")

    local = client.post("/auth/sign-in?redirect=/client/bookings", json={
        "email": "client@example.com",
        "password": PASSWORD,
    })
    external = client.post("/auth/sign-in", json={
        "email": "client@example.com",
        "password": PASSWORD,
        "redirect": "//evil.example.com",
    })

    assert local.get_json()["redirect_to"] == "/client/bookings"
    assert external.get_json()["redirect_to"] == "/client/dashboard"


@pytest.mark.parametrize("target", ["/\\evil.example", "/\\/evil.example", "/\t/evil.example", "https://evil.example"])
def test_sign_in_rejects_disguised_external_redirect(client, make_user, target) -> None:
    make_user(email="client@example.com")

    response = client.post("/auth/sign-in", json={
        "email": "client@example.com",
        "password": PASSWORD,
        "redirect": target,
    })

    assert response.get_json()["redirect_to"] == "/client/dashboard"


def test_sign_in_wrong_password_401(client, make_user) -> None:
    make_user(email="client@example.com")

    response = client.post("/auth/sign-in", json={"email": "client@example.com", "password": "wrong-password"})
    unknown = client.post("/auth/sign-in", json={"email": "nobody@example.com", "password": PASSWORD})

    assert response.status_code == 401
    assert response.get_json()["error"] == "unauthorized"
    assert unknown.status_code == 401


def test_sign_out_clears_cookie(client) -> None:
    response = client.post("/auth/sign-out")

    assert response.status_code == 200
    assert response.get_json()["redirect_to"] == "/"
    assert "bb_session=;" in response.headers["Set-Cookie"]


def test_me_reports_session(client, make_user, auth_headers) -> None:
    user_id = make_user(role="client", email="me@example.com")

    anonymous = client.get("/auth/me")
    signed_in = client.get("/auth/me", headers=auth_headers(user_id))

    assert anonymous.get_json() == {"user": None}
    assert signed_in.get_json()["user"] == {"user_id": user_id, "email": "me@example.com", "role": "client"}


def test_expired_token_is_rejected(app) -> None:
    with app.app_context():
        token = build_token("user-1")
        app.config["AUTH_TOKEN_MAX_AGE"] = -1
        assert read_token(token) is None


def test_token_signed_with_other_key_is_rejected(app) -> None:
    with app.app_context():
        token = build_token("user-1")
        app.config["SECRET_KEY"] = "rotated"
        assert read_token(token) is None
