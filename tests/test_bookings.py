"""Booking creation, cancellation and client views."""
from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from beautybook.booking import provider_now
from beautybook.extensions import db
from beautybook.models import Booking, ProviderProfile, Service


def _service_id(app, provider_id: str) -> int:
    with app.app_context():
        return Service.query.filter_by(provider_id=provider_id).first().service_id


def _first_slot(client, provider_id: str, service_id: int) -> str:
    response = client.get(f"/providers/{provider_id}/slots?service_id={service_id}")
    assert response.status_code == 200
    return response.get_json()["slots"][0]["start_time"]


@pytest.fixture
def booked(app, client, make_provider, make_user, auth_headers):
    """A ready provider and a client holding one pending booking."""
    provider_id = make_provider()
    client_id = make_user(role="client")
    service_id = _service_id(app, provider_id)
    start = _first_slot(client, provider_id, service_id)

    response = client.post(
        "/api/bookings",
        json={"provider_id": provider_id, "service_id": service_id, "start_time": start, "notes": "First visit"},
        headers=auth_headers(client_id),
    )
    assert response.status_code == 201
    return {
        "provider_id": provider_id,
        "client_id": client_id,
        "service_id": service_id,
        "start": start,
        "booking": response.get_json()["booking"],
    }


def test_booking_is_pending_and_unpaid(booked) -> None:
    booking = booked["booking"]

    assert booking["status"] == "pending"
    assert booking["payment_status"] == "unpaid"
    assert booking["start_time"] == booked["start"]
    assert booking["total_price_cents"] == 5000
    assert booking["platform_fee_cents"] == 500
    assert booking["notes"] == "First visit"


def test_booked_slot_disappears(client, booked) -> None:
    response = client.get(f"/providers/{booked['provider_id']}/slots?service_id={booked['service_id']}")

    starts = [slot["start_time"] for slot in response.get_json()["slots"]]
    assert booked["start"] not in starts


def test_double_booking_is_rejected(client, booked, make_user, auth_headers) -> None:
    other_client = make_user(role="client")

    response = client.post(
        "/api/bookings",
        json={"provider_id": booked["provider_id"], "service_id": booked["service_id"], "start_time": booked["start"]},
        headers=auth_headers(other_client),
    )

    assert response.status_code == 409
    assert response.get_json()["error"] == "slot_unavailable"


def test_misaligned_start_is_rejected(app, client, make_provider, make_user, auth_headers) -> None:
    provider_id = make_provider()
    client_id = make_user(role="client")
    service_id = _service_id(app, provider_id)
    start = _first_slot(client, provider_id, service_id)[:-5] + "07:00"

    response = client.post(
        "/api/bookings",
        json={"provider_id": provider_id, "service_id": service_id, "start_time": start},
        headers=auth_headers(client_id),
    )

    assert response.status_code == 409


def test_unready_provider_cannot_be_booked(app, client, make_provider, make_user, auth_headers) -> None:
    provider_id = make_provider(payments=False)
    client_id = make_user(role="client")
    service_id = _service_id(app, provider_id)

    response = client.post(
        "/api/bookings",
        json={"provider_id": provider_id, "service_id": service_id, "start_time": "2030-01-07T09:00:00"},
        headers=auth_headers(client_id),
    )

    assert response.status_code == 409
    assert response.get_json()["error"] == "provider_unavailable"


def test_booking_validation(client, make_user, auth_headers) -> None:
    client_id = make_user(role="client")

    bad_time = client.post(
        "/api/bookings",
        json={"provider_id": "p", "service_id": 1, "start_time": "tomorrow"},
        headers=auth_headers(client_id),
    )
    unknown_provider = client.post(
        "/api/bookings",
        json={"provider_id": "missing", "service_id": 1, "start_time": "2030-01-07T09:00:00"},
        headers=auth_headers(client_id),
    )

    assert bad_time.status_code == 400
    assert unknown_provider.status_code == 404


def test_providers_cannot_book(app, client, make_provider, auth_headers) -> None:
    provider_id = make_provider()

    response = client.post(
        "/api/bookings",
        json={"provider_id": provider_id, "service_id": _service_id(app, provider_id), "start_time": "2030-01-07T09:00:00"},
        headers=auth_headers(provider_id),
    )

    assert response.status_code == 403
    assert response.get_json()["error"] == "forbidden"


def test_client_lists_bookings(client, booked, auth_headers) -> None:
    headers = auth_headers(booked["client_id"])

    everything = client.get("/client/bookings", headers=headers)
    upcoming = client.get("/client/bookings?scope=upcoming", headers=headers)
    invalid = client.get("/client/bookings?scope=soon", headers=headers)

    assert [b["id"] for b in everything.get_json()["bookings"]] == [booked["booking"]["id"]]
    assert len(upcoming.get_json()["bookings"]) == 1
    assert invalid.status_code == 400


def _insert_booking(app, client_id: str, provider_id: str, hours_from_now: int) -> int:
    """Store a confirmed booking relative to the provider's own wall clock."""
    with app.app_context():
        provider = db.session.get(ProviderProfile, provider_id)
        service = Service.query.filter_by(provider_id=provider_id).first()
        start = provider_now(provider).replace(second=0, microsecond=0) + timedelta(hours=hours_from_now)
        booking = Booking(
            client_id=client_id,
            provider_id=provider_id,
            service_id=service.service_id,
            start_time=start,
            end_time=start + timedelta(minutes=service.duration_minutes),
            timezone=provider.timezone,
            status="confirmed",
            total_price_cents=service.price_cents,
        )
        db.session.add(booking)
        db.session.commit()
        return booking.booking_id


def test_upcoming_uses_each_provider_clock(app, client, make_provider, make_user, auth_headers) -> None:
    west_id = make_provider(timezone="America/Los_Angeles")
    east_id = make_provider(timezone="Asia/Tokyo")
    client_id = make_user(role="client")
    headers = auth_headers(client_id)
    soon = _insert_booking(app, client_id, west_id, 2)
    earlier = _insert_booking(app, client_id, east_id, -2)

    upcoming = client.get("/client/bookings?scope=upcoming", headers=headers).get_json()["bookings"]
    past = client.get("/client/bookings?scope=past", headers=headers).get_json()["bookings"]
    dashboard = client.get("/client/dashboard", headers=headers).get_json()

    assert [b["id"] for b in upcoming] == [soon]
    assert [b["id"] for b in past] == [earlier]
    assert [b["id"] for b in dashboard["upcoming_bookings"]] == [soon]


def test_client_dashboard_counts(client, booked, auth_headers) -> None:
    response = client.get("/client/dashboard", headers=auth_headers(booked["client_id"]))
    data = response.get_json()

    assert response.status_code == 200
    assert data["stats"]["total_bookings"] == 1
    assert len(data["upcoming_bookings"]) == 1


def test_cancel_booking(app, client, booked, make_user, auth_headers) -> None:
    booking_id = booked["booking"]["id"]
    stranger = make_user(role="client")

    forbidden = client.post(f"/client/bookings/{booking_id}/cancel", headers=auth_headers(stranger))
    canceled = client.post(
        f"/client/bookings/{booking_id}/cancel",
        json={"reason": "Schedule conflict"},
        headers=auth_headers(booked["client_id"]),
    )
    again = client.post(f"/client/bookings/{booking_id}/cancel", headers=auth_headers(booked["client_id"]))

    assert forbidden.status_code == 404
    assert canceled.status_code == 200
    assert canceled.get_json()["booking"]["status"] == "canceled"
    assert again.status_code == 409
    with app.app_context():
        assert db.session.get(Booking, booking_id).cancellation_reason == "Schedule conflict"


def test_canceled_slot_is_free_again(client, booked, auth_headers) -> None:
    client.post(f"/client/bookings/{booked['booking']['id']}/cancel", headers=auth_headers(booked["client_id"]))

    response = client.get(f"/providers/{booked['provider_id']}/slots?service_id={booked['service_id']}")

    assert booked["start"] in [slot["start_time"] for slot in response.get_json()["slots"]]


def test_payment_intent_for_booking(app, client, booked, auth_headers) -> None:
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    booking_id = booked["booking"]["id"]

    with patch("beautybook.billing.stripe") as mock_stripe:
        mock_stripe.PaymentIntent.create.return_value = MagicMock(id="pi_123", client_secret="pi_123_secret")
        response = client.post(f"/api/bookings/{booking_id}/payment-intent", headers=auth_headers(booked["client_id"]))

    data = response.get_json()
    assert response.status_code == 200
    assert data["client_secret"] == "pi_123_secret"
    assert data["amount"] == 5000
    kwargs = mock_stripe.PaymentIntent.create.call_args.kwargs
    assert kwargs["amount"] == 5000
    assert kwargs["metadata"]["booking_id"] == str(booking_id)
    with app.app_context():
        assert db.session.get(Booking, booking_id).stripe_payment_intent_id == "pi_123"


def test_payment_intent_without_stripe(client, booked, auth_headers) -> None:
    response = client.post(
        f"/api/bookings/{booked['booking']['id']}/payment-intent",
        headers=auth_headers(booked["client_id"]),
    )

    assert response.status_code == 500
    assert response.get_json()["error"] == "server_error"
