"""Bookable time-slot generation and booking creation."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import WriteFailure
from .extensions import db
from .models import AvailabilityException, AvailabilityRule, Booking, ProviderProfile, Service

# Bookings in these states occupy their time range.
BLOCKING_STATUSES = ("pending", "confirmed")


@dataclass(frozen=True)
class Slot:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end

    def to_dict(self) -> dict[str, str]:
        return {"start_time": self.start.isoformat(), "end_time": self.end.isoformat()}


def sunday_weekday(day: date) -> int:
    """Weekday number with 0=Sunday, as stored on availability rules."""
    return (day.weekday() + 1) % 7


def provider_zone(provider: ProviderProfile):
    """The provider's timezone, falling back to UTC when the name is unknown."""
    if not provider.timezone:
        return timezone.utc
    try:
        return ZoneInfo(provider.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        current_app.logger.warning("Unknown timezone %r for provider %s", provider.timezone, provider.provider_id)
        return timezone.utc


def provider_now(provider: ProviderProfile) -> datetime:
    """Current wall-clock time in the provider's timezone (naive)."""
    return datetime.now(provider_zone(provider)).replace(tzinfo=None)


def generate_slots(
    rules: list[AvailabilityRule],
    exceptions: list[AvailabilityException],
    booked: list[tuple[datetime, datetime]],
    *,
    duration_minutes: int,
    now: datetime,
    days: int = 30,
    interval_minutes: int = 30,
) -> list[Slot]:
    """Return the free slots of the next ``days`` days starting today.

    Slots start every ``interval_minutes`` from the rule's opening time and
    must finish (plus the rule's buffer) before closing. Exceptions close
    a day or override its hours.
    """
    rules_by_weekday: dict[int, AvailabilityRule] = {}
    for rule in rules:
        if rule.is_active is False:
            continue
        rules_by_weekday.setdefault(rule.weekday, rule)
    exceptions_by_date = {exc.date: exc for exc in exceptions}

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=interval_minutes)
    slots: list[Slot] = []

    for offset in range(days):
        day = now.date() + timedelta(days=offset)
        rule = rules_by_weekday.get(sunday_weekday(day))
        if rule is None:
            continue

        exception = exceptions_by_date.get(day)
        if exception is not None and not exception.is_open:
            continue

        opens = (exception.start_time if exception and exception.start_time else None) or rule.start_time
        closes = (exception.end_time if exception and exception.end_time else None) or rule.end_time
        if opens is None or closes is None:
            continue

        buffer = timedelta(minutes=rule.buffer_minutes or 0)
        current = datetime.combine(day, opens)
        day_end = datetime.combine(day, closes)

        while current < day_end:
            slot = Slot(current, current + duration)
            if slot.end + buffer <= day_end and current > now:
                if not any(slot.overlaps(start, end) for start, end in booked):
                    slots.append(slot)
            current += step

    return slots


def slots_for_service(provider: ProviderProfile, service: Service, now: datetime | None = None) -> list[Slot]:
    now = now or provider_now(provider)
    window_days = current_app.config["BOOKING_WINDOW_DAYS"]
    rules = AvailabilityRule.query.filter_by(provider_id=provider.provider_id, is_active=True).all()
    exceptions = AvailabilityException.query.filter(
        AvailabilityException.provider_id == provider.provider_id,
        AvailabilityException.date >= now.date(),
        AvailabilityException.date <= now.date() + timedelta(days=window_days),
    ).all()
    booked = [
        (booking.start_time, booking.end_time)
        for booking in Booking.query.filter(
            Booking.provider_id == provider.provider_id,
            Booking.status.in_(BLOCKING_STATUSES),
            Booking.end_time >= datetime.combine(now.date(), time.min),
        ).all()
    ]
    return generate_slots(
        rules,
        exceptions,
        booked,
        duration_minutes=service.duration_minutes,
        now=now,
        days=window_days,
        interval_minutes=current_app.config["SLOT_INTERVAL_MINUTES"],
    )


def platform_fee(price_cents: int, fee_bps: int) -> int:
    return int(round(price_cents * fee_bps / 10000))


def create_booking(
    client_id: str,
    provider: ProviderProfile,
    service: Service,
    start: datetime,
    notes: str | None = None,
) -> Booking:
    """Insert a pending, unpaid booking. The caller checks the slot is free."""
    booking = Booking(
        client_id=client_id,
        provider_id=provider.provider_id,
        service_id=service.service_id,
        start_time=start,
        end_time=start + timedelta(minutes=service.duration_minutes),
        timezone=provider.timezone,
        status="pending",
        payment_status="unpaid",
        total_price_cents=service.price_cents,
        platform_fee_cents=platform_fee(service.price_cents, current_app.config["PLATFORM_FEE_BPS"]),
        notes=notes,
    )
    try:
        db.session.add(booking)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise WriteFailure("Failed to create booking. Please try again.") from exc
    return booking


def provider_earnings(provider_id: str, since: datetime) -> dict[str, int]:
    """Revenue, fees and net earnings of completed bookings since ``since``."""
    bookings = Booking.query.filter(
        Booking.provider_id == provider_id,
        Booking.status == "completed",
        Booking.start_time >= since,
    ).all()
    revenue = sum(b.total_price_cents or 0 for b in bookings)
    fees = sum(b.platform_fee_cents or 0 for b in bookings)
    return {
        "total_earnings": revenue - fees,
        "total_revenue": revenue,
        "total_fees": fees,
        "booking_count": len(bookings),
    }
