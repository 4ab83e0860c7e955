"""Provider onboarding: readiness evaluation and step recording.

A provider is ready to take bookings once four independent facts hold:
business details are filled in, the subscription is active, at least one
service is active and at least one availability rule is active. Nothing
here is cached; every call re-reads the database.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from enum import Enum

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from .errors import ProfileMissing, ReadFailure, WriteFailure
from .extensions import db
from .models import AvailabilityRule, ProviderProfile, Service, utc_now


class OnboardingStep(str, Enum):
    """Onboarding steps, declared in the order they must be completed."""

    PROFILE = "profile"
    PAYMENTS = "payments"
    SERVICE = "service"
    AVAILABILITY = "availability"

    @classmethod
    def parse(cls, value: str | None) -> "OnboardingStep | None":
        try:
            return cls(value)
        except ValueError:
            return None


REQUIREMENT_MESSAGES = {
    OnboardingStep.PROFILE: "Complete business profile",
    OnboardingStep.PAYMENTS: "Set up subscription and payments",
    OnboardingStep.SERVICE: "Create at least one service",
    OnboardingStep.AVAILABILITY: "Set up availability schedule",
}


@dataclass(frozen=True)
class Readiness:
    """Completion flags of one provider.

    ``next_step`` and ``is_complete`` are both derived from the flags.
    """

    profile: bool = False
    payments: bool = False
    service: bool = False
    availability: bool = False

    @property
    def next_step(self) -> OnboardingStep | None:
        for step in OnboardingStep:
            if not getattr(self, step.value):
                return step
        return None

    @property
    def is_complete(self) -> bool:
        return self.next_step is None

    @property
    def steps(self) -> dict[str, bool]:
        return {step.value: getattr(self, step.value) for step in OnboardingStep}

    def missing_requirements(self) -> list[str]:
        if self.next_step is None:
            return []
        return [REQUIREMENT_MESSAGES[self.next_step]]

    def to_dict(self) -> dict[str, object]:
        next_step = self.next_step
        return {
            "is_complete": self.is_complete,
            "next_step": next_step.value if next_step else None,
            "steps": self.steps,
            "missing_requirements": self.missing_requirements(),
        }


NOT_READY = Readiness()


def _fetch_profile(provider_id: str) -> ProviderProfile | None:
    return db.session.get(ProviderProfile, provider_id)


def _has_active_service(provider_id: str) -> bool:
    row = (
        db.session.query(Service.service_id)
        .filter(Service.provider_id == provider_id, Service.is_active.is_(True))
        .limit(1)
        .first()
    )
    return row is not None


def _has_active_availability(provider_id: str) -> bool:
    row = (
        db.session.query(AvailabilityRule.rule_id)
        .filter(AvailabilityRule.provider_id == provider_id, AvailabilityRule.is_active.is_(True))
        .limit(1)
        .first()
    )
    return row is not None


def read_readiness(provider_id: str) -> Readiness:
    """Strict variant of :func:`evaluate_readiness` that raises instead of degrading."""
    try:
        provider = _fetch_profile(provider_id)
        if provider is None:
            raise ProfileMissing(f"No provider profile for {provider_id}")

        return Readiness(
            profile=provider.has_business_details,
            payments=provider.subscription_status == "active",
            service=_has_active_service(provider_id),
            availability=_has_active_availability(provider_id),
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise ReadFailure(f"Readiness check failed for provider {provider_id}") from exc


def evaluate_readiness(provider_id: str) -> Readiness:
    """Compute the onboarding readiness of ``provider_id``.

    A missing profile row or a failed query yields ``NOT_READY`` (next step
    ``profile``); read errors are logged, never raised.
    """
    try:
        return read_readiness(provider_id)
    except ProfileMissing:
        return NOT_READY
    except ReadFailure as exc:
        current_app.logger.exception(exc.message, exc_info=exc.__cause__)
        return NOT_READY


@dataclass(frozen=True)
class StepResult:
    success: bool
    next_step: OnboardingStep | None = None
    is_complete: bool | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"success": self.success}
        if self.success:
            payload["next_step"] = self.next_step.value if self.next_step else None
            payload["is_complete"] = bool(self.is_complete)
        else:
            payload["error"] = self.error
        return payload


def complete_step(provider_id: str, step: OnboardingStep) -> StepResult:
    """Record activity for ``step`` and report where onboarding goes next.

    The claimed ``step`` is only logged; the outcome comes from a fresh
    readiness evaluation.
    """
    try:
        provider = _fetch_profile(provider_id)
        if provider is None:
            return StepResult(success=False, error="Provider not found")
        provider.updated_at = utc_now()
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to record onboarding step %s for provider %s", step.value, provider_id, exc_info=exc
        )
        return StepResult(success=False, error=str(exc))

    readiness = evaluate_readiness(provider_id)
    current_app.logger.info(
        "Provider %s completed onboarding step %s (next=%s)",
        provider_id,
        step.value,
        readiness.next_step.value if readiness.next_step else "none",
    )
    return StepResult(success=True, next_step=readiness.next_step, is_complete=readiness.is_complete)


# --- Step writers -----------------------------------------------------------

PROFILE_FIELDS = ("business_name", "address_line1", "address_line2", "city", "state", "zip", "bio")


def save_business_profile(
    provider_id: str, fields: dict[str, str | None], *, commit: bool = True
) -> ProviderProfile:
    """Upsert the provider's business details.

    With ``commit=False`` the changes are only flushed so the caller can add
    more edits to the same transaction.
    """
    try:
        provider = _fetch_profile(provider_id)
        if provider is None:
            provider = ProviderProfile(provider_id=provider_id)
            db.session.add(provider)
        for name in PROFILE_FIELDS:
            if name in fields:
                setattr(provider, name, fields[name] if fields[name] is not None else "")
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return provider
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise WriteFailure("Error saving profile. Please try again.") from exc


def activate_subscription(provider_id: str) -> None:
    """Mark the subscription active without going through Stripe."""
    try:
        provider = _fetch_profile(provider_id)
        if provider is None:
            raise ProfileMissing("Provider not found")
        provider.subscription_status = "active"
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise WriteFailure("Error activating subscription. Please try again.") from exc


def add_service(
    provider_id: str,
    *,
    title: str,
    duration_minutes: int,
    price_cents: int,
    description: str | None = None,
    category_id: int | None = None,
) -> Service:
    try:
        service = Service(
            provider_id=provider_id,
            title=title,
            description=description,
            duration_minutes=duration_minutes,
            price_cents=price_cents,
            category_id=category_id,
            is_active=True,
        )
        db.session.add(service)
        db.session.commit()
        return service
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise WriteFailure("Error saving service. Please try again.") from exc


def add_availability_rules(
    provider_id: str, rules: list[tuple[int, time, time, int]], *, replace: bool = False
) -> list[AvailabilityRule]:
    """Insert weekly rules given as ``(weekday, start, end, buffer_minutes)`` tuples.

    With ``replace`` the provider's existing rules are removed first.
    """
    try:
        if replace:
            AvailabilityRule.query.filter_by(provider_id=provider_id).delete()
        created = [
            AvailabilityRule(
                provider_id=provider_id,
                weekday=weekday,
                start_time=start,
                end_time=end,
                buffer_minutes=buffer_minutes,
                is_active=True,
            )
            for weekday, start, end, buffer_minutes in rules
        ]
        db.session.add_all(created)
        db.session.commit()
        return created
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise WriteFailure("Error saving availability. Please try again.") from exc
