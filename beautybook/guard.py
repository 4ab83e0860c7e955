"""Route guard deciding, per request, whether a page may be served.

Providers who have not finished onboarding are pushed to the onboarding
flow, callers are kept inside the route space of their role, and
anonymous callers are sent to sign-in.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlencode

from flask import Flask, current_app, redirect, request

from .auth import SessionContext, current_session, is_admin
from .onboarding import OnboardingStep, Readiness, evaluate_readiness

PUBLIC_ROUTES = ("/", "/providers", "/auth")

# JSON endpoints answer 401/403 themselves instead of redirecting.
UNGUARDED_PREFIXES = ("/api/", "/health", "/db-health", "/static/")

SIGN_IN_PATH = "/auth/sign-in"
PROVIDER_DASHBOARD = "/provider/dashboard"
PROVIDER_ONBOARDING = "/provider/onboarding"
CLIENT_DASHBOARD = "/client/dashboard"
INVALID_ROLE_PATH = "/auth/sign-in?error=invalid-role"
ACCESS_DENIED_PATH = "/?error=access-denied"


@dataclass(frozen=True)
class GuardDecision:
    location: str | None = None

    @property
    def allowed(self) -> bool:
        return self.location is None


ALLOW = GuardDecision()


def _in_space(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def is_public_path(path: str) -> bool:
    return any(_in_space(path, route) for route in PUBLIC_ROUTES)


def is_guarded_path(path: str) -> bool:
    if is_public_path(path):
        return False
    return not any(path.startswith(prefix) for prefix in UNGUARDED_PREFIXES)


def sign_in_location(path: str) -> str:
    return f"{SIGN_IN_PATH}?{urlencode({'redirect': path})}"


def onboarding_location(step: OnboardingStep | None) -> str:
    if step is None:
        return PROVIDER_ONBOARDING
    return f"{PROVIDER_ONBOARDING}?step={step.value}"


def provider_home(readiness: Readiness) -> str:
    """Dashboard for ready providers, otherwise the next onboarding step."""
    if readiness.is_complete:
        return PROVIDER_DASHBOARD
    return onboarding_location(readiness.next_step)


def decide(
    path: str,
    session: SessionContext | None,
    readiness_for: Callable[[str], Readiness],
    admin_check: Callable[[str], bool],
) -> GuardDecision:
    """Pure routing decision for ``path``.

    ``readiness_for`` and ``admin_check`` are only called when the decision
    depends on them.
    """
    if not is_guarded_path(path):
        return ALLOW

    if session is None:
        return GuardDecision(sign_in_location(path))

    if path.startswith("/provider/"):
        if session.is_client:
            return GuardDecision(CLIENT_DASHBOARD)
        if not session.is_provider:
            return GuardDecision(INVALID_ROLE_PATH)

        readiness = readiness_for(session.user_id)
        on_onboarding = _in_space(path, PROVIDER_ONBOARDING)
        on_stripe_callback = path.startswith("/provider/stripe/")

        if not readiness.is_complete and not on_onboarding and not on_stripe_callback:
            return GuardDecision(onboarding_location(readiness.next_step))
        if readiness.is_complete and on_onboarding:
            return GuardDecision(PROVIDER_DASHBOARD)
        return ALLOW

    if path.startswith("/client/"):
        if session.is_client:
            return ALLOW
        if session.is_provider:
            return GuardDecision(provider_home(readiness_for(session.user_id)))
        return GuardDecision(INVALID_ROLE_PATH)

    if path.startswith("/admin/"):
        if admin_check(session.user_id):
            return ALLOW
        if session.is_provider:
            return GuardDecision(provider_home(readiness_for(session.user_id)))
        if session.is_client:
            return GuardDecision(CLIENT_DASHBOARD)
        return GuardDecision(ACCESS_DENIED_PATH)

    return ALLOW


def register_route_guard(app: Flask) -> None:
    """Run the guard before every request."""

    @app.before_request
    def _guard_route():
        if request.method == "OPTIONS" or not is_guarded_path(request.path):
            return None

        decision = decide(request.path, current_session(), evaluate_readiness, is_admin)
        if decision.allowed:
            return None

        current_app.logger.info("Guard redirect %s -> %s", request.path, decision.location)
        return redirect(decision.location, code=302)
