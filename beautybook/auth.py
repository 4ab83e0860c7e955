"""Session tokens and the request-scoped caller context."""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app, g, request
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.exc import SQLAlchemyError

from .errors import NotAuthenticated, RoleMismatch
from .extensions import db
from .models import AdminUser, Profile

_TOKEN_SALT = "auth-token"


@dataclass(frozen=True)
class SessionContext:
    """Who is calling. ``role`` is ``None`` when no profile row exists."""

    user_id: str
    email: str | None
    role: str | None

    @property
    def is_provider(self) -> bool:
        return self.role == "provider"

    @property
    def is_client(self) -> bool:
        return self.role == "client"

    def to_dict(self) -> dict[str, object]:
        return {"user_id": self.user_id, "email": self.email, "role": self.role}


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=_TOKEN_SALT)


def build_token(user_id: str) -> str:
    return _serializer().dumps({"user_id": user_id})


def read_token(token: str) -> str | None:
    """Return the user id carried by ``token``, or ``None`` if invalid or expired."""
    try:
        payload = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except SignatureExpired:
        current_app.logger.info("Rejected expired session token")
        return None
    except BadSignature:
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get("user_id")


def _request_token() -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return request.cookies.get(current_app.config["AUTH_COOKIE_NAME"])


def resolve_session() -> SessionContext | None:
    """Build the caller context from the current request's token."""
    token = _request_token()
    if not token:
        return None

    user_id = read_token(token)
    if not user_id:
        return None

    try:
        profile = db.session.get(Profile, user_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Failed to load profile for session", exc_info=exc)
        return None

    if profile is None:
        return SessionContext(user_id=user_id, email=None, role=None)
    return SessionContext(user_id=profile.user_id, email=profile.email, role=profile.role)


def current_session() -> SessionContext | None:
    """Return the caller context, resolving it at most once per request."""
    if "session_context" not in g:
        g.session_context = resolve_session()
    return g.session_context


def require_session(role: str | None = None) -> SessionContext:
    session = current_session()
    if session is None:
        raise NotAuthenticated("Authentication required. Please log in to continue.")
    if role is not None and session.role != role:
        raise RoleMismatch(f"Role {role} required")
    return session


def is_admin(user_id: str) -> bool:
    try:
        return db.session.get(AdminUser, user_id) is not None
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.exception("Admin lookup failed", exc_info=exc)
        return False


def set_session_cookie(response, token: str):
    response.set_cookie(
        current_app.config["AUTH_COOKIE_NAME"],
        token,
        max_age=current_app.config["AUTH_TOKEN_MAX_AGE"],
        httponly=True,
        samesite="Lax",
        secure=not current_app.config.get("DEBUG") and not current_app.config.get("TESTING"),
    )
    return response


def clear_session_cookie(response):
    response.delete_cookie(current_app.config["AUTH_COOKIE_NAME"])
    return response
