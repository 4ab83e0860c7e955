"""Domain errors raised by the service layer and translated by the routes."""
from __future__ import annotations


class BeautyBookError(Exception):
    """Base class for domain errors."""

    code = "server_error"
    status = 500

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class NotAuthenticated(BeautyBookError):
    code = "unauthorized"
    status = 401


class ProfileMissing(BeautyBookError):
    code = "not_found"
    status = 404


class RoleMismatch(BeautyBookError):
    code = "forbidden"
    status = 403


class ReadFailure(BeautyBookError):
    """A backend query failed."""

    code = "database_error"


class WriteFailure(BeautyBookError):
    """Persisting a step or record failed."""

    code = "database_error"
