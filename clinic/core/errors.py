"""
Business-rule errors raised by the service layer.

Every error carries a machine-readable ``kind`` and a human message. The
request layer maps ``status_code`` onto the HTTP response; services never
raise ``HTTPException`` themselves.
"""
from typing import Any, Dict, Optional

from fastapi import status


class ClinicError(Exception):
    """Base class for recoverable business-rule failures."""
    kind: str = "ClinicError"
    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class Unauthenticated(ClinicError):
    kind = "Unauthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"


class InvalidCredentials(ClinicError):
    kind = "InvalidCredentials"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid username or password"


class AccountLocked(ClinicError):
    kind = "AccountLocked"
    status_code = status.HTTP_423_LOCKED
    default_message = "Account is temporarily locked"


class NotOwner(ClinicError):
    kind = "NotOwner"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Not enough permissions for this record"


class RoleMismatch(ClinicError):
    kind = "RoleMismatch"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Operation is not available for this role"


class AlreadyLinked(ClinicError):
    kind = "AlreadyLinked"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Account is already linked to a profile"


class SlotConflict(ClinicError):
    kind = "SlotConflict"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Doctor already has an active appointment at this time"


class InvalidTransition(ClinicError):
    kind = "InvalidTransition"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Appointment status does not allow this change"


class RateLimited(ClinicError):
    kind = "RateLimited"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."


class NotFound(ClinicError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "The requested resource was not found"


class ValidationError(ClinicError):
    kind = "ValidationError"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Validation failed for one or more fields"


ERROR_KINDS = {
    cls.kind: cls
    for cls in (
        Unauthenticated, InvalidCredentials, AccountLocked, NotOwner, RoleMismatch,
        AlreadyLinked, SlotConflict, InvalidTransition, RateLimited, NotFound, ValidationError,
    )
}
