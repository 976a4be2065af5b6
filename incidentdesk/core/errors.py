from __future__ import annotations

from typing import Any


class IncidentDeskError(Exception):
    """Base error for incidentdesk."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details


class UnauthorizedError(IncidentDeskError):
    """No valid session, or the session references a missing org/user."""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class ForbiddenError(IncidentDeskError):
    """Authenticated, but wrong tenant or missing role/feature."""

    status_code = 403
    code = "AUTH_FORBIDDEN"


class NotFoundError(IncidentDeskError):
    """Referenced organization, user or incident does not exist."""

    status_code = 404
    code = "NOT_FOUND"


class ValidationError(IncidentDeskError):
    """Malformed input such as an empty incident title."""

    status_code = 400
    code = "VALIDATION_ERROR"


class ConflictError(IncidentDeskError):
    """Uniqueness violation such as a duplicate user e-mail within an org."""

    status_code = 409
    code = "CONFLICT"


class BillingProviderError(IncidentDeskError):
    """Stripe request failure or missing billing configuration."""

    status_code = 502
    code = "BILLING_PROVIDER_ERROR"
