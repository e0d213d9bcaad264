"""Error taxonomy shared by the visits service and its client."""

from __future__ import annotations

from typing import Any

from fastapi import status


class VisitError(Exception):
    """Base class for expected visit-lifecycle outcomes.

    Each subclass carries the HTTP status it maps to and a stable ``code``
    that the client uses to rebuild the same exception type.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "visit_error"
    message: str = "Visit operation failed"

    def __init__(self, message: str | None = None, **extra: Any) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra

    def to_detail(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.extra}


class QRParseError(VisitError):
    """QR text does not match any known garden format."""

    code = "qr_unrecognized"
    message = "QR code is not a garden code"


class InvalidInput(VisitError):
    code = "invalid_input"
    message = "Invalid dog selection"

    @property
    def reason(self) -> str | None:
        return self.extra.get("reason")


class GuestNotAllowed(VisitError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "guest_not_allowed"
    message = "Guests cannot check in"


class AlreadyCheckedIn(VisitError):
    """The user already has an active visit; ``active_visit`` is that visit."""

    status_code = status.HTTP_409_CONFLICT
    code = "already_checked_in"
    message = "You already have an active visit"

    def __init__(self, active_visit: Any = None, message: str | None = None, **extra: Any) -> None:
        super().__init__(message, **extra)
        self.active_visit = active_visit


class GardenNotFound(VisitError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "garden_not_found"
    message = "Garden not found or inactive"


class GardenFull(VisitError):
    status_code = status.HTTP_409_CONFLICT
    code = "garden_full"
    message = "Garden is at full capacity"


class NotActive(VisitError):
    """Check-out or cancel on a visit that is not an active visit of the caller."""

    status_code = status.HTTP_409_CONFLICT
    code = "visit_not_active"
    message = "Visit is not active"


class VisitNotFound(NotActive):
    status_code = status.HTTP_404_NOT_FOUND
    code = "visit_not_found"
    message = "Visit not found"


class VisitNotOwned(NotActive):
    status_code = status.HTTP_403_FORBIDDEN
    code = "visit_not_owned"
    message = "Visit belongs to another user"


class VisitAlreadyClosed(NotActive):
    code = "visit_already_closed"
    message = "Visit already checked out"


class RateLimited(VisitError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    message = "Too many requests"


class ServerConnectionError(Exception):
    """Transport failure; says nothing about whether the mutation was applied."""


class ActionInProgress(Exception):
    """A check-in or check-out is already outstanding on this client."""


_BY_CODE: dict[str, type[VisitError]] = {
    cls.code: cls
    for cls in (
        QRParseError,
        InvalidInput,
        GuestNotAllowed,
        AlreadyCheckedIn,
        GardenNotFound,
        GardenFull,
        NotActive,
        VisitNotFound,
        VisitNotOwned,
        VisitAlreadyClosed,
        RateLimited,
    )
}


def error_from_detail(detail: Any) -> VisitError | None:
    """Rebuild a domain error from a ``{"detail": {...}}`` response body."""
    if not isinstance(detail, dict):
        return None
    cls = _BY_CODE.get(str(detail.get("code")))
    if cls is None:
        return None
    extra = {k: v for k, v in detail.items() if k not in ("code", "message", "active_visit")}
    if cls is AlreadyCheckedIn:
        return AlreadyCheckedIn(detail.get("active_visit"), detail.get("message"), **extra)
    return cls(detail.get("message"), **extra)
