"""Exception taxonomy for the reservation engine."""

from __future__ import annotations

import datetime as dt
from typing import Any, Sequence


class BookingError(RuntimeError):
    """Base class for every rejection raised by the booking engine.

    Each error carries the facility, date and slot it relates to so that the
    web layer and the logs can report the context of a rejection.
    """

    code = "booking_error"

    def __init__(
        self,
        message: str,
        *,
        facility_id: int | None = None,
        date: dt.date | None = None,
        slot: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.facility_id = facility_id
        self.date = date
        self.slot = slot

    def context(self) -> dict[str, Any]:
        return {
            "facility_id": self.facility_id,
            "date": self.date.isoformat() if self.date else None,
            "slot": self.slot,
        }

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.context()}


class ValidationError(BookingError):
    """Raised when incoming data fails validation."""

    code = "validation_error"


class RecordNotFound(ValidationError):
    code = "not_found"


class PrerequisiteNotMet(BookingError):
    """Raised when a selected dog fails an external prerequisite check."""

    code = "prerequisite_not_met"

    def __init__(self, message: str, *, entity_id: Any, **context: Any) -> None:
        super().__init__(message, **context)
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["entity_id"] = self.entity_id
        return payload


class LeadTimeViolation(BookingError):
    code = "lead_time_violation"


class AvailabilityConflict(BookingError):
    """Raised when the requested slot is already taken or a race was lost."""

    code = "availability_conflict"
    retry_hint = "Re-fetch availability and retry the request."

    def __init__(self, message: str, *, hours: Sequence[str] = (), **context: Any) -> None:
        super().__init__(message, **context)
        self.hours = list(hours)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["hours"] = self.hours
        payload["retry_hint"] = self.retry_hint
        return payload


class PaymentFailure(BookingError):
    code = "payment_failure"


class CancellationWindowExpired(BookingError):
    code = "cancellation_window_expired"

    def __init__(self, message: str, *, refund_percent: int = 0, **context: Any) -> None:
        super().__init__(message, **context)
        self.refund_percent = refund_percent

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["allowed"] = False
        payload["refund_percent"] = self.refund_percent
        return payload


__all__ = [
    "AvailabilityConflict",
    "BookingError",
    "CancellationWindowExpired",
    "LeadTimeViolation",
    "PaymentFailure",
    "PrerequisiteNotMet",
    "RecordNotFound",
    "ValidationError",
]
