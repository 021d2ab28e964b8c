"""Request-level booking rules composed over availability and pricing."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Iterable

from . import pricing
from .availability import Occupant, SlotAvailability, compute_availability, ensure_span_available
from .collaborators import (
    PrerequisiteCheck,
    SubscriptionDirectory,
    call_with_timeout,
    subscriber_active,
)
from .errors import LeadTimeViolation, PrerequisiteNotMet, ValidationError
from .models import ALLOWED_SCHEMES, BookingRequest, Channel, Facility, PricingQuote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidatedBooking:
    request: BookingRequest
    quote: PricingQuote
    span: tuple[SlotAvailability, ...]
    is_subscriber: bool


class BookingValidator:
    """Accepts or rejects a booking request.

    Checks run in a fixed order and stop at the first failure: request shape,
    booking horizon, dog prerequisites, lead time, operating hours, then
    availability across the whole span. Shape and horizon errors are raised
    before any external call.
    """

    def __init__(
        self,
        prerequisites: PrerequisiteCheck,
        subscriptions: SubscriptionDirectory,
        *,
        timeout: float = 5.0,
    ) -> None:
        self.prerequisites = prerequisites
        self.subscriptions = subscriptions
        self.timeout = timeout

    def check_shape(self, facility: Facility, request: BookingRequest) -> None:
        context = {"facility_id": facility.id, "date": request.date, "slot": request.start.strftime("%H:%M")}
        if request.facility_id != facility.id:
            raise ValidationError("Request does not belong to this facility", **context)
        if not isinstance(request.channel, Channel):
            raise ValidationError(f"Unknown channel {request.channel!r}", **context)
        if request.fee_scheme not in ALLOWED_SCHEMES[request.channel]:
            raise ValidationError(
                f"{request.fee_scheme.value} cannot be used for {request.channel.value} bookings",
                **context,
            )
        if isinstance(request.duration_hours, bool) or not isinstance(request.duration_hours, int):
            raise ValidationError("Duration must be a whole number of hours", **context)
        if request.duration_hours < 1:
            raise ValidationError("Duration must be at least one hour", **context)
        if len(set(request.entity_ids)) != len(request.entity_ids):
            raise ValidationError("The same dog was selected more than once", **context)
        if request.guest_count is not None and request.guest_count < len(request.entity_ids):
            raise ValidationError("Guest count is lower than the number of selected dogs", **context)
        if not 1 <= request.head_count <= facility.max_head_count:
            raise ValidationError(
                f"Head count must be between 1 and {facility.max_head_count}", **context
            )

    def check_horizon(self, facility: Facility, request: BookingRequest, now: dt.datetime) -> None:
        horizon = facility.rules_for(request.channel).horizon_days
        if horizon is not None and request.date > now.date() + dt.timedelta(days=horizon):
            raise ValidationError(
                f"Bookings open at most {horizon} day(s) ahead",
                facility_id=facility.id,
                date=request.date,
                slot=request.slot_label,
            )

    def check_prerequisites(self, facility: Facility, request: BookingRequest) -> None:
        for entity_id in request.entity_ids:
            try:
                approved = call_with_timeout(
                    self.prerequisites.is_approved, entity_id, timeout=self.timeout
                )
            except Exception as exc:
                logger.warning("Prerequisite check failed for %s", entity_id, exc_info=True)
                raise PrerequisiteNotMet(
                    f"Could not verify vaccine approval for dog {entity_id}",
                    entity_id=entity_id,
                    facility_id=facility.id,
                    date=request.date,
                ) from exc
            if not approved:
                raise PrerequisiteNotMet(
                    f"Dog {entity_id} does not have an approved vaccine certificate",
                    entity_id=entity_id,
                    facility_id=facility.id,
                    date=request.date,
                )

    def check_lead_time(self, facility: Facility, request: BookingRequest, now: dt.datetime) -> None:
        rules = facility.rules_for(request.channel)
        context = {"facility_id": facility.id, "date": request.date, "slot": request.slot_label}
        earliest_date = now.date() + dt.timedelta(days=rules.lead_time_days)
        if request.date < earliest_date:
            raise LeadTimeViolation(
                f"{request.channel.value} bookings must be made at least "
                f"{rules.lead_time_days} day(s) in advance",
                **context,
            )
        starts_at = request.window[0]
        if starts_at - now < dt.timedelta(minutes=rules.min_lead_minutes):
            raise LeadTimeViolation(
                f"{request.channel.value} bookings must start at least "
                f"{rules.min_lead_minutes} minute(s) from now",
                **context,
            )

    def check_availability(
        self,
        facility: Facility,
        request: BookingRequest,
        occupants: Iterable[Occupant],
        now: dt.datetime | None = None,
    ) -> list[SlotAvailability]:
        availability = compute_availability(facility, request.date, occupants, now=now)
        return ensure_span_available(
            availability,
            request.channel,
            facility_id=facility.id,
            date=request.date,
            start=request.start,
            duration_hours=request.duration_hours,
        )

    def price(self, facility: Facility, request: BookingRequest, now: dt.datetime) -> tuple[PricingQuote, bool]:
        is_subscriber = subscriber_active(
            self.subscriptions, request.account_id, now, timeout=self.timeout
        )
        quote = pricing.quote(
            request.channel,
            request.duration_hours,
            request.head_count,
            is_subscriber,
            rates=facility.rates,
            scheme=request.fee_scheme,
            max_head_count=facility.max_head_count,
            discount_eligible=facility.subscription_discount_eligible,
        )
        return quote, is_subscriber

    def validate(
        self,
        facility: Facility,
        request: BookingRequest,
        occupants: Iterable[Occupant],
        now: dt.datetime,
    ) -> ValidatedBooking:
        self.check_shape(facility, request)
        self.check_horizon(facility, request, now)
        self.check_prerequisites(facility, request)
        self.check_lead_time(facility, request, now)
        span = self.check_availability(facility, request, occupants, now)
        quote, is_subscriber = self.price(facility, request, now)
        return ValidatedBooking(request, quote, tuple(span), is_subscriber)
