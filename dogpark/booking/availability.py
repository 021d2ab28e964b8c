"""Per-slot, per-channel availability for a facility and date."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Sequence

from .calendar import slot_starting_at, slots_for
from .errors import AvailabilityConflict, ValidationError
from .models import Channel, Facility, TimeSlot, booking_window

logger = logging.getLogger(__name__)


class Occupant(Protocol):
    """Anything occupying slot-hours: stored reservations and live holds."""

    date: dt.date
    start: dt.time
    duration_hours: int
    channel: Channel


@dataclass(frozen=True)
class SlotAvailability:
    slot: TimeSlot
    regular_count: int
    private_booth_count: int
    whole_facility_present: bool
    capacity: int
    booth_pool: int
    has_started: bool = False

    @property
    def is_whole_facility_available(self) -> bool:
        return (
            self.regular_count == 0
            and self.private_booth_count == 0
            and not self.whole_facility_present
        )

    @property
    def is_regular_available(self) -> bool:
        return not self.whole_facility_present and self.regular_count < self.capacity

    @property
    def is_private_booth_available(self) -> bool:
        return not self.whole_facility_present and self.private_booth_count < self.booth_pool

    @property
    def remaining_regular(self) -> int:
        if self.whole_facility_present:
            return 0
        return max(self.capacity - self.regular_count, 0)

    @property
    def remaining_booths(self) -> int:
        if self.whole_facility_present:
            return 0
        return max(self.booth_pool - self.private_booth_count, 0)

    def is_available(self, channel: Channel) -> bool:
        if channel is Channel.REGULAR:
            return self.is_regular_available
        if channel is Channel.PRIVATE_BOOTH:
            return self.is_private_booth_available
        if channel is Channel.WHOLE_FACILITY:
            return self.is_whole_facility_available
        raise ValueError(f"Unknown channel {channel!r}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "slot": self.slot.label,
            "start_time": self.slot.start.strftime("%H:%M"),
            "end_time": self.slot.end.strftime("%H:%M"),
            "is_regular_available": self.is_regular_available,
            "is_private_booth_available": self.is_private_booth_available,
            "is_whole_facility_available": self.is_whole_facility_available,
            "regular_count": self.regular_count,
            "private_booth_count": self.private_booth_count,
            "remaining_regular": self.remaining_regular,
            "remaining_booths": self.remaining_booths,
            "has_started": self.has_started,
        }


def _overlaps(occupant: Occupant, slot: TimeSlot) -> bool:
    begins, ends = booking_window(occupant.date, occupant.start, occupant.duration_hours)
    return begins < slot.ends_at and ends > slot.starts_at


def resolve(
    facility: Facility,
    slots: Sequence[TimeSlot],
    occupants: Iterable[Occupant],
    *,
    now: dt.datetime | None = None,
) -> list[SlotAvailability]:
    """Classify each slot's openness per channel.

    ``occupants`` must already exclude cancelled reservations and released or
    expired holds; everything passed in counts against capacity.
    """

    occupants = list(occupants)
    results: list[SlotAvailability] = []
    for slot in slots:
        regular = 0
        booths = 0
        whole = False
        for occupant in occupants:
            if not _overlaps(occupant, slot):
                continue
            if occupant.channel is Channel.WHOLE_FACILITY:
                whole = True
            elif occupant.channel is Channel.PRIVATE_BOOTH:
                booths += 1
            else:
                regular += 1
        results.append(
            SlotAvailability(
                slot=slot,
                regular_count=regular,
                private_booth_count=booths,
                whole_facility_present=whole,
                capacity=facility.capacity,
                booth_pool=facility.booth_pool,
                has_started=bool(now and slot.starts_at <= now),
            )
        )
    return results


def compute_availability(
    facility: Facility,
    date: dt.date,
    occupants: Iterable[Occupant],
    *,
    now: dt.datetime | None = None,
) -> list[SlotAvailability]:
    return resolve(facility, slots_for(facility, date), occupants, now=now)


def requested_span(
    availability: Sequence[SlotAvailability],
    *,
    facility_id: int,
    date: dt.date,
    start: dt.time,
    duration_hours: int,
) -> list[SlotAvailability]:
    """Return the consecutive slots covered by a request.

    Raises ``ValidationError`` when the span does not begin on a slot start
    or runs past closing time.
    """

    slots = [entry.slot for entry in availability]
    first = slot_starting_at(slots, start)
    label = f"{start:%H:%M}+{duration_hours}h"
    if first is None:
        raise ValidationError(
            "Start time is outside operating hours or not aligned to a slot",
            facility_id=facility_id,
            date=date,
            slot=label,
        )
    span = list(availability[first : first + duration_hours])
    if len(span) < duration_hours:
        raise ValidationError(
            "Requested duration runs past closing time",
            facility_id=facility_id,
            date=date,
            slot=label,
        )
    return span


def ensure_span_available(
    availability: Sequence[SlotAvailability],
    channel: Channel,
    *,
    facility_id: int,
    date: dt.date,
    start: dt.time,
    duration_hours: int,
) -> list[SlotAvailability]:
    """Check that every hour of the span is open for ``channel``.

    No partial bookings: a single unavailable hour rejects the whole span.
    """

    span = requested_span(
        availability,
        facility_id=facility_id,
        date=date,
        start=start,
        duration_hours=duration_hours,
    )
    blocked = [entry.slot.label for entry in span if not entry.is_available(channel)]
    if blocked:
        logger.info(
            "Channel %s unavailable at facility %s on %s for %s",
            channel.value,
            facility_id,
            date,
            ", ".join(blocked),
        )
        raise AvailabilityConflict(
            f"{channel.value} is not available for {', '.join(blocked)}",
            hours=blocked,
            facility_id=facility_id,
            date=date,
            slot=f"{span[0].slot.start:%H:%M}-{span[-1].slot.end:%H:%M}",
        )
    return span
