"""Derive the bookable hourly slots of a facility for a given date."""

from __future__ import annotations

import datetime as dt

from .models import SLOT_MINUTES, Facility, TimeSlot


def generate_slots(
    facility_id: int,
    date: dt.date,
    open_time: dt.time,
    close_time: dt.time,
    *,
    unit_minutes: int = SLOT_MINUTES,
) -> list[TimeSlot]:
    """Return consecutive slots from open to close.

    A trailing interval shorter than ``unit_minutes`` is dropped, and a
    facility whose close is not after its open yields no slots at all.
    """

    if unit_minutes <= 0:
        raise ValueError("unit_minutes must be positive")
    current = dt.datetime.combine(date, open_time)
    closing = dt.datetime.combine(date, close_time)
    step = dt.timedelta(minutes=unit_minutes)
    slots: list[TimeSlot] = []
    while current + step <= closing:
        slots.append(TimeSlot(facility_id, date, current.time(), (current + step).time()))
        current += step
    return slots


def slots_for(facility: Facility, date: dt.date) -> list[TimeSlot]:
    return generate_slots(facility.id, date, facility.open_time, facility.close_time)


def slot_starting_at(slots: list[TimeSlot], start: dt.time) -> int | None:
    """Return the index of the slot beginning at ``start``, if any."""

    for idx, slot in enumerate(slots):
        if slot.start == start:
            return idx
    return None
