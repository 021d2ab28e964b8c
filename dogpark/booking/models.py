"""Domain types shared by the reservation engine."""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

SLOT_MINUTES = 60
DEFAULT_MAX_HEAD_COUNT = 3


class Channel(str, enum.Enum):
    """Booking mode for a reservation."""

    REGULAR = "regular"
    PRIVATE_BOOTH = "private_booth"
    WHOLE_FACILITY = "whole_facility"


class FeeScheme(str, enum.Enum):
    DAY_PASS = "day_pass"
    SUBSCRIPTION = "subscription"
    FACILITY_RENTAL = "facility_rental"
    BOOTH_RENTAL = "booth_rental"


class ReservationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class HoldState(str, enum.Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    RELEASED = "released"


class CancellationKind(str, enum.Enum):
    # Seat/appointment style: binary allow/deny before a window.
    WINDOW = "window"
    # Facility rental: refund percent decreases as the start approaches.
    TIERED = "tiered"


DEFAULT_SCHEMES = {
    Channel.REGULAR: FeeScheme.DAY_PASS,
    Channel.PRIVATE_BOOTH: FeeScheme.BOOTH_RENTAL,
    Channel.WHOLE_FACILITY: FeeScheme.FACILITY_RENTAL,
}

# Fee schemes a channel may be paid with.
ALLOWED_SCHEMES = {
    Channel.REGULAR: (FeeScheme.DAY_PASS, FeeScheme.SUBSCRIPTION),
    Channel.PRIVATE_BOOTH: (FeeScheme.BOOTH_RENTAL,),
    Channel.WHOLE_FACILITY: (FeeScheme.FACILITY_RENTAL,),
}

DEFAULT_REFUND_TIERS: tuple[tuple[int, int], ...] = ((7, 100), (3, 50))


@dataclass(frozen=True)
class RateTable:
    """Per-facility prices in integer currency units (JPY)."""

    day_pass_base: int = 800
    day_pass_additional: int = 400
    subscription_monthly_fee: int = 3800
    rental_hourly_rate: int = 4400
    booth_hourly_rate: int = 5000
    subscriber_discount_percent: int = 20

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "RateTable":
        if not data:
            return cls()
        known = {name: int(value) for name, value in data.items() if name in cls.__dataclass_fields__}
        return cls(**known)

    def to_dict(self) -> dict[str, int]:
        return {name: getattr(self, name) for name in self.__dataclass_fields__}


@dataclass(frozen=True)
class ChannelRules:
    """Lead time and cancellation settings for one booking channel."""

    lead_time_days: int = 0
    min_lead_minutes: int = 0
    horizon_days: int | None = None
    cancellation: CancellationKind = CancellationKind.WINDOW
    cancellation_window_minutes: int = 60
    refund_tiers: tuple[tuple[int, int], ...] = DEFAULT_REFUND_TIERS

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ChannelRules":
        horizon = data.get("horizon_days")
        return cls(
            lead_time_days=int(data.get("lead_time_days", 0)),
            min_lead_minutes=int(data.get("min_lead_minutes", 0)),
            horizon_days=int(horizon) if horizon is not None else None,
            cancellation=CancellationKind(data.get("cancellation", CancellationKind.WINDOW.value)),
            cancellation_window_minutes=int(data.get("cancellation_window_minutes", 60)),
            refund_tiers=tuple(
                (int(days), int(percent))
                for days, percent in data.get("refund_tiers", DEFAULT_REFUND_TIERS)
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "lead_time_days": self.lead_time_days,
            "min_lead_minutes": self.min_lead_minutes,
            "horizon_days": self.horizon_days,
            "cancellation": self.cancellation.value,
            "cancellation_window_minutes": self.cancellation_window_minutes,
            "refund_tiers": [list(tier) for tier in self.refund_tiers],
        }


def default_channel_rules() -> dict[Channel, ChannelRules]:
    return {
        Channel.REGULAR: ChannelRules(min_lead_minutes=60, horizon_days=30),
        Channel.PRIVATE_BOOTH: ChannelRules(min_lead_minutes=60, horizon_days=30),
        Channel.WHOLE_FACILITY: ChannelRules(
            lead_time_days=2,
            horizon_days=30,
            cancellation=CancellationKind.TIERED,
        ),
    }


@dataclass(frozen=True)
class Facility:
    id: int
    name: str
    open_time: dt.time
    close_time: dt.time
    capacity: int
    booth_pool: int = 0
    max_head_count: int = DEFAULT_MAX_HEAD_COUNT
    auto_confirm: bool = True
    subscription_discount_eligible: bool = True
    rates: RateTable = field(default_factory=RateTable)
    channel_rules: Mapping[Channel, ChannelRules] = field(default_factory=default_channel_rules)

    def rules_for(self, channel: Channel) -> ChannelRules:
        return self.channel_rules.get(channel) or ChannelRules()

    def with_rules(self, channel: Channel, **changes: Any) -> "Facility":
        rules = dict(self.channel_rules)
        rules[channel] = replace(self.rules_for(channel), **changes)
        return replace(self, channel_rules=rules)


@dataclass(frozen=True, order=True)
class TimeSlot:
    facility_id: int
    date: dt.date
    start: dt.time
    end: dt.time

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M}"

    @property
    def starts_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.start)

    @property
    def ends_at(self) -> dt.datetime:
        return dt.datetime.combine(self.date, self.end)


def booking_window(date: dt.date, start: dt.time, duration_hours: int) -> tuple[dt.datetime, dt.datetime]:
    """Return the [start, end) datetimes covered by a booking."""

    begins = dt.datetime.combine(date, start)
    return begins, begins + dt.timedelta(minutes=SLOT_MINUTES * duration_hours)


@dataclass(frozen=True)
class BookingRequest:
    facility_id: int
    account_id: str
    date: dt.date
    start: dt.time
    duration_hours: int
    channel: Channel
    entity_ids: tuple[str, ...] = ()
    guest_count: int | None = None
    scheme: FeeScheme | None = None

    @property
    def head_count(self) -> int:
        if self.guest_count is not None:
            return self.guest_count
        return len(self.entity_ids)

    @property
    def fee_scheme(self) -> FeeScheme:
        return self.scheme or DEFAULT_SCHEMES[self.channel]

    @property
    def window(self) -> tuple[dt.datetime, dt.datetime]:
        return booking_window(self.date, self.start, self.duration_hours)

    @property
    def slot_label(self) -> str:
        begins, ends = self.window
        return f"{begins:%H:%M}-{ends:%H:%M}"


@dataclass(frozen=True)
class PricingQuote:
    channel: Channel
    scheme: FeeScheme
    base_amount: int
    discount_amount: int = 0

    @property
    def final_amount(self) -> int:
        return self.base_amount - self.discount_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "scheme": self.scheme.value,
            "base_amount": self.base_amount,
            "discount_amount": self.discount_amount,
            "final_amount": self.final_amount,
        }


@dataclass(frozen=True)
class Reservation:
    id: int
    facility_id: int
    account_id: str
    date: dt.date
    start: dt.time
    duration_hours: int
    channel: Channel
    head_count: int
    status: ReservationStatus
    total_amount: int
    created_at: dt.datetime
    scheme: FeeScheme | None = None
    entity_ids: tuple[str, ...] = ()
    pass_expires_at: dt.datetime | None = None
    refund_percent: int | None = None
    cancelled_at: dt.datetime | None = None

    @property
    def window(self) -> tuple[dt.datetime, dt.datetime]:
        return booking_window(self.date, self.start, self.duration_hours)

    @property
    def starts_at(self) -> dt.datetime:
        return self.window[0]

    @property
    def is_live(self) -> bool:
        return self.status is not ReservationStatus.CANCELLED

    def to_dict(self) -> dict[str, Any]:
        begins, ends = self.window
        return {
            "id": self.id,
            "facility_id": self.facility_id,
            "account_id": self.account_id,
            "date": self.date.isoformat(),
            "start_time": self.start.strftime("%H:%M"),
            "end_time": ends.strftime("%H:%M"),
            "duration": self.duration_hours,
            "channel": self.channel.value,
            "scheme": self.scheme.value if self.scheme else None,
            "head_count": self.head_count,
            "entity_ids": list(self.entity_ids),
            "status": self.status.value,
            "total_amount": self.total_amount,
            "created_at": self.created_at.isoformat(),
            "pass_expires_at": self.pass_expires_at.isoformat() if self.pass_expires_at else None,
            "refund_percent": self.refund_percent,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
        }


@dataclass(frozen=True)
class Hold:
    """A tentative, time-bounded claim on slot-hours pending payment."""

    token: str
    request: BookingRequest
    quote: PricingQuote
    expires_at: dt.datetime
    state: HoldState = HoldState.ACTIVE

    # The resolver reads holds through the same attributes as reservations.
    @property
    def facility_id(self) -> int:
        return self.request.facility_id

    @property
    def date(self) -> dt.date:
        return self.request.date

    @property
    def start(self) -> dt.time:
        return self.request.start

    @property
    def duration_hours(self) -> int:
        return self.request.duration_hours

    @property
    def channel(self) -> Channel:
        return self.request.channel

    def is_active(self, now: dt.datetime) -> bool:
        return self.state is HoldState.ACTIVE and now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "facility_id": self.facility_id,
            "date": self.date.isoformat(),
            "slot": self.request.slot_label,
            "channel": self.channel.value,
            "quote": self.quote.to_dict(),
            "expires_at": self.expires_at.isoformat(),
            "state": self.state.value,
        }


@dataclass(frozen=True)
class OccupancySample:
    facility_id: int
    timestamp: dt.datetime
    headcount: int
    capacity: int
