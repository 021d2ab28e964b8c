"""Cancellation permission and refund tiers."""

from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass

from .errors import CancellationWindowExpired, ValidationError
from .models import CancellationKind, ChannelRules, Reservation, ReservationStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CancellationDecision:
    allowed: bool
    refund_percent: int

    def refund_amount(self, total_amount: int) -> int:
        return total_amount * self.refund_percent // 100

    def to_dict(self) -> dict:
        return {"allowed": self.allowed, "refund_percent": self.refund_percent}


def tier_for(time_left: dt.timedelta, tiers: tuple[tuple[int, int], ...]) -> int:
    """Return the refund percent of the first tier whose day threshold is met."""

    for days, percent in sorted(tiers, key=lambda tier: tier[0], reverse=True):
        if time_left >= dt.timedelta(days=days):
            return percent
    return 0


def evaluate(reservation: Reservation, rules: ChannelRules, now: dt.datetime) -> CancellationDecision:
    """Decide whether ``reservation`` may be cancelled at ``now``.

    Nothing can be cancelled once it has started. Window-style rules allow
    cancellation up to ``cancellation_window_minutes`` before the start with a
    full refund; tiered rules always allow it before the start and refund by
    how many days remain.
    """

    time_left = reservation.starts_at - now
    if time_left < dt.timedelta(0):
        return CancellationDecision(False, 0)
    if rules.cancellation is CancellationKind.TIERED:
        return CancellationDecision(True, tier_for(time_left, rules.refund_tiers))
    window = dt.timedelta(minutes=rules.cancellation_window_minutes)
    if time_left >= window:
        return CancellationDecision(True, 100)
    return CancellationDecision(False, 0)


def enforce(
    reservation: Reservation,
    rules: ChannelRules,
    now: dt.datetime,
    *,
    administrative: bool = False,
) -> CancellationDecision:
    """Return the decision or raise when the cancellation is refused.

    Administrative cancellations bypass the window but keep the refund tier.
    """

    if reservation.status is ReservationStatus.CANCELLED:
        raise ValidationError(
            "Reservation is already cancelled",
            facility_id=reservation.facility_id,
            date=reservation.date,
        )
    decision = evaluate(reservation, rules, now)
    if decision.allowed:
        return decision
    if administrative:
        logger.info("Administrative cancellation of reservation %s past its window", reservation.id)
        return CancellationDecision(True, decision.refund_percent)
    raise CancellationWindowExpired(
        "Cancellation window has passed",
        refund_percent=decision.refund_percent,
        facility_id=reservation.facility_id,
        date=reservation.date,
        slot=reservation.start.strftime("%H:%M"),
    )
