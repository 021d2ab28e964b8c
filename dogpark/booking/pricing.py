"""Price quotes for the day pass, subscription and rental fee schemes."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from .errors import ValidationError
from .models import (
    ALLOWED_SCHEMES,
    DEFAULT_MAX_HEAD_COUNT,
    DEFAULT_SCHEMES,
    Channel,
    FeeScheme,
    PricingQuote,
    RateTable,
)


def _round_currency(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def day_pass_price(head_count: int, rates: RateTable) -> int:
    """First dog pays the base price, each additional dog the reduced amount."""

    return rates.day_pass_base + (head_count - 1) * rates.day_pass_additional


def quote(
    channel: Channel,
    duration_hours: int,
    head_count: int,
    is_subscriber: bool,
    *,
    rates: RateTable | None = None,
    scheme: FeeScheme | None = None,
    max_head_count: int = DEFAULT_MAX_HEAD_COUNT,
    discount_eligible: bool = True,
) -> PricingQuote:
    """Return the price of a booking.

    Pure: identical inputs always produce an identical quote. The subscriber
    discount only applies to facility rental and never combines with the day
    pass tiers.
    """

    rates = rates or RateTable()
    scheme = scheme or DEFAULT_SCHEMES[channel]
    if scheme not in ALLOWED_SCHEMES[channel]:
        raise ValidationError(f"{scheme.value} cannot be used for {channel.value} bookings")
    if not 1 <= head_count <= max_head_count:
        raise ValidationError(f"Head count must be between 1 and {max_head_count}")
    if duration_hours < 1:
        raise ValidationError("Duration must be at least one hour")

    if scheme is FeeScheme.DAY_PASS:
        return PricingQuote(channel, scheme, day_pass_price(head_count, rates))

    if scheme is FeeScheme.SUBSCRIPTION:
        # Active members bring up to the plan cap of dogs at no extra charge.
        fee = 0 if is_subscriber else rates.subscription_monthly_fee
        return PricingQuote(channel, scheme, fee)

    if scheme is FeeScheme.BOOTH_RENTAL:
        return PricingQuote(channel, scheme, rates.booth_hourly_rate * duration_hours)

    base = rates.rental_hourly_rate * duration_hours
    discount = 0
    if is_subscriber and discount_eligible and rates.subscriber_discount_percent:
        keep = Decimal(100 - rates.subscriber_discount_percent) / Decimal(100)
        discount = base - _round_currency(Decimal(base) * keep)
    return PricingQuote(channel, scheme, base, discount)
