import datetime as dt
import time
import unittest

from dogpark.booking.errors import (
    AvailabilityConflict,
    LeadTimeViolation,
    PrerequisiteNotMet,
    ValidationError,
)
from dogpark.booking.models import BookingRequest, Channel, Facility, FeeScheme
from dogpark.booking.validator import BookingValidator

NOW = dt.datetime(2026, 5, 4, 9, 0)


class StubPrerequisites:
    def __init__(self, approved=(), delay: float = 0.0) -> None:
        self.approved = set(approved)
        self.delay = delay
        self.calls = 0

    def is_approved(self, entity_id: str) -> bool:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        return entity_id in self.approved


class StubSubscriptions:
    def __init__(self, active: bool = False, fail: bool = False) -> None:
        self.active = active
        self.fail = fail

    def is_active_subscriber(self, account_id: str):
        if self.fail:
            raise ConnectionError("directory unavailable")
        return self.active, None


class Booked:
    def __init__(self, date: dt.date, start: int, hours: int, channel: Channel) -> None:
        self.date = date
        self.start = dt.time(start, 0)
        self.duration_hours = hours
        self.channel = channel


class BookingValidatorTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.facility = Facility(
            id=1,
            name="Bayside",
            open_time=dt.time(6, 0),
            close_time=dt.time(22, 0),
            capacity=10,
            booth_pool=2,
        )
        self.prerequisites = StubPrerequisites(approved={"rex", "molly"})
        self.subscriptions = StubSubscriptions()
        self.validator = BookingValidator(self.prerequisites, self.subscriptions, timeout=1.0)

    def request(self, **overrides) -> BookingRequest:
        values = dict(
            facility_id=1,
            account_id="acct-1",
            date=NOW.date(),
            start=dt.time(11, 0),
            duration_hours=1,
            channel=Channel.REGULAR,
            entity_ids=("rex",),
        )
        values.update(overrides)
        return BookingRequest(**values)

    def test_accepts_regular_booking_and_prices_it(self) -> None:
        validated = self.validator.validate(
            self.facility, self.request(entity_ids=("rex", "molly")), [], NOW
        )
        self.assertEqual(validated.quote.final_amount, 1200)
        self.assertEqual(len(validated.span), 1)
        self.assertFalse(validated.is_subscriber)

    def test_whole_facility_requires_two_days_notice(self) -> None:
        for days in (0, 1):
            with self.subTest(days=days):
                with self.assertRaises(LeadTimeViolation):
                    self.validator.validate(
                        self.facility,
                        self.request(channel=Channel.WHOLE_FACILITY, date=NOW.date() + dt.timedelta(days=days)),
                        [],
                        NOW,
                    )
        validated = self.validator.validate(
            self.facility,
            self.request(channel=Channel.WHOLE_FACILITY, date=NOW.date() + dt.timedelta(days=2), duration_hours=2),
            [],
            NOW,
        )
        self.assertEqual(validated.quote.final_amount, 8800)

    def test_regular_booking_must_start_an_hour_ahead(self) -> None:
        with self.assertRaises(LeadTimeViolation):
            self.validator.validate(self.facility, self.request(start=dt.time(9, 0)), [], NOW)
        self.validator.validate(self.facility, self.request(start=dt.time(10, 0)), [], NOW)

    def test_booking_horizon(self) -> None:
        with self.assertRaises(ValidationError):
            self.validator.validate(
                self.facility, self.request(date=NOW.date() + dt.timedelta(days=31)), [], NOW
            )

    def test_horizon_is_checked_before_vaccine_lookups(self) -> None:
        with self.assertRaises(ValidationError) as ctx:
            self.validator.validate(
                self.facility,
                self.request(date=NOW.date() + dt.timedelta(days=31), entity_ids=("rex", "ghost")),
                [],
                NOW,
            )
        self.assertIn("at most", ctx.exception.message)
        self.assertEqual(self.prerequisites.calls, 0)

    def test_failed_prerequisite_names_the_dog(self) -> None:
        with self.assertRaises(PrerequisiteNotMet) as ctx:
            self.validator.validate(self.facility, self.request(entity_ids=("rex", "otis")), [], NOW)
        self.assertEqual(ctx.exception.entity_id, "otis")
        self.assertEqual(ctx.exception.to_dict()["entity_id"], "otis")

    def test_prerequisite_timeout_rejects(self) -> None:
        slow = StubPrerequisites(approved={"rex"}, delay=0.5)
        validator = BookingValidator(slow, self.subscriptions, timeout=0.05)
        with self.assertRaises(PrerequisiteNotMet):
            validator.validate(self.facility, self.request(), [], NOW)

    def test_shape_errors_precede_external_calls(self) -> None:
        with self.assertRaises(ValidationError):
            self.validator.validate(
                self.facility, self.request(entity_ids=("rex", "molly", "otis", "bea")), [], NOW
            )
        with self.assertRaises(ValidationError):
            self.validator.validate(
                self.facility, self.request(channel=Channel.WHOLE_FACILITY, scheme=FeeScheme.DAY_PASS), [], NOW
            )
        with self.assertRaises(ValidationError):
            self.validator.validate(self.facility, self.request(entity_ids=("rex", "rex")), [], NOW)
        self.assertEqual(self.prerequisites.calls, 0)

    def test_partial_span_is_never_booked(self) -> None:
        target = NOW.date() + dt.timedelta(days=3)
        occupants = [Booked(target, 12, 1, Channel.REGULAR)]
        with self.assertRaises(AvailabilityConflict):
            self.validator.validate(
                self.facility,
                self.request(channel=Channel.WHOLE_FACILITY, date=target, start=dt.time(10, 0), duration_hours=4),
                occupants,
                NOW,
            )
        validated = self.validator.validate(
            self.facility,
            self.request(channel=Channel.WHOLE_FACILITY, date=target, start=dt.time(13, 0), duration_hours=3),
            occupants,
            NOW,
        )
        self.assertEqual(len(validated.span), 3)

    def test_span_past_closing_is_invalid(self) -> None:
        with self.assertRaises(ValidationError):
            self.validator.validate(
                self.facility, self.request(start=dt.time(21, 0), duration_hours=2), [], NOW
            )

    def test_subscriber_discount_and_lookup_failure(self) -> None:
        target = NOW.date() + dt.timedelta(days=5)
        request = self.request(channel=Channel.WHOLE_FACILITY, date=target, duration_hours=3)
        member = BookingValidator(self.prerequisites, StubSubscriptions(active=True))
        self.assertEqual(member.validate(self.facility, request, [], NOW).quote.final_amount, 10560)
        broken = BookingValidator(self.prerequisites, StubSubscriptions(active=True, fail=True))
        self.assertEqual(broken.validate(self.facility, request, [], NOW).quote.final_amount, 13200)

    def test_channel_rules_are_per_facility(self) -> None:
        relaxed = self.facility.with_rules(Channel.WHOLE_FACILITY, lead_time_days=0, min_lead_minutes=0)
        validated = self.validator.validate(
            relaxed, self.request(channel=Channel.WHOLE_FACILITY, start=dt.time(15, 0)), [], NOW
        )
        self.assertEqual(validated.quote.final_amount, 4400)


if __name__ == "__main__":
    unittest.main()
