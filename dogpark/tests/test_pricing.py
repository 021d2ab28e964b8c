import unittest

from dogpark.booking import pricing
from dogpark.booking.errors import ValidationError
from dogpark.booking.models import Channel, FeeScheme, RateTable


class PricingEngineTestCase(unittest.TestCase):
    def test_day_pass_scales_per_dog(self) -> None:
        amounts = [pricing.quote(Channel.REGULAR, 1, n, False).final_amount for n in (1, 2, 3)]
        self.assertEqual(amounts, [800, 1200, 1600])

    def test_day_pass_ignores_subscriber_status(self) -> None:
        quote = pricing.quote(Channel.REGULAR, 3, 2, True)
        self.assertEqual(quote.final_amount, 1200)
        self.assertEqual(quote.discount_amount, 0)

    def test_facility_rental_with_and_without_discount(self) -> None:
        plain = pricing.quote(Channel.WHOLE_FACILITY, 2, 1, False)
        self.assertEqual(plain.final_amount, 8800)
        member = pricing.quote(Channel.WHOLE_FACILITY, 3, 1, True)
        self.assertEqual(member.base_amount, 13200)
        self.assertEqual(member.final_amount, 10560)
        not_eligible = pricing.quote(Channel.WHOLE_FACILITY, 3, 1, True, discount_eligible=False)
        self.assertEqual(not_eligible.final_amount, 13200)

    def test_discount_rounds_half_up(self) -> None:
        rates = RateTable(rental_hourly_rate=1005, subscriber_discount_percent=10)
        # 1005 * 0.9 = 904.5
        self.assertEqual(pricing.quote(Channel.WHOLE_FACILITY, 1, 1, True, rates=rates).final_amount, 905)

    def test_subscription_scheme(self) -> None:
        fee = pricing.quote(Channel.REGULAR, 1, 3, False, scheme=FeeScheme.SUBSCRIPTION)
        self.assertEqual(fee.final_amount, 3800)
        member = pricing.quote(Channel.REGULAR, 1, 3, True, scheme=FeeScheme.SUBSCRIPTION)
        self.assertEqual(member.final_amount, 0)

    def test_booth_rental_is_hourly(self) -> None:
        self.assertEqual(pricing.quote(Channel.PRIVATE_BOOTH, 2, 1, True).final_amount, 10000)

    def test_quote_is_deterministic(self) -> None:
        first = pricing.quote(Channel.WHOLE_FACILITY, 4, 2, True)
        self.assertEqual(first, pricing.quote(Channel.WHOLE_FACILITY, 4, 2, True))

    def test_invalid_inputs(self) -> None:
        with self.assertRaises(ValidationError):
            pricing.quote(Channel.REGULAR, 1, 4, False)
        with self.assertRaises(ValidationError):
            pricing.quote(Channel.REGULAR, 1, 0, False)
        with self.assertRaises(ValidationError):
            pricing.quote(Channel.WHOLE_FACILITY, 0, 1, False)
        with self.assertRaises(ValidationError):
            pricing.quote(Channel.WHOLE_FACILITY, 1, 1, False, scheme=FeeScheme.DAY_PASS)


if __name__ == "__main__":
    unittest.main()
