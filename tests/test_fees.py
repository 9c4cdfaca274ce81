"""
Tests for the fee calculator.

Fixed examples plus Hypothesis properties over the whole amount range.
"""

from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from sacavia_ledger.services.fees import (
    MINIMUM_PAID_PRICE_MINOR,
    calculate_fees,
    to_major_units,
    to_minor_units,
)

amounts = st.integers(min_value=0, max_value=100_000_000)
paid_amounts = st.integers(min_value=MINIMUM_PAID_PRICE_MINOR, max_value=100_000_000)


class TestCalculateFees:
    """Known breakdowns."""

    def test_ten_dollars(self) -> None:
        """$10.00: Stripe 2.9% + 30c, platform 15%, creator gets the rest."""
        breakdown = calculate_fees(1000)

        assert breakdown.stripe_fee_minor == 59
        assert breakdown.platform_fee_minor == 150
        assert breakdown.creator_earnings_minor == 791

    def test_minimum_price(self) -> None:
        """50c rounds half up on both percentages."""
        breakdown = calculate_fees(50)

        assert breakdown.stripe_fee_minor == 31
        assert breakdown.platform_fee_minor == 8
        assert breakdown.creator_earnings_minor == 11

    def test_free_has_no_fees(self) -> None:
        breakdown = calculate_fees(0)

        assert breakdown.stripe_fee_minor == 0
        assert breakdown.platform_fee_minor == 0
        assert breakdown.creator_earnings_minor == 0

    def test_tiny_amount_floors_creator_earnings(self) -> None:
        """When fees exceed the amount, the creator gets nothing and the platform absorbs it."""
        breakdown = calculate_fees(35)

        assert breakdown.stripe_fee_minor == 31
        assert breakdown.creator_earnings_minor == 0
        assert breakdown.platform_fee_minor == 4

    def test_amount_below_fixed_fee(self) -> None:
        breakdown = calculate_fees(20)

        assert breakdown.stripe_fee_minor == 20
        assert breakdown.platform_fee_minor == 0
        assert breakdown.creator_earnings_minor == 0

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            calculate_fees(-1)


class TestFeeProperties:
    """Invariants that must hold for every amount."""

    @given(amounts)
    def test_components_sum_to_amount(self, amount_minor: int) -> None:
        breakdown = calculate_fees(amount_minor)

        total = (
            breakdown.stripe_fee_minor
            + breakdown.platform_fee_minor
            + breakdown.creator_earnings_minor
        )
        assert total == amount_minor

    @given(amounts)
    def test_components_never_negative(self, amount_minor: int) -> None:
        breakdown = calculate_fees(amount_minor)

        assert breakdown.stripe_fee_minor >= 0
        assert breakdown.platform_fee_minor >= 0
        assert breakdown.creator_earnings_minor >= 0

    @given(paid_amounts)
    def test_creator_earnings_positive_at_paid_prices(self, amount_minor: int) -> None:
        assert calculate_fees(amount_minor).creator_earnings_minor > 0

    @given(paid_amounts)
    def test_platform_fee_is_fifteen_percent(self, amount_minor: int) -> None:
        platform_fee = calculate_fees(amount_minor).platform_fee_minor

        assert abs(platform_fee * 100 - amount_minor * 15) <= 50


class TestUnitConversion:
    """Major/minor unit conversions."""

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (Decimal("10.00"), 1000),
            (Decimal("0.5"), 50),
            ("7.91", 791),
            (12, 1200),
            (Decimal("1.005"), 101),
        ],
    )
    def test_to_minor_units(self, amount: Decimal | str | int, expected: int) -> None:
        assert to_minor_units(amount) == expected

    def test_to_major_units(self) -> None:
        assert to_major_units(791) == 7.91
        assert to_major_units(0) == 0.0

    @given(st.integers(min_value=0, max_value=10_000_000))
    def test_minor_units_survive_major_conversion(self, amount_minor: int) -> None:
        assert to_minor_units(to_major_units(amount_minor)) == amount_minor
