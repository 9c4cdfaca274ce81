"""
Fee Calculator - Split a purchase amount between Stripe, the platform and the creator.

Pure functions over integer minor units (cents). Percentages are applied with
round-half-up so the three components always sum to the gross amount.
"""

from decimal import ROUND_HALF_UP, Decimal

from sacavia_ledger.models.domain import FeeBreakdown

# Stripe card processing: 2.9% + 30c
STRIPE_PERCENT_BASIS_POINTS = 290
STRIPE_FIXED_FEE_MINOR = 30

# Platform commission: 15%
PLATFORM_PERCENT_BASIS_POINTS = 1500

# Smallest charge accepted for paid and pay-what-you-want guides
MINIMUM_PAID_PRICE_MINOR = 50

_BASIS_POINTS = 10_000
_CENTS = Decimal("0.01")


def _percent_half_up(amount_minor: int, basis_points: int) -> int:
    """Apply a basis-point rate to an amount, rounding half up to the nearest cent."""
    return (amount_minor * basis_points * 2 + _BASIS_POINTS) // (2 * _BASIS_POINTS)


def calculate_fees(amount_minor: int) -> FeeBreakdown:
    """
    Compute the fee breakdown for a gross purchase amount.

    A zero amount (free guide) has no fees. For paid amounts the Stripe fee
    and platform commission are taken first and the creator gets the rest.
    On tiny amounts where fees would exceed the gross, creator earnings
    floor at zero and the platform fee absorbs the shortfall.

    Args:
        amount_minor: Gross amount in cents

    Returns:
        FeeBreakdown whose components sum exactly to amount_minor

    Raises:
        ValueError: If amount_minor is negative
    """
    if amount_minor < 0:
        raise ValueError(f"Amount cannot be negative: {amount_minor}")
    if amount_minor == 0:
        return FeeBreakdown(
            amount_minor=0, stripe_fee_minor=0, platform_fee_minor=0, creator_earnings_minor=0
        )

    stripe_fee = _percent_half_up(amount_minor, STRIPE_PERCENT_BASIS_POINTS) + STRIPE_FIXED_FEE_MINOR
    stripe_fee = min(stripe_fee, amount_minor)
    platform_fee = _percent_half_up(amount_minor, PLATFORM_PERCENT_BASIS_POINTS)

    creator_earnings = amount_minor - stripe_fee - platform_fee
    if creator_earnings < 0:
        platform_fee = amount_minor - stripe_fee
        creator_earnings = 0

    return FeeBreakdown(
        amount_minor=amount_minor,
        stripe_fee_minor=stripe_fee,
        platform_fee_minor=platform_fee,
        creator_earnings_minor=creator_earnings,
    )


def to_minor_units(amount: Decimal | int | float | str) -> int:
    """Convert a major-unit amount (dollars) to cents, rounding half up."""
    quantized = Decimal(str(amount)).quantize(_CENTS, rounding=ROUND_HALF_UP)
    return int(quantized * 100)


def to_major_units(amount_minor: int) -> float:
    """Convert cents to a major-unit float for API responses."""
    return float(Decimal(amount_minor) / 100)
