"""
Domain Models - Internal business logic models using dataclasses.

All amounts are integer minor units (cents). Intents validate on construction.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sacavia_ledger.models.api import (
    PaymentMethod,
    PayoutMethod,
    PayoutStatus,
    PricingType,
    PurchaseStatus,
    RefundReason,
)


@dataclass(frozen=True)
class FeeBreakdown:
    """Split of a gross amount between processor, platform and creator."""

    amount_minor: int
    stripe_fee_minor: int
    platform_fee_minor: int
    creator_earnings_minor: int

    def __post_init__(self) -> None:
        """Validate the split adds up exactly."""
        if min(self.stripe_fee_minor, self.platform_fee_minor, self.creator_earnings_minor) < 0:
            raise ValueError(f"Fee components cannot be negative: {self}")
        total = self.stripe_fee_minor + self.platform_fee_minor + self.creator_earnings_minor
        if total != self.amount_minor:
            raise ValueError(f"Fee components sum to {total}, expected {self.amount_minor}")


@dataclass(frozen=True)
class PurchaseIntent:
    """Domain model for a purchase before payment and persistence - immutable intent."""

    user_id: UUID | None  # None = unauthenticated request
    guide_id: UUID
    amount_minor: int
    currency: str
    payment_type: PricingType | None
    payment_method_id: str | None

    def __post_init__(self) -> None:
        """Validate purchase intent constraints."""
        if self.amount_minor < 0:
            raise ValueError(f"Purchase amount cannot be negative: {self.amount_minor}")
        if len(self.currency) != 3:
            raise ValueError(f"Invalid currency code: {self.currency}")


@dataclass(frozen=True)
class GuideData:
    """Snapshot of the guide fields the ledger needs."""

    guide_id: UUID
    author_id: UUID
    title: str
    status: str
    pricing_type: PricingType
    price_minor: int
    currency: str


@dataclass(frozen=True)
class PurchaseData:
    """Immutable purchase data after persistence."""

    purchase_id: UUID
    user_id: UUID
    guide_id: UUID
    amount_minor: int
    currency: str
    payment_method: PaymentMethod
    transaction_id: str | None
    status: PurchaseStatus
    platform_fee_minor: int
    stripe_fee_minor: int
    creator_earnings_minor: int
    purchase_date: datetime
    refund_reason: RefundReason | None = None
    refunded_at: datetime | None = None

    @property
    def breakdown(self) -> FeeBreakdown:
        """Fee breakdown stored on the purchase."""
        return FeeBreakdown(
            amount_minor=self.amount_minor,
            stripe_fee_minor=self.stripe_fee_minor,
            platform_fee_minor=self.platform_fee_minor,
            creator_earnings_minor=self.creator_earnings_minor,
        )


@dataclass(frozen=True)
class CreatorEarningsTotals:
    """Creator running totals after an accumulator write."""

    creator_id: UUID
    total_earnings_minor: int
    available_balance_minor: int
    total_sales: int


@dataclass(frozen=True)
class PayoutSummary:
    """Balances derived from earnings and payout history."""

    creator_id: UUID
    total_earnings_minor: int
    total_payouts_minor: int
    pending_payouts_minor: int
    available_balance_minor: int
    pending_balance_minor: int
    overdrawn_minor: int

    def __post_init__(self) -> None:
        """Available balance is clamped at zero."""
        if self.available_balance_minor < 0:
            raise ValueError(f"Available balance cannot be negative: {self.available_balance_minor}")


@dataclass(frozen=True)
class PayoutData:
    """Immutable payout data after persistence."""

    payout_id: UUID
    creator_id: UUID
    amount_minor: int
    currency: str
    method: PayoutMethod
    status: PayoutStatus
    transaction_id: str | None
    stripe_transfer_id: str | None
    notes: str | None
    estimated_arrival: str | None
    processed_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class PayoutRequestResult:
    """Outcome of a payout request."""

    payout: PayoutData
    available_balance_minor: int
    pending_balance_minor: int


@dataclass(frozen=True)
class PayoutPage:
    """One page of payout history."""

    payouts: list[PayoutData]
    page: int
    limit: int
    total_docs: int

    @property
    def total_pages(self) -> int:
        """Number of pages at this page size."""
        return max(1, -(-self.total_docs // self.limit))

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1
