"""
API Models - Pydantic models for request/response validation.

Field names are snake_case in Python and camelCase on the wire.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class GuideStatus(str, Enum):
    """Guide publication status."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class PricingType(str, Enum):
    """Guide pricing type."""

    FREE = "free"
    PAID = "paid"
    PAY_WHAT_YOU_WANT = "pay-what-you-want"


class PaymentMethod(str, Enum):
    """How a purchase was paid."""

    FREE = "free"
    STRIPE = "stripe"
    PWYW = "pwyw"


class PurchaseStatus(str, Enum):
    """Purchase status. Only completed -> refunded is a legal transition."""

    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class RefundReason(str, Enum):
    """Why a purchase was refunded."""

    CUSTOMER_REQUEST = "customer_request"
    DUPLICATE = "duplicate"
    FRAUDULENT = "fraudulent"
    CONTENT_ISSUE = "content_issue"
    TECHNICAL_ISSUE = "technical_issue"


class PayoutStatus(str, Enum):
    """Payout status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PayoutMethod(str, Enum):
    """Payout disbursement method."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    BANK = "bank"
    CHECK = "check"
    MANUAL = "manual"


class NotificationType(str, Enum):
    """Notification types emitted by the ledger."""

    GUIDE_PURCHASED = "guide_purchased"
    PAYOUT_REQUESTED = "payout_requested"
    PURCHASE_REFUNDED = "purchase_refunded"


class ReconciliationOperation(str, Enum):
    """Ledger writes that can be dead-lettered for manual repair."""

    GUIDE_STATS = "guide_stats"
    CREATOR_EARNINGS = "creator_earnings"
    NOTIFICATION = "notification"
    PAYMENT_REFUND = "payment_refund"
    PAYOUT = "payout"


class EarningsPeriod(str, Enum):
    """Reporting window for creator earnings."""

    WEEK = "7d"
    MONTH = "30d"
    QUARTER = "90d"
    YEAR = "1y"


class CamelModel(BaseModel):
    """Base model that speaks camelCase JSON."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseGuideRequest(CamelModel):
    """POST /guides/{id}/purchase request body."""

    user_id: UUID | None = None
    amount: Decimal = Field(default=Decimal("0"), ge=0, max_digits=12, decimal_places=2)
    payment_method_id: str | None = Field(None, min_length=1, max_length=255)
    payment_type: PricingType | None = None
    currency: str = Field(default="USD", min_length=3, max_length=3)

    @field_validator("payment_type", mode="before")
    @classmethod
    def normalize_payment_type(cls, v: object) -> object:
        """Accept the short "pwyw" spelling used by the mobile clients."""
        if v == "pwyw":
            return PricingType.PAY_WHAT_YOU_WANT
        return v

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Ensure currency is uppercase ISO 4217 code."""
        return v.upper()


class FeeBreakdownResponse(CamelModel):
    """Fee split of a purchase, in major currency units."""

    total_amount: float
    platform_fee: float
    stripe_fee: float
    creator_earnings: float


class PurchaseModel(CamelModel):
    """A persisted guide purchase."""

    id: UUID
    user_id: UUID
    guide_id: UUID
    amount: float
    currency: str
    payment_method: PaymentMethod
    transaction_id: str | None = None
    status: PurchaseStatus
    platform_fee: float
    stripe_fee: float
    creator_earnings: float
    purchase_date: str  # ISO 8601 timestamp
    refund_reason: RefundReason | None = None
    refunded_at: str | None = None


class PurchaseGuideResponse(CamelModel):
    """POST /guides/{id}/purchase response."""

    success: bool = True
    purchase: PurchaseModel
    breakdown: FeeBreakdownResponse
    message: str


class PurchaseStatusResponse(CamelModel):
    """GET /guides/{id}/purchase response."""

    has_purchased: bool
    purchase: PurchaseModel | None = None


class RefundRequest(CamelModel):
    """POST /purchases/{id}/refund request body."""

    reason: RefundReason = RefundReason.CUSTOMER_REQUEST


class RefundResponse(CamelModel):
    """POST /purchases/{id}/refund response."""

    success: bool = True
    purchase: PurchaseModel


# ============================================================================
# Earnings Models
# ============================================================================


class TopSellingGuide(CamelModel):
    """Best selling guide of a creator."""

    id: UUID
    title: str
    sales: int
    revenue: float


class EarningsStats(CamelModel):
    """Aggregated creator statistics."""

    total_earnings: float
    monthly_earnings: float
    total_sales: int
    monthly_sales: int
    total_guides: int
    published_guides: int
    total_views: int
    monthly_views: int
    average_rating: float
    conversion_rate: float
    available_balance: float
    pending_balance: float
    top_selling_guide: TopSellingGuide | None = None


class RecentSaleGuide(CamelModel):
    """Guide summary inside a recent sale."""

    title: str
    price: float


class RecentSale(CamelModel):
    """One completed sale of a creator's guide."""

    id: UUID
    guide: RecentSaleGuide
    amount: float
    creator_earnings: float
    purchase_date: str
    username: str


class MonthlyDataPoint(CamelModel):
    """Earnings and sales for one calendar month."""

    month: str
    earnings: float
    sales: int


class PayoutInfo(CamelModel):
    """Payout balances and schedule."""

    available_balance: float
    pending_balance: float
    next_payout_date: str
    payout_method: str
    minimum_payout: float


class StripeConnectStatus(CamelModel):
    """State of the creator's Stripe Connect account."""

    connected: bool = False
    is_ready: bool = False
    account_id: str | None = None
    charges_enabled: bool = False
    payouts_enabled: bool = False


class CreatorEarningsData(CamelModel):
    """Creator earnings dashboard payload."""

    stats: EarningsStats
    recent_sales: list[RecentSale]
    monthly_data: list[MonthlyDataPoint]
    payout_info: PayoutInfo
    stripe_connect: StripeConnectStatus


class CreatorEarningsResponse(CamelModel):
    """GET /creators/{id}/earnings response."""

    success: bool = True
    data: CreatorEarningsData


# ============================================================================
# Payout Models
# ============================================================================


class PayoutRequest(CamelModel):
    """POST /creators/{id}/payouts request body."""

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    payout_method: PayoutMethod = PayoutMethod.STRIPE


class PayoutModel(CamelModel):
    """A payout record."""

    id: UUID
    creator_id: UUID
    amount: float
    currency: str
    method: PayoutMethod
    status: PayoutStatus
    transaction_id: str | None = None
    stripe_transfer_id: str | None = None
    notes: str | None = None
    estimated_arrival: str | None = None
    processed_at: str | None = None
    created_at: str


class NewBalance(CamelModel):
    """Creator balance after a payout request."""

    available: float
    pending: float


class PayoutResponse(CamelModel):
    """POST /creators/{id}/payouts response."""

    success: bool = True
    payout: PayoutModel
    new_balance: NewBalance
    message: str


class Pagination(CamelModel):
    """Pagination block for list responses."""

    page: int
    limit: int
    total_pages: int
    total_docs: int
    has_next_page: bool
    has_prev_page: bool


class PayoutListResponse(CamelModel):
    """GET /creators/{id}/payouts response."""

    success: bool = True
    payouts: list[PayoutModel]
    pagination: Pagination


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    payments: str
    timestamp: str
