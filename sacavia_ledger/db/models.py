"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Money columns are integer minor units.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Owned by the wider platform; the ledger reads identity and display fields.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    is_creator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, username={self.username}, is_creator={self.is_creator})>"


class CreatorProfile(Base):
    """
    ORM model for creator_profiles table.

    Running earnings totals of a creator. Mutated only through atomic
    increments by the earnings accumulator and the payout service.
    """

    __tablename__ = "creator_profiles"

    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )

    # Earnings
    total_earnings_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    available_balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    pending_balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_payouts_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_payout_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Stats
    total_sales: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Stripe Connect
    stripe_account_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_account_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("total_earnings_minor >= 0", name="ck_creator_total_earnings_non_negative"),
        CheckConstraint(
            "available_balance_minor >= 0", name="ck_creator_available_balance_non_negative"
        ),
        CheckConstraint("pending_balance_minor >= 0", name="ck_creator_pending_balance_non_negative"),
        CheckConstraint("total_payouts_minor >= 0", name="ck_creator_total_payouts_non_negative"),
        CheckConstraint("total_sales >= 0", name="ck_creator_total_sales_non_negative"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreatorProfile(user_id={self.user_id}, total={self.total_earnings_minor}, "
            f"available={self.available_balance_minor}, sales={self.total_sales})>"
        )


class Guide(Base):
    """
    ORM model for guides table.

    Content is owned by the author; the ledger owns the purchase stats.
    """

    __tablename__ = "guides"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    author_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Pricing
    pricing_type: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Stats
    purchases: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    revenue_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    monthly_views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_rating: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'published', 'archived')", name="ck_guides_status"
        ),
        CheckConstraint(
            "pricing_type IN ('free', 'paid', 'pay-what-you-want')", name="ck_guides_pricing_type"
        ),
        CheckConstraint("price_minor >= 0", name="ck_guides_price_non_negative"),
        CheckConstraint("purchases >= 0", name="ck_guides_purchases_non_negative"),
        CheckConstraint("revenue_minor >= 0", name="ck_guides_revenue_non_negative"),
        Index("idx_guides_author_status", "author_id", "status"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Guide(id={self.id}, title={self.title}, pricing={self.pricing_type}, "
            f"price={self.price_minor})>"
        )


class GuidePurchase(Base):
    """
    ORM model for guide_purchases table.

    Immutable ledger of guide purchases. Only completed -> refunded is allowed
    after creation.
    """

    __tablename__ = "guide_purchases"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )
    guide_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("guides.id"), nullable=False, index=True
    )

    # Amount
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Payment
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False, default="free")
    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")

    # Fee breakdown
    platform_fee_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    stripe_fee_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    creator_earnings_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    purchase_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    # Refund
    refund_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    refund_amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_purchase_amount_non_negative"),
        CheckConstraint(
            "platform_fee_minor + stripe_fee_minor + creator_earnings_minor = amount_minor",
            name="ck_purchase_fee_breakdown_consistency",
        ),
        CheckConstraint(
            "status IN ('completed', 'failed', 'refunded')", name="ck_purchase_status"
        ),
        CheckConstraint(
            "payment_method IN ('free', 'stripe', 'pwyw')", name="ck_purchase_payment_method"
        ),
        # At most one completed purchase per (user, guide)
        Index(
            "uq_guide_purchases_user_guide_completed",
            "user_id",
            "guide_id",
            unique=True,
            postgresql_where=(status == "completed"),
        ),
        Index("idx_guide_purchases_user_id", "user_id"),
        Index("idx_guide_purchases_purchase_date", "purchase_date"),
        # One purchase per captured payment
        Index(
            "uq_guide_purchases_transaction_id",
            "transaction_id",
            unique=True,
            postgresql_where=(transaction_id.isnot(None)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<GuidePurchase(id={self.id}, user_id={self.user_id}, guide_id={self.guide_id}, "
            f"amount={self.amount_minor}, status={self.status})>"
        )


class Payout(Base):
    """
    ORM model for payouts table.

    Disbursements of creator earnings.
    """

    __tablename__ = "payouts"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    creator_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_arrival: Mapped[str | None] = mapped_column(String(50), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_payout_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name="ck_payout_status",
        ),
        CheckConstraint(
            "method IN ('stripe', 'paypal', 'bank', 'check', 'manual')", name="ck_payout_method"
        ),
        Index("idx_payouts_creator_created", "creator_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Payout(id={self.id}, creator_id={self.creator_id}, "
            f"amount={self.amount_minor}, status={self.status})>"
        )


class Notification(Base):
    """
    ORM model for notifications table.

    In-app notifications; push delivery is handled by the wider platform.
    """

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    recipient_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False, default="normal")
    related_collection: Mapped[str | None] = mapped_column(String(50), nullable=True)
    related_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Notification(id={self.id}, recipient_id={self.recipient_id}, type={self.type})>"


class ReconciliationRecord(Base):
    """
    ORM model for ledger_reconciliation_records table.

    Dead-letter rows for ledger writes that failed after money moved or a
    purchase was committed. Unresolved rows mean stats, earnings or payouts
    drifted.
    """

    __tablename__ = "ledger_reconciliation_records"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    operation: Mapped[str] = mapped_column(String(30), nullable=False)
    purchase_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    subject_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)
    amount_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index(
            "idx_reconciliation_unresolved",
            "created_at",
            postgresql_where=(resolved.is_(False)),
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<ReconciliationRecord(id={self.id}, operation={self.operation}, "
            f"purchase_id={self.purchase_id}, resolved={self.resolved})>"
        )
