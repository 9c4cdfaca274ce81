"""
Purchase Service - Guide purchases, refunds and the duplicate-purchase guard.

NO DICTIONARIES - All operations use strongly typed domain models.

A purchase is committed in one transaction after payment succeeds. Guide
stats, creator earnings and the creator notification follow as separate
best-effort side effects (see SideEffectRunner).
"""

import time
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.db.models import Guide, GuidePurchase
from sacavia_ledger.exceptions import (
    AuthenticationRequiredError,
    DuplicatePurchaseError,
    GuideNotFoundError,
    GuideNotPublishedError,
    InternalError,
    InvalidAmountError,
    InvalidPurchaseStateError,
    LedgerError,
    PaymentFailedError,
    PaymentProcessingUnavailableError,
    PaymentProviderError,
    PurchaseNotFoundError,
    WriteVerificationError,
)
from sacavia_ledger.models.api import (
    GuideStatus,
    PaymentMethod,
    PricingType,
    PurchaseStatus,
    ReconciliationOperation,
    RefundReason,
)
from sacavia_ledger.models.domain import FeeBreakdown, GuideData, PurchaseData, PurchaseIntent
from sacavia_ledger.observability.metrics import metrics
from sacavia_ledger.observability.tracing import trace_operation
from sacavia_ledger.services.earnings import EarningsAccumulator
from sacavia_ledger.services.fees import MINIMUM_PAID_PRICE_MINOR, calculate_fees
from sacavia_ledger.services.notifications import NotificationEmitter
from sacavia_ledger.services.payment_provider import PaymentProvider, PaymentRequest, WebhookEvent
from sacavia_ledger.services.side_effects import ReconciliationRecorder, SideEffectRunner

logger = get_logger(__name__)

UNIQUE_COMPLETED_PURCHASE_INDEX = "uq_guide_purchases_user_guide_completed"

_PAYMENT_METHOD_BY_PRICING = {
    PricingType.FREE: PaymentMethod.FREE,
    PricingType.PAID: PaymentMethod.STRIPE,
    PricingType.PAY_WHAT_YOU_WANT: PaymentMethod.PWYW,
}


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PurchaseGuard:
    """Checks for an existing completed purchase before any side effect happens."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def has_completed_purchase(self, user_id: UUID, guide_id: UUID) -> bool:
        """True if the user already holds a completed purchase of the guide."""
        stmt = (
            select(GuidePurchase.id)
            .where(
                GuidePurchase.user_id == user_id,
                GuidePurchase.guide_id == guide_id,
                GuidePurchase.status == PurchaseStatus.COMPLETED.value,
            )
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None


class PurchaseService:
    """
    Records guide purchases and refunds.

    Write operations follow the pattern:
    1. Validate everything before touching money or rows
    2. Take payment (paid and pay-what-you-want only)
    3. Insert, flush, read back and verify, commit
    4. Apply side effects, each best-effort
    """

    def __init__(
        self,
        session: AsyncSession,
        payment_provider: PaymentProvider | None = None,
        side_effects: SideEffectRunner | None = None,
    ) -> None:
        self.session = session
        self.payment_provider = payment_provider
        self.guard = PurchaseGuard(session)
        self.earnings = EarningsAccumulator(session)
        self.notifications = NotificationEmitter(session)
        self.side_effects = side_effects or SideEffectRunner(session)

    async def purchase_guide(self, intent: PurchaseIntent) -> PurchaseData:
        """
        Purchase a guide.

        Raises:
            AuthenticationRequiredError: No user on the request
            GuideNotFoundError: Guide doesn't exist
            GuideNotPublishedError: Guide is not published
            InvalidAmountError: Amount or payment type doesn't fit the guide's pricing
            DuplicatePurchaseError: User already owns the guide
            PaymentProcessingUnavailableError: Payment needed but no provider configured
            PaymentFailedError: Payment declined, missing or not confirmed
            PaymentTimeoutError: Payment gateway timed out
        """
        start = time.perf_counter()
        method_label = intent.payment_type.value if intent.payment_type else "unknown"

        with trace_operation(
            "guide_purchase", guide_id=intent.guide_id, user_id=intent.user_id
        ) as span:
            try:
                purchase = await self._purchase_guide(intent)
            except LedgerError as exc:
                metrics.record_purchase(
                    method_label,
                    success=False,
                    amount_minor=intent.amount_minor,
                    duration=time.perf_counter() - start,
                    error_type=type(exc).__name__,
                )
                logger.info(
                    "guide_purchase_rejected",
                    guide_id=str(intent.guide_id),
                    user_id=str(intent.user_id) if intent.user_id else None,
                    reason=type(exc).__name__,
                )
                raise

            span.set_attribute("purchase_id", str(purchase.purchase_id))
            span.set_attribute("amount_minor", purchase.amount_minor)

        metrics.record_purchase(
            purchase.payment_method.value,
            success=True,
            amount_minor=purchase.amount_minor,
            duration=time.perf_counter() - start,
        )
        return purchase

    async def _purchase_guide(self, intent: PurchaseIntent) -> PurchaseData:
        if intent.user_id is None:
            raise AuthenticationRequiredError()
        user_id = intent.user_id

        guide = await self._find_guide(intent.guide_id)
        if guide is None:
            raise GuideNotFoundError(intent.guide_id)

        if guide.status != GuideStatus.PUBLISHED.value:
            raise GuideNotPublishedError(guide.guide_id, guide.status)

        amount_minor = self._validate_amount(intent, guide)

        if await self.guard.has_completed_purchase(user_id, guide.guide_id):
            raise DuplicatePurchaseError(user_id, guide.guide_id)

        # Minted before the charge so each attempt gets its own payment
        purchase_id = uuid4()
        payment_method = _PAYMENT_METHOD_BY_PRICING[guide.pricing_type]
        transaction_id: str | None = None
        if guide.pricing_type != PricingType.FREE:
            transaction_id = await self._take_payment(
                intent, guide, user_id, amount_minor, purchase_id
            )

        breakdown = calculate_fees(amount_minor)

        purchase = await self._record_purchase(
            purchase_id=purchase_id,
            user_id=user_id,
            guide=guide,
            breakdown=breakdown,
            payment_method=payment_method,
            transaction_id=transaction_id,
        )

        logger.info(
            "guide_purchase_recorded",
            purchase_id=str(purchase.purchase_id),
            guide_id=str(guide.guide_id),
            user_id=str(user_id),
            payment_method=payment_method.value,
            amount_minor=breakdown.amount_minor,
            creator_earnings_minor=breakdown.creator_earnings_minor,
        )

        await self._apply_purchase_side_effects(purchase, guide)
        return purchase

    async def get_purchase_status(self, user_id: UUID, guide_id: UUID) -> PurchaseData | None:
        """Return the user's completed purchase of the guide, if any."""
        stmt = select(GuidePurchase).where(
            GuidePurchase.user_id == user_id,
            GuidePurchase.guide_id == guide_id,
            GuidePurchase.status == PurchaseStatus.COMPLETED.value,
        )
        result = await self.session.execute(stmt)
        purchase = result.scalar_one_or_none()
        return self._purchase_to_domain(purchase) if purchase else None

    async def refund_purchase(
        self,
        purchase_id: UUID,
        reason: RefundReason,
        refund_payment: bool = True,
        refund_id: str | None = None,
    ) -> PurchaseData:
        """
        Refund a completed purchase and reverse its effects on the ledger.

        Args:
            purchase_id: Purchase to refund
            reason: Why it is refunded
            refund_payment: False when the provider already refunded (webhook)
            refund_id: Provider refund ID when already known

        Raises:
            PurchaseNotFoundError: Purchase doesn't exist
            InvalidPurchaseStateError: Purchase is not completed
            PaymentProcessingUnavailableError: Provider needed but not configured
            PaymentProviderError: Provider refund failed
        """
        purchase = await self._lock_purchase_for_update(purchase_id)
        if purchase is None:
            raise PurchaseNotFoundError(purchase_id)

        if purchase.status == PurchaseStatus.REFUNDED.value and not refund_payment:
            # Provider retried the webhook; already applied
            await self.session.rollback()
            logger.info("refund_already_applied", purchase_id=str(purchase_id))
            return self._purchase_to_domain(purchase)

        if purchase.status != PurchaseStatus.COMPLETED.value:
            await self.session.rollback()
            raise InvalidPurchaseStateError(
                purchase_id, purchase.status, PurchaseStatus.REFUNDED.value
            )

        if refund_payment and purchase.payment_method != PaymentMethod.FREE.value:
            if self.payment_provider is None:
                await self.session.rollback()
                raise PaymentProcessingUnavailableError()
            if purchase.transaction_id is None:
                await self.session.rollback()
                raise InternalError(f"Paid purchase {purchase_id} has no transaction id")
            try:
                refund_id = await self.payment_provider.refund_payment(purchase.transaction_id)
            except (PaymentProviderError, PaymentFailedError):
                await self.session.rollback()
                raise

        purchase.status = PurchaseStatus.REFUNDED.value
        purchase.refund_id = refund_id
        purchase.refund_amount_minor = purchase.amount_minor
        purchase.refund_reason = reason.value
        purchase.refunded_at = _utc_now()
        await self.session.flush()

        verified = await self.session.get(GuidePurchase, purchase_id)
        if verified is None or verified.status != PurchaseStatus.REFUNDED.value:
            metrics.db_write_verifications_total.labels(success="False").inc()
            raise WriteVerificationError(f"Purchase {purchase_id} not refunded after update")
        metrics.db_write_verifications_total.labels(success="True").inc()

        refunded = self._purchase_to_domain(verified)
        await self.session.commit()

        metrics.refunds_total.labels(source="api" if refund_payment else "webhook").inc()
        logger.info(
            "guide_purchase_refunded",
            purchase_id=str(purchase_id),
            reason=reason.value,
            amount_minor=refunded.amount_minor,
            refund_id=refund_id,
        )

        await self._apply_refund_side_effects(refunded)
        return refunded

    async def apply_provider_refund(self, event: WebhookEvent) -> PurchaseData | None:
        """
        Apply a refund that was issued at the provider (charge.refunded webhook).

        Partial refunds are not modeled by the ledger and are only logged.
        """
        if event.payment_id is None:
            logger.warning("provider_refund_without_payment_id", event_id=event.event_id)
            return None

        purchase = await self._find_purchase_by_transaction(event.payment_id)
        if purchase is None:
            logger.info(
                "provider_refund_for_unknown_payment",
                event_id=event.event_id,
                payment_id=event.payment_id,
            )
            return None

        refunded_minor = event.amount_refunded_minor or 0
        if refunded_minor < purchase.amount_minor:
            logger.warning(
                "partial_refund_ignored",
                purchase_id=str(purchase.id),
                amount_minor=purchase.amount_minor,
                amount_refunded_minor=refunded_minor,
            )
            return None

        return await self.refund_purchase(
            purchase.id,
            RefundReason.CUSTOMER_REQUEST,
            refund_payment=False,
            refund_id=event.refund_id,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _validate_amount(self, intent: PurchaseIntent, guide: GuideData) -> int:
        """Apply the guide's pricing rules; return the amount to charge."""
        if intent.payment_type is not None and intent.payment_type != guide.pricing_type:
            raise InvalidAmountError(
                intent.amount_minor,
                f"payment type {intent.payment_type.value} does not match guide pricing "
                f"{guide.pricing_type.value}",
            )

        if guide.pricing_type == PricingType.FREE:
            return 0

        if intent.currency != guide.currency:
            raise InvalidAmountError(
                intent.amount_minor,
                f"currency {intent.currency} does not match guide currency {guide.currency}",
            )

        if guide.pricing_type == PricingType.PAID:
            if intent.amount_minor != guide.price_minor:
                raise InvalidAmountError(
                    intent.amount_minor,
                    f"amount must equal the guide price of {guide.price_minor} cents",
                )
            if guide.price_minor < MINIMUM_PAID_PRICE_MINOR:
                raise InvalidAmountError(
                    intent.amount_minor,
                    f"guide price is below the minimum of {MINIMUM_PAID_PRICE_MINOR} cents",
                )
            return guide.price_minor

        if intent.amount_minor < MINIMUM_PAID_PRICE_MINOR:
            raise InvalidAmountError(
                intent.amount_minor,
                f"pay-what-you-want amount must be at least {MINIMUM_PAID_PRICE_MINOR} cents",
            )
        return intent.amount_minor

    async def _take_payment(
        self,
        intent: PurchaseIntent,
        guide: GuideData,
        user_id: UUID,
        amount_minor: int,
        purchase_id: UUID,
    ) -> str:
        """
        Charge the buyer; return the payment ID only if the payment succeeded.

        The idempotency key is the purchase ID, so provider retries of this
        attempt collapse into one charge while a later purchase of the same
        guide is charged again.
        """
        if self.payment_provider is None:
            raise PaymentProcessingUnavailableError()
        if not intent.payment_method_id:
            raise PaymentFailedError("a payment method is required for this guide")

        result = await self.payment_provider.charge(
            PaymentRequest(
                amount_minor=amount_minor,
                currency=guide.currency,
                payment_method_id=intent.payment_method_id,
                description=f"Guide purchase: {guide.title}",
                metadata_guide_id=str(guide.guide_id),
                metadata_user_id=str(user_id),
                idempotency_key=f"guide-purchase-{purchase_id}",
            )
        )

        if not result.succeeded:
            logger.warning(
                "payment_not_confirmed",
                payment_id=result.payment_id,
                status=result.status,
                guide_id=str(guide.guide_id),
            )
            raise PaymentFailedError(
                f"payment was not completed (status: {result.status})", result.payment_id
            )

        return result.payment_id

    async def _record_purchase(
        self,
        purchase_id: UUID,
        user_id: UUID,
        guide: GuideData,
        breakdown: FeeBreakdown,
        payment_method: PaymentMethod,
        transaction_id: str | None,
    ) -> PurchaseData:
        """
        Insert the purchase row and commit.

        The partial unique index closes the race between the guard and this
        insert. If the insert fails after money was captured, the payment is
        refunded before the error propagates.
        """
        purchase = GuidePurchase(
            id=purchase_id,
            user_id=user_id,
            guide_id=guide.guide_id,
            amount_minor=breakdown.amount_minor,
            currency=guide.currency,
            payment_method=payment_method.value,
            transaction_id=transaction_id,
            status=PurchaseStatus.COMPLETED.value,
            platform_fee_minor=breakdown.platform_fee_minor,
            stripe_fee_minor=breakdown.stripe_fee_minor,
            creator_earnings_minor=breakdown.creator_earnings_minor,
            purchase_date=_utc_now(),
        )

        try:
            self.session.add(purchase)
            await self.session.flush()

            verified = await self.session.get(GuidePurchase, purchase.id)
            if verified is None:
                metrics.db_write_verifications_total.labels(success="False").inc()
                raise WriteVerificationError(f"Purchase {purchase.id} not found after insert")
            metrics.db_write_verifications_total.labels(success="True").inc()

            recorded = self._purchase_to_domain(verified)
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            if transaction_id:
                await self._refund_captured_payment(transaction_id, breakdown.amount_minor, exc)
            if UNIQUE_COMPLETED_PURCHASE_INDEX in str(exc.orig):
                logger.warning(
                    "duplicate_purchase_race_detected",
                    user_id=str(user_id),
                    guide_id=str(guide.guide_id),
                )
                raise DuplicatePurchaseError(user_id, guide.guide_id) from exc
            raise InternalError(f"Purchase insert violated a constraint: {exc.orig}") from exc
        except (SQLAlchemyError, WriteVerificationError) as exc:
            await self.session.rollback()
            if transaction_id:
                await self._refund_captured_payment(transaction_id, breakdown.amount_minor, exc)
            raise

        return recorded

    async def _refund_captured_payment(
        self, transaction_id: str, amount_minor: int, cause: Exception
    ) -> None:
        """Give the money back when no purchase row could be recorded for it."""
        if self.payment_provider is None:
            return

        try:
            owner = await self._find_purchase_by_transaction(transaction_id)
        except SQLAlchemyError as exc:
            logger.error(
                "captured_payment_owner_unknown", transaction_id=transaction_id, error=str(exc)
            )
            await ReconciliationRecorder(self.session).record(
                ReconciliationOperation.PAYMENT_REFUND,
                error=f"could not check payment {transaction_id} after {type(cause).__name__}: {exc}",
                attempts=0,
                amount_minor=amount_minor,
            )
            return
        if owner is not None:
            logger.error(
                "captured_payment_already_recorded",
                transaction_id=transaction_id,
                purchase_id=str(owner.id),
                cause=type(cause).__name__,
            )
            return

        try:
            refund_id = await self.payment_provider.refund_payment(transaction_id)
        except (PaymentProviderError, PaymentFailedError) as exc:
            logger.error(
                "captured_payment_refund_failed",
                transaction_id=transaction_id,
                amount_minor=amount_minor,
                error=str(exc),
            )
            await ReconciliationRecorder(self.session).record(
                ReconciliationOperation.PAYMENT_REFUND,
                error=f"refund after {type(cause).__name__} failed: {exc}",
                attempts=1,
                amount_minor=amount_minor,
            )
            return

        logger.warning(
            "captured_payment_refunded",
            transaction_id=transaction_id,
            refund_id=refund_id,
            amount_minor=amount_minor,
            cause=type(cause).__name__,
        )

    async def _apply_purchase_side_effects(self, purchase: PurchaseData, guide: GuideData) -> None:
        await self.side_effects.run(
            ReconciliationOperation.GUIDE_STATS,
            lambda: self._increment_guide_stats(guide.guide_id, purchase.amount_minor),
            purchase_id=purchase.purchase_id,
            subject_id=guide.guide_id,
            amount_minor=purchase.amount_minor,
        )

        if purchase.payment_method == PaymentMethod.FREE:
            return

        await self.side_effects.run(
            ReconciliationOperation.CREATOR_EARNINGS,
            lambda: self.earnings.accumulate(guide.author_id, purchase.creator_earnings_minor),
            purchase_id=purchase.purchase_id,
            subject_id=guide.author_id,
            amount_minor=purchase.creator_earnings_minor,
        )

        if guide.author_id == purchase.user_id:
            return

        await self.side_effects.run(
            ReconciliationOperation.NOTIFICATION,
            lambda: self.notifications.guide_purchased(
                creator_id=guide.author_id,
                guide_id=guide.guide_id,
                title=guide.title,
                amount_minor=purchase.amount_minor,
                creator_earnings_minor=purchase.creator_earnings_minor,
            ),
            purchase_id=purchase.purchase_id,
            subject_id=guide.author_id,
        )

    async def _apply_refund_side_effects(self, purchase: PurchaseData) -> None:
        guide = await self._find_guide(purchase.guide_id)
        if guide is None:
            await ReconciliationRecorder(self.session).record(
                ReconciliationOperation.GUIDE_STATS,
                error=f"guide {purchase.guide_id} missing while reversing refund",
                attempts=1,
                purchase_id=purchase.purchase_id,
                subject_id=purchase.guide_id,
                amount_minor=purchase.amount_minor,
            )
            return

        await self.side_effects.run(
            ReconciliationOperation.GUIDE_STATS,
            lambda: self._decrement_guide_stats(guide.guide_id, purchase.amount_minor),
            purchase_id=purchase.purchase_id,
            subject_id=guide.guide_id,
            amount_minor=-purchase.amount_minor,
        )

        if purchase.payment_method != PaymentMethod.FREE:
            await self.side_effects.run(
                ReconciliationOperation.CREATOR_EARNINGS,
                lambda: self.earnings.reverse(guide.author_id, purchase.creator_earnings_minor),
                purchase_id=purchase.purchase_id,
                subject_id=guide.author_id,
                amount_minor=-purchase.creator_earnings_minor,
            )

        await self.side_effects.run(
            ReconciliationOperation.NOTIFICATION,
            lambda: self.notifications.purchase_refunded(
                buyer_id=purchase.user_id,
                purchase_id=purchase.purchase_id,
                title=guide.title,
                amount_minor=purchase.amount_minor,
            ),
            purchase_id=purchase.purchase_id,
            subject_id=purchase.user_id,
        )

    async def _increment_guide_stats(self, guide_id: UUID, amount_minor: int) -> None:
        """purchases += 1, revenue += amount, in place."""
        stmt = (
            update(Guide)
            .where(Guide.id == guide_id)
            .values(
                purchases=Guide.purchases + 1,
                revenue_minor=Guide.revenue_minor + amount_minor,
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise InternalError(f"Guide {guide_id} not found while updating stats")

    async def _decrement_guide_stats(self, guide_id: UUID, amount_minor: int) -> None:
        stmt = (
            update(Guide)
            .where(Guide.id == guide_id)
            .values(
                purchases=func.greatest(Guide.purchases - 1, 0),
                revenue_minor=func.greatest(Guide.revenue_minor - amount_minor, 0),
            )
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            raise InternalError(f"Guide {guide_id} not found while reversing stats")

    async def _find_guide(self, guide_id: UUID) -> GuideData | None:
        guide = await self.session.get(Guide, guide_id)
        if guide is None:
            return None
        return GuideData(
            guide_id=guide.id,
            author_id=guide.author_id,
            title=guide.title,
            status=guide.status,
            pricing_type=PricingType(guide.pricing_type),
            price_minor=guide.price_minor,
            currency=guide.currency,
        )

    async def _lock_purchase_for_update(self, purchase_id: UUID) -> GuidePurchase | None:
        """Lock purchase row for update (SELECT FOR UPDATE)."""
        stmt = select(GuidePurchase).where(GuidePurchase.id == purchase_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_purchase_by_transaction(self, transaction_id: str) -> GuidePurchase | None:
        stmt = (
            select(GuidePurchase).where(GuidePurchase.transaction_id == transaction_id).limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _purchase_to_domain(self, purchase: GuidePurchase) -> PurchaseData:
        """Convert ORM purchase to domain model."""
        return PurchaseData(
            purchase_id=purchase.id,
            user_id=purchase.user_id,
            guide_id=purchase.guide_id,
            amount_minor=purchase.amount_minor,
            currency=purchase.currency,
            payment_method=PaymentMethod(purchase.payment_method),
            transaction_id=purchase.transaction_id,
            status=PurchaseStatus(purchase.status),
            platform_fee_minor=purchase.platform_fee_minor,
            stripe_fee_minor=purchase.stripe_fee_minor,
            creator_earnings_minor=purchase.creator_earnings_minor,
            purchase_date=purchase.purchase_date,
            refund_reason=RefundReason(purchase.refund_reason) if purchase.refund_reason else None,
            refunded_at=purchase.refunded_at,
        )
