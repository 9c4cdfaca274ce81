"""
Payout Service - Reconcile creator balances and handle payout requests.

Balances are derived from lifetime earnings minus completed and in-flight
payouts. failed and cancelled payouts never count against a creator.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.config import settings
from sacavia_ledger.db.models import CreatorProfile, Payout, User
from sacavia_ledger.exceptions import (
    CreatorNotFoundError,
    PaymentFailedError,
    PaymentProcessingUnavailableError,
    PaymentProviderError,
    PayoutRejectedError,
    WriteVerificationError,
)
from sacavia_ledger.models.api import PayoutMethod, PayoutStatus, ReconciliationOperation
from sacavia_ledger.models.domain import PayoutData, PayoutPage, PayoutRequestResult, PayoutSummary
from sacavia_ledger.observability.metrics import metrics
from sacavia_ledger.services.notifications import NotificationEmitter, format_money
from sacavia_ledger.services.payment_provider import PaymentProvider, TransferRequest
from sacavia_ledger.services.side_effects import ReconciliationRecorder, SideEffectRunner

logger = get_logger(__name__)

IN_FLIGHT_STATUSES = (PayoutStatus.PENDING, PayoutStatus.PROCESSING)

ESTIMATED_ARRIVAL = {
    PayoutMethod.STRIPE: "1-2 business days",
    PayoutMethod.PAYPAL: "1-3 business days",
    PayoutMethod.BANK: "3-5 business days",
    PayoutMethod.CHECK: "5-10 business days",
}
DEFAULT_ESTIMATED_ARRIVAL = "3-5 business days"


def estimated_arrival(method: PayoutMethod) -> str:
    """How long a payout of this method usually takes to land."""
    return ESTIMATED_ARRIVAL.get(method, DEFAULT_ESTIMATED_ARRIVAL)


def build_payout_summary(
    creator_id: UUID,
    total_earnings_minor: int,
    totals_by_status: Mapping[str, int],
) -> PayoutSummary:
    """
    Derive balances from lifetime earnings and payout totals per status.

    available = max(0, earnings - completed - in_flight). The clamp is kept
    for display; the excess is reported as overdrawn_minor.
    """
    total_payouts = totals_by_status.get(PayoutStatus.COMPLETED.value, 0)
    pending_payouts = sum(totals_by_status.get(status.value, 0) for status in IN_FLIGHT_STATUSES)
    remaining = total_earnings_minor - total_payouts - pending_payouts

    return PayoutSummary(
        creator_id=creator_id,
        total_earnings_minor=total_earnings_minor,
        total_payouts_minor=total_payouts,
        pending_payouts_minor=pending_payouts,
        available_balance_minor=max(0, remaining),
        pending_balance_minor=pending_payouts,
        overdrawn_minor=max(0, -remaining),
    )


def _utc_now() -> datetime:
    return datetime.now(UTC)


class PayoutService:
    """Payout reconciliation, history and requests for creators."""

    def __init__(
        self,
        session: AsyncSession,
        payment_provider: PaymentProvider | None = None,
        side_effects: SideEffectRunner | None = None,
    ) -> None:
        self.session = session
        self.payment_provider = payment_provider
        self.notifications = NotificationEmitter(session)
        self.side_effects = side_effects or SideEffectRunner(session)

    async def reconcile(self, creator_id: UUID) -> PayoutSummary:
        """
        Compute a creator's available and pending balances.

        Raises:
            CreatorNotFoundError: Creator doesn't exist
        """
        total_earnings = await self._find_total_earnings(creator_id)
        if total_earnings is None:
            if await self.session.get(User, creator_id) is None:
                raise CreatorNotFoundError(creator_id)
            total_earnings = 0

        totals = await self._payout_totals_by_status(creator_id)
        return self._summarize(creator_id, total_earnings, totals)

    async def list_payouts(self, creator_id: UUID, page: int = 1, limit: int = 10) -> PayoutPage:
        """Payout history, newest first."""
        count_stmt = select(func.count(Payout.id)).where(Payout.creator_id == creator_id)
        total_docs = (await self.session.execute(count_stmt)).scalar_one()

        stmt = (
            select(Payout)
            .where(Payout.creator_id == creator_id)
            .order_by(Payout.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        payouts = [self._payout_to_domain(p) for p in result.scalars().all()]

        return PayoutPage(payouts=payouts, page=page, limit=limit, total_docs=total_docs)

    async def request_payout(
        self, creator_id: UUID, amount_minor: int, method: PayoutMethod
    ) -> PayoutRequestResult:
        """
        Request a payout of available earnings.

        The creator profile row is locked for the whole request so two
        concurrent requests cannot spend the same balance.

        Raises:
            PayoutRejectedError: Below minimum, above available balance,
                Stripe not connected, or the transfer was refused
            CreatorNotFoundError: Creator has no creator profile
            PaymentProcessingUnavailableError: Stripe payout without a provider
        """
        if amount_minor < settings.minimum_payout_minor:
            raise PayoutRejectedError(
                f"Minimum payout amount is {format_money(settings.minimum_payout_minor)}"
            )

        profile = await self._lock_profile_for_update(creator_id)
        if profile is None:
            raise CreatorNotFoundError(creator_id)

        totals = await self._payout_totals_by_status(creator_id)
        summary = self._summarize(creator_id, profile.total_earnings_minor, totals)

        if amount_minor > summary.available_balance_minor:
            await self.session.rollback()
            raise PayoutRejectedError("Insufficient available balance")

        payout_id = uuid4()
        payout = Payout(
            id=payout_id,
            creator_id=creator_id,
            amount_minor=amount_minor,
            currency="USD",
            method=method.value,
            estimated_arrival=estimated_arrival(method),
        )

        if method == PayoutMethod.STRIPE:
            if not profile.stripe_account_id:
                await self.session.rollback()
                raise PayoutRejectedError(
                    "Stripe account not connected. Please set up your payout method first."
                )
            if self.payment_provider is None:
                await self.session.rollback()
                raise PaymentProcessingUnavailableError()

            try:
                transfer = await self.payment_provider.create_transfer(
                    TransferRequest(
                        amount_minor=amount_minor,
                        currency="USD",
                        destination_account_id=profile.stripe_account_id,
                        description=f"Payout for creator {creator_id}",
                        metadata_creator_id=str(creator_id),
                        idempotency_key=f"payout-{payout_id}",
                    )
                )
            except (PaymentProviderError, PaymentFailedError) as exc:
                await self.session.rollback()
                raise PayoutRejectedError(exc.message) from exc

            payout.status = PayoutStatus.PROCESSING.value
            payout.transaction_id = transfer.transfer_id
            payout.stripe_transfer_id = transfer.transfer_id
        else:
            payout.status = PayoutStatus.PENDING.value
            payout.transaction_id = f"manual_{payout_id.hex}"
            payout.notes = f"Manual payout - will be processed within {estimated_arrival(method)}"

        try:
            self.session.add(payout)
            balance_stmt = (
                update(CreatorProfile)
                .where(CreatorProfile.user_id == creator_id)
                .values(
                    available_balance_minor=func.greatest(
                        CreatorProfile.available_balance_minor - amount_minor, 0
                    ),
                    pending_balance_minor=CreatorProfile.pending_balance_minor + amount_minor,
                    total_payouts_minor=CreatorProfile.total_payouts_minor + amount_minor,
                    last_payout_at=_utc_now(),
                    updated_at=func.now(),
                )
                .returning(
                    CreatorProfile.available_balance_minor,
                    CreatorProfile.pending_balance_minor,
                )
            )
            balances = (await self.session.execute(balance_stmt)).one()
            await self.session.flush()

            verified = await self.session.get(Payout, payout_id)
            if verified is None:
                raise WriteVerificationError(f"Payout {payout_id} not found after insert")

            payout_data = self._payout_to_domain(verified)
            await self.session.commit()
        except (SQLAlchemyError, WriteVerificationError) as exc:
            await self.session.rollback()
            if payout.stripe_transfer_id:
                logger.critical(
                    "payout_record_failed_after_transfer",
                    creator_id=str(creator_id),
                    transfer_id=payout.stripe_transfer_id,
                    amount_minor=amount_minor,
                    error=str(exc),
                )
                await ReconciliationRecorder(self.session).record(
                    ReconciliationOperation.PAYOUT,
                    error=(
                        f"transfer {payout.stripe_transfer_id} sent but payout {payout_id} "
                        f"not recorded: {exc}"
                    ),
                    attempts=1,
                    subject_id=creator_id,
                    amount_minor=amount_minor,
                )
            raise

        metrics.record_payout(method.value, amount_minor)
        logger.info(
            "payout_requested",
            creator_id=str(creator_id),
            payout_id=str(payout_id),
            method=method.value,
            amount_minor=amount_minor,
            status=payout_data.status.value,
        )

        await self.side_effects.run(
            ReconciliationOperation.NOTIFICATION,
            lambda: self.notifications.payout_requested(
                creator_id=creator_id,
                payout_id=payout_id,
                amount_minor=amount_minor,
                method=method,
                estimated_arrival=estimated_arrival(method),
            ),
            subject_id=creator_id,
        )

        return PayoutRequestResult(
            payout=payout_data,
            available_balance_minor=balances.available_balance_minor,
            pending_balance_minor=balances.pending_balance_minor,
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    def _summarize(
        self, creator_id: UUID, total_earnings_minor: int, totals: Mapping[str, int]
    ) -> PayoutSummary:
        summary = build_payout_summary(creator_id, total_earnings_minor, totals)
        if summary.overdrawn_minor > 0:
            metrics.payout_overdraws_total.inc()
            logger.warning(
                "payout_overdraw_detected",
                creator_id=str(creator_id),
                total_earnings_minor=summary.total_earnings_minor,
                total_payouts_minor=summary.total_payouts_minor,
                pending_payouts_minor=summary.pending_payouts_minor,
                overdrawn_minor=summary.overdrawn_minor,
            )
        return summary

    async def _find_total_earnings(self, creator_id: UUID) -> int | None:
        stmt = select(CreatorProfile.total_earnings_minor).where(
            CreatorProfile.user_id == creator_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _payout_totals_by_status(self, creator_id: UUID) -> dict[str, int]:
        stmt = (
            select(Payout.status, func.sum(Payout.amount_minor))
            .where(Payout.creator_id == creator_id)
            .group_by(Payout.status)
        )
        result = await self.session.execute(stmt)
        return {status: int(total or 0) for status, total in result.all()}

    async def _lock_profile_for_update(self, creator_id: UUID) -> CreatorProfile | None:
        """Lock creator profile row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(CreatorProfile)
            .where(CreatorProfile.user_id == creator_id)
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _payout_to_domain(self, payout: Payout) -> PayoutData:
        """Convert ORM payout to domain model."""
        return PayoutData(
            payout_id=payout.id,
            creator_id=payout.creator_id,
            amount_minor=payout.amount_minor,
            currency=payout.currency,
            method=PayoutMethod(payout.method),
            status=PayoutStatus(payout.status),
            transaction_id=payout.transaction_id,
            stripe_transfer_id=payout.stripe_transfer_id,
            notes=payout.notes,
            estimated_arrival=payout.estimated_arrival,
            processed_at=payout.processed_at,
            created_at=payout.created_at,
        )
