"""
Tests for PayoutService.

Balance reconciliation, payout history and payout requests.
"""

from unittest.mock import AsyncMock, MagicMock
from uuid import UUID, uuid4

import pytest
from hypothesis import given
from hypothesis import strategies as st
from sqlalchemy.exc import OperationalError

from sacavia_ledger.db.models import Notification, Payout, ReconciliationRecord, User
from sacavia_ledger.exceptions import (
    CreatorNotFoundError,
    PaymentProcessingUnavailableError,
    PaymentProviderError,
    PayoutRejectedError,
)
from sacavia_ledger.models.api import PayoutMethod, PayoutStatus, ReconciliationOperation
from sacavia_ledger.services.payouts import (
    PayoutService,
    build_payout_summary,
    estimated_arrival,
)
from tests.conftest import create_mock_payout, create_mock_profile, make_result


def _balances(available: int, pending: int) -> MagicMock:
    return MagicMock(available_balance_minor=available, pending_balance_minor=pending)


def _request_results(
    profile: MagicMock | None,
    totals: list[tuple[str, int]] | None = None,
    balances: MagicMock | None = None,
) -> list[MagicMock]:
    """execute() results in request order: lock, totals by status, balance update."""
    return [
        make_result(scalar=profile),
        make_result(rows=totals or []),
        make_result(one=balances or _balances(0, 0)),
    ]


class TestBuildPayoutSummary:
    """Pure balance derivation."""

    def test_no_payouts(self) -> None:
        summary = build_payout_summary(uuid4(), 10_000, {})

        assert summary.available_balance_minor == 10_000
        assert summary.pending_balance_minor == 0
        assert summary.total_payouts_minor == 0

    def test_completed_and_in_flight_deducted(self) -> None:
        summary = build_payout_summary(
            uuid4(),
            10_000,
            {"completed": 3000, "pending": 1000, "processing": 500},
        )

        assert summary.total_payouts_minor == 3000
        assert summary.pending_payouts_minor == 1500
        assert summary.available_balance_minor == 5500
        assert summary.pending_balance_minor == 1500

    def test_earnings_100_completed_60_pending_30(self) -> None:
        summary = build_payout_summary(uuid4(), 10_000, {"completed": 6000, "pending": 3000})

        assert summary.available_balance_minor == 1000
        assert summary.pending_balance_minor == 3000
        assert summary.overdrawn_minor == 0

    def test_failed_and_cancelled_ignored(self) -> None:
        summary = build_payout_summary(uuid4(), 10_000, {"failed": 4000, "cancelled": 2000})

        assert summary.available_balance_minor == 10_000

    def test_overdraw_clamped_and_reported(self) -> None:
        summary = build_payout_summary(uuid4(), 1000, {"completed": 1500})

        assert summary.available_balance_minor == 0
        assert summary.overdrawn_minor == 500

    @given(
        st.integers(min_value=0, max_value=10_000_000),
        st.dictionaries(
            st.sampled_from([s.value for s in PayoutStatus]),
            st.integers(min_value=0, max_value=10_000_000),
        ),
    )
    def test_balance_identity(self, earnings: int, totals: dict[str, int]) -> None:
        """available - overdrawn == earnings - completed - in_flight."""
        summary = build_payout_summary(uuid4(), earnings, totals)

        assert summary.available_balance_minor >= 0
        assert summary.available_balance_minor - summary.overdrawn_minor == (
            earnings - summary.total_payouts_minor - summary.pending_payouts_minor
        )


class TestEstimatedArrival:
    @pytest.mark.parametrize(
        ("method", "expected"),
        [
            (PayoutMethod.STRIPE, "1-2 business days"),
            (PayoutMethod.PAYPAL, "1-3 business days"),
            (PayoutMethod.BANK, "3-5 business days"),
            (PayoutMethod.CHECK, "5-10 business days"),
            (PayoutMethod.MANUAL, "3-5 business days"),
        ],
    )
    def test_by_method(self, method: PayoutMethod, expected: str) -> None:
        assert estimated_arrival(method) == expected


class TestReconcile:
    """Balances read from the database."""

    async def test_reconcile(self, db_session: AsyncMock, creator_id: UUID) -> None:
        db_session.execute = AsyncMock(
            side_effect=[
                make_result(scalar=10_000),
                make_result(rows=[("completed", 2500), ("processing", 2500)]),
            ]
        )

        summary = await PayoutService(db_session).reconcile(creator_id)

        assert summary.available_balance_minor == 5000
        assert summary.pending_balance_minor == 2500

    async def test_creator_without_profile_has_zero_balance(
        self, db_session: AsyncMock, creator_id: UUID
    ) -> None:
        db_session.rows[(User, creator_id)] = MagicMock(spec=User, id=creator_id)
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=None), make_result()])

        summary = await PayoutService(db_session).reconcile(creator_id)

        assert summary.total_earnings_minor == 0
        assert summary.available_balance_minor == 0

    async def test_unknown_creator(self, db_session: AsyncMock) -> None:
        with pytest.raises(CreatorNotFoundError):
            await PayoutService(db_session).reconcile(uuid4())


class TestListPayouts:
    """Payout history pagination."""

    async def test_first_page(self, db_session: AsyncMock, creator_id: UUID) -> None:
        payouts = [create_mock_payout(creator_id=creator_id) for _ in range(10)]
        db_session.execute = AsyncMock(
            side_effect=[make_result(scalar=23), make_result(scalars=payouts)]
        )

        page = await PayoutService(db_session).list_payouts(creator_id, page=1, limit=10)

        assert len(page.payouts) == 10
        assert page.total_docs == 23
        assert page.total_pages == 3
        assert page.has_next_page is True
        assert page.has_prev_page is False

    async def test_offset_applied(self, db_session: AsyncMock, creator_id: UUID) -> None:
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=23), make_result()])

        page = await PayoutService(db_session).list_payouts(creator_id, page=3, limit=10)

        stmt = db_session.execute.call_args_list[1].args[0]
        assert stmt._offset_clause.value == 20
        assert stmt._limit_clause.value == 10
        assert page.has_next_page is False
        assert page.has_prev_page is True

    async def test_empty_history(self, db_session: AsyncMock, creator_id: UUID) -> None:
        db_session.execute = AsyncMock(side_effect=[make_result(scalar=0), make_result()])

        page = await PayoutService(db_session).list_payouts(creator_id)

        assert page.payouts == []
        assert page.total_pages == 1
        assert page.has_next_page is False


class TestRequestPayout:
    """Payout requests."""

    async def test_stripe_payout(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(
            side_effect=_request_results(profile, balances=_balances(5000, 5000))
        )
        service = PayoutService(db_session, payment_provider=payment_provider)

        result = await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        transfer = payment_provider.create_transfer.call_args.args[0]
        assert transfer.amount_minor == 5000
        assert transfer.destination_account_id == "acct_test_123"
        assert transfer.idempotency_key == f"payout-{result.payout.payout_id}"

        assert result.payout.status == PayoutStatus.PROCESSING
        assert result.payout.stripe_transfer_id == "tr_test_123"
        assert result.payout.estimated_arrival == "1-2 business days"
        assert result.available_balance_minor == 5000
        assert result.pending_balance_minor == 5000

    async def test_manual_payout_is_pending(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id, stripe_account_id=None)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        service = PayoutService(db_session, payment_provider=payment_provider)

        result = await service.request_payout(creator_id, 3000, PayoutMethod.BANK)

        payment_provider.create_transfer.assert_not_awaited()
        assert result.payout.status == PayoutStatus.PENDING
        assert result.payout.transaction_id.startswith("manual_")
        assert "3-5 business days" in result.payout.notes

    async def test_creator_is_notified(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        service = PayoutService(db_session, payment_provider=payment_provider)

        await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        notifications = [o for o in db_session.added if isinstance(o, Notification)]
        assert len(notifications) == 1
        assert notifications[0].recipient_id == creator_id
        assert db_session.commit.await_count == 2

    async def test_below_minimum(self, db_session: AsyncMock, creator_id: UUID) -> None:
        with pytest.raises(PayoutRejectedError) as exc_info:
            await PayoutService(db_session).request_payout(creator_id, 2499, PayoutMethod.STRIPE)

        assert str(exc_info.value) == "Minimum payout amount is $25.00"
        db_session.execute.assert_not_awaited()

    async def test_no_creator_profile(self, db_session: AsyncMock, creator_id: UUID) -> None:
        db_session.execute = AsyncMock(return_value=make_result(scalar=None))

        with pytest.raises(CreatorNotFoundError):
            await PayoutService(db_session).request_payout(creator_id, 5000, PayoutMethod.STRIPE)

    async def test_insufficient_balance(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id, total_earnings_minor=10_000)
        db_session.execute = AsyncMock(
            side_effect=_request_results(profile, totals=[("processing", 6000)])
        )
        service = PayoutService(db_session, payment_provider=payment_provider)

        with pytest.raises(PayoutRejectedError, match="Insufficient available balance"):
            await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        payment_provider.create_transfer.assert_not_awaited()
        db_session.rollback.assert_awaited_once()

    async def test_stripe_not_connected(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id, stripe_account_id=None)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        service = PayoutService(db_session, payment_provider=payment_provider)

        with pytest.raises(PayoutRejectedError, match="Stripe account not connected"):
            await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        payment_provider.create_transfer.assert_not_awaited()

    async def test_stripe_without_provider(self, db_session: AsyncMock, creator_id: UUID) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))

        with pytest.raises(PaymentProcessingUnavailableError):
            await PayoutService(db_session).request_payout(creator_id, 5000, PayoutMethod.STRIPE)

    async def test_transfer_failure_rejects_payout(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        payment_provider.create_transfer.side_effect = PaymentProviderError(
            "Stripe transfer failed: insufficient platform funds"
        )
        service = PayoutService(db_session, payment_provider=payment_provider)

        with pytest.raises(PayoutRejectedError, match="insufficient platform funds"):
            await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        assert [o for o in db_session.added if isinstance(o, Payout)] == []

    async def test_database_failure_after_transfer_is_dead_lettered(
        self, db_session: AsyncMock, payment_provider: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        db_session.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("gone")))
        service = PayoutService(db_session, payment_provider=payment_provider)

        with pytest.raises(OperationalError):
            await service.request_payout(creator_id, 5000, PayoutMethod.STRIPE)

        db_session.rollback.assert_awaited()
        records = [o for o in db_session.added if isinstance(o, ReconciliationRecord)]
        assert len(records) == 1
        assert records[0].operation == ReconciliationOperation.PAYOUT.value
        assert records[0].subject_id == creator_id
        assert records[0].amount_minor == 5000
        assert "tr_test_123" in records[0].error

    async def test_database_failure_on_manual_payout_is_not_dead_lettered(
        self, db_session: AsyncMock, creator_id: UUID
    ) -> None:
        profile = create_mock_profile(user_id=creator_id)
        db_session.execute = AsyncMock(side_effect=_request_results(profile))
        db_session.flush = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("gone")))

        with pytest.raises(OperationalError):
            await PayoutService(db_session).request_payout(creator_id, 5000, PayoutMethod.PAYPAL)

        assert [o for o in db_session.added if isinstance(o, ReconciliationRecord)] == []
