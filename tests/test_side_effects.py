"""
Tests for SideEffectRunner and ReconciliationRecorder.
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from sacavia_ledger.db.models import ReconciliationRecord
from sacavia_ledger.models.api import ReconciliationOperation
from sacavia_ledger.services.side_effects import (
    ReconciliationRecorder,
    SideEffectRunner,
    is_transient_error,
)


class _PgError(Exception):
    def __init__(self, sqlstate: str) -> None:
        super().__init__(f"sqlstate {sqlstate}")
        self.sqlstate = sqlstate


def _records(db_session: AsyncMock) -> list[ReconciliationRecord]:
    return [obj for obj in db_session.added if isinstance(obj, ReconciliationRecord)]


class TestIsTransientError:
    """Which failures are worth another attempt."""

    def test_operational_error(self) -> None:
        assert is_transient_error(OperationalError("SELECT 1", {}, Exception("gone"))) is True

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_serialization_and_deadlock(self, sqlstate: str) -> None:
        assert is_transient_error(DBAPIError("UPDATE", {}, _PgError(sqlstate))) is True

    def test_invalidated_connection(self) -> None:
        exc = DBAPIError("UPDATE", {}, Exception("reset"), connection_invalidated=True)
        assert is_transient_error(exc) is True

    def test_constraint_violation_is_permanent(self) -> None:
        assert is_transient_error(IntegrityError("INSERT", {}, _PgError("23505"))) is False

    def test_non_database_error(self) -> None:
        assert is_transient_error(ValueError("bad")) is False


class TestSideEffectRunner:
    """Retry, commit and dead-letter behavior."""

    async def test_success_commits_and_returns_result(self, db_session: AsyncMock) -> None:
        action = AsyncMock(return_value="done")

        result = await SideEffectRunner(db_session).run(
            ReconciliationOperation.GUIDE_STATS, action
        )

        assert result == "done"
        action.assert_awaited_once()
        db_session.commit.assert_awaited_once()

    async def test_transient_error_retried(self, db_session: AsyncMock) -> None:
        action = AsyncMock(
            side_effect=[OperationalError("UPDATE", {}, Exception("gone")), "done"]
        )
        runner = SideEffectRunner(db_session, max_attempts=3, backoff_seconds=0)

        result = await runner.run(ReconciliationOperation.CREATOR_EARNINGS, action)

        assert result == "done"
        assert action.await_count == 2
        db_session.rollback.assert_awaited_once()
        assert _records(db_session) == []

    async def test_backoff_doubles(self, db_session: AsyncMock) -> None:
        action = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("gone")))
        runner = SideEffectRunner(db_session, max_attempts=3, backoff_seconds=0.5)

        with patch("sacavia_ledger.services.side_effects.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await runner.run(ReconciliationOperation.CREATOR_EARNINGS, action)

        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    async def test_exhausted_retries_dead_lettered(self, db_session: AsyncMock) -> None:
        purchase_id, creator_id = uuid4(), uuid4()
        action = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("gone")))
        runner = SideEffectRunner(db_session, max_attempts=3, backoff_seconds=0)

        result = await runner.run(
            ReconciliationOperation.CREATOR_EARNINGS,
            action,
            purchase_id=purchase_id,
            subject_id=creator_id,
            amount_minor=791,
        )

        assert result is None
        assert action.await_count == 3
        records = _records(db_session)
        assert len(records) == 1
        assert records[0].operation == "creator_earnings"
        assert records[0].purchase_id == purchase_id
        assert records[0].subject_id == creator_id
        assert records[0].amount_minor == 791
        assert records[0].attempts == 3
        assert records[0].error.startswith("OperationalError")

    async def test_permanent_error_not_retried(self, db_session: AsyncMock) -> None:
        action = AsyncMock(side_effect=ValueError("bad row"))
        runner = SideEffectRunner(db_session, max_attempts=3, backoff_seconds=0)

        result = await runner.run(ReconciliationOperation.NOTIFICATION, action)

        assert result is None
        action.assert_awaited_once()
        assert _records(db_session)[0].attempts == 1

    async def test_failure_never_raises(self, db_session: AsyncMock) -> None:
        """Even when the dead-letter write fails the caller is not interrupted."""
        action = AsyncMock(side_effect=RuntimeError("boom"))
        db_session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("x")))
        runner = SideEffectRunner(db_session, max_attempts=1, backoff_seconds=0)

        assert await runner.run(ReconciliationOperation.GUIDE_STATS, action) is None


class TestReconciliationRecorder:
    """Dead-letter rows."""

    async def test_record_commits(self, db_session: AsyncMock) -> None:
        await ReconciliationRecorder(db_session).record(
            ReconciliationOperation.PAYMENT_REFUND, error="stripe down", attempts=1, amount_minor=1000
        )

        db_session.commit.assert_awaited_once()
        assert _records(db_session)[0].operation == "payment_refund"

    async def test_long_errors_truncated(self, db_session: AsyncMock) -> None:
        await ReconciliationRecorder(db_session).record(
            ReconciliationOperation.GUIDE_STATS, error="x" * 5000, attempts=1
        )

        assert len(_records(db_session)[0].error) == 2000

    async def test_write_failure_rolls_back(self, db_session: AsyncMock) -> None:
        db_session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("x")))

        with patch("sacavia_ledger.services.side_effects.logger", MagicMock()) as logger:
            await ReconciliationRecorder(db_session).record(
                ReconciliationOperation.GUIDE_STATS, error="boom", attempts=1
            )

        db_session.rollback.assert_awaited_once()
        logger.critical.assert_called_once()
