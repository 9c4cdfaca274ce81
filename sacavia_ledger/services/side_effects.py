"""
Side Effect Runner - Best-effort post-purchase writes with retry and dead-lettering.

Once a purchase row is committed the purchase is final. Guide stats, creator
earnings and notifications are applied afterwards, each in its own
transaction. Transient database errors are retried with exponential backoff;
anything that still fails is written to ledger_reconciliation_records so the
drift can be repaired, and never reaches the caller.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import UUID

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.config import settings
from sacavia_ledger.db.models import ReconciliationRecord
from sacavia_ledger.models.api import ReconciliationOperation
from sacavia_ledger.observability.metrics import metrics

logger = get_logger(__name__)

T = TypeVar("T")

# serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


def is_transient_error(exc: BaseException) -> bool:
    """
    Decide whether a database error is worth retrying.

    Operational errors, invalidated connections and serialization or
    deadlock failures are transient. Constraint violations are not.
    """
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        return sqlstate in RETRYABLE_SQLSTATES
    return False


class ReconciliationRecorder:
    """Writes dead-letter rows for side effects that could not be applied."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        operation: ReconciliationOperation,
        error: str,
        attempts: int,
        purchase_id: UUID | None = None,
        subject_id: UUID | None = None,
        amount_minor: int | None = None,
    ) -> None:
        """
        Persist a reconciliation record in its own transaction.

        If the record itself cannot be written the failure is logged at
        critical level; this is the last durable signal the ledger has.
        """
        record = ReconciliationRecord(
            operation=operation.value,
            purchase_id=purchase_id,
            subject_id=subject_id,
            amount_minor=amount_minor,
            error=error[:2000],
            attempts=attempts,
        )
        try:
            self.session.add(record)
            await self.session.commit()
        except Exception as exc:
            await self.session.rollback()
            logger.critical(
                "reconciliation_record_write_failed",
                operation=operation.value,
                purchase_id=str(purchase_id) if purchase_id else None,
                subject_id=str(subject_id) if subject_id else None,
                amount_minor=amount_minor,
                original_error=error,
                error=str(exc),
            )
            return

        logger.warning(
            "reconciliation_record_created",
            operation=operation.value,
            purchase_id=str(purchase_id) if purchase_id else None,
            subject_id=str(subject_id) if subject_id else None,
            amount_minor=amount_minor,
            attempts=attempts,
        )


class SideEffectRunner:
    """
    Runs one side effect per transaction with bounded retries.

    The action stages writes on the session; the runner commits them.
    """

    def __init__(
        self,
        session: AsyncSession,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        self.session = session
        self.max_attempts = max_attempts or settings.side_effect_max_attempts
        self.backoff_seconds = (
            settings.side_effect_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.recorder = ReconciliationRecorder(session)

    async def run(
        self,
        operation: ReconciliationOperation,
        action: Callable[[], Awaitable[T]],
        purchase_id: UUID | None = None,
        subject_id: UUID | None = None,
        amount_minor: int | None = None,
    ) -> T | None:
        """
        Apply a side effect, returning its result or None if it was dead-lettered.

        Args:
            operation: Which side effect this is (used for metrics and the record)
            action: Coroutine factory staging the writes
            purchase_id: Purchase that triggered the effect
            subject_id: Row the effect targets (guide, creator, recipient)
            amount_minor: Amount involved, for repair
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await action()
                await self.session.commit()
                return result
            except Exception as exc:
                await self.session.rollback()

                if attempt < self.max_attempts and is_transient_error(exc):
                    delay = self.backoff_seconds * (2 ** (attempt - 1))
                    metrics.side_effect_retries_total.labels(effect=operation.value).inc()
                    logger.warning(
                        "side_effect_retrying",
                        operation=operation.value,
                        attempt=attempt,
                        delay_seconds=delay,
                        error=str(exc),
                    )
                    await asyncio.sleep(delay)
                    continue

                metrics.record_side_effect_failure(operation.value)
                logger.error(
                    "side_effect_failed",
                    operation=operation.value,
                    attempts=attempt,
                    purchase_id=str(purchase_id) if purchase_id else None,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                await self.recorder.record(
                    operation,
                    error=f"{type(exc).__name__}: {exc}",
                    attempts=attempt,
                    purchase_id=purchase_id,
                    subject_id=subject_id,
                    amount_minor=amount_minor,
                )
                return None
