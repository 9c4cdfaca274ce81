"""
Earnings Accumulator - Atomic updates of creator running totals.

Every write is a single SQL statement that increments in place, so
concurrent purchases of the same creator's guides never lose an update.
Statements are staged on the session; the SideEffectRunner commits.
"""

from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.db.models import CreatorProfile
from sacavia_ledger.models.domain import CreatorEarningsTotals

logger = get_logger(__name__)


class EarningsAccumulator:
    """Adds and reverses creator earnings with atomic upserts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def accumulate(self, creator_id: UUID, creator_earnings_minor: int) -> CreatorEarningsTotals:
        """
        Credit one sale to a creator.

        INSERT ... ON CONFLICT (user_id) DO UPDATE adds the earnings to
        total_earnings and available_balance and one to total_sales. Creators
        without a profile row get one on their first sale.

        Raises:
            ValueError: If creator_earnings_minor is negative
        """
        if creator_earnings_minor < 0:
            raise ValueError(f"Creator earnings cannot be negative: {creator_earnings_minor}")

        insert_stmt = pg_insert(CreatorProfile).values(
            user_id=creator_id,
            total_earnings_minor=creator_earnings_minor,
            available_balance_minor=creator_earnings_minor,
            total_sales=1,
        )
        stmt = insert_stmt.on_conflict_do_update(
            index_elements=[CreatorProfile.user_id],
            set_={
                "total_earnings_minor": CreatorProfile.total_earnings_minor
                + insert_stmt.excluded.total_earnings_minor,
                "available_balance_minor": CreatorProfile.available_balance_minor
                + insert_stmt.excluded.available_balance_minor,
                "total_sales": CreatorProfile.total_sales + insert_stmt.excluded.total_sales,
                "updated_at": func.now(),
            },
        ).returning(
            CreatorProfile.total_earnings_minor,
            CreatorProfile.available_balance_minor,
            CreatorProfile.total_sales,
        )

        result = await self.session.execute(stmt)
        row = result.one()

        logger.info(
            "creator_earnings_accumulated",
            creator_id=str(creator_id),
            earnings_minor=creator_earnings_minor,
            total_earnings_minor=row.total_earnings_minor,
            total_sales=row.total_sales,
        )

        return CreatorEarningsTotals(
            creator_id=creator_id,
            total_earnings_minor=row.total_earnings_minor,
            available_balance_minor=row.available_balance_minor,
            total_sales=row.total_sales,
        )

    async def reverse(
        self, creator_id: UUID, creator_earnings_minor: int
    ) -> CreatorEarningsTotals | None:
        """
        Take back one refunded sale, never letting a counter drop below zero.

        Returns:
            New totals, or None if the creator has no profile row
        """
        stmt = (
            update(CreatorProfile)
            .where(CreatorProfile.user_id == creator_id)
            .values(
                total_earnings_minor=func.greatest(
                    CreatorProfile.total_earnings_minor - creator_earnings_minor, 0
                ),
                available_balance_minor=func.greatest(
                    CreatorProfile.available_balance_minor - creator_earnings_minor, 0
                ),
                total_sales=func.greatest(CreatorProfile.total_sales - 1, 0),
                updated_at=func.now(),
            )
            .returning(
                CreatorProfile.total_earnings_minor,
                CreatorProfile.available_balance_minor,
                CreatorProfile.total_sales,
            )
        )

        result = await self.session.execute(stmt)
        row = result.one_or_none()
        if row is None:
            logger.warning("creator_profile_missing_on_reverse", creator_id=str(creator_id))
            return None

        logger.info(
            "creator_earnings_reversed",
            creator_id=str(creator_id),
            earnings_minor=creator_earnings_minor,
            total_earnings_minor=row.total_earnings_minor,
            total_sales=row.total_sales,
        )

        return CreatorEarningsTotals(
            creator_id=creator_id,
            total_earnings_minor=row.total_earnings_minor,
            available_balance_minor=row.available_balance_minor,
            total_sales=row.total_sales,
        )
