"""
Creator Analytics - Earnings dashboard for a creator.

Read-only; intended for the read replica session.
"""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.config import settings
from sacavia_ledger.db.models import CreatorProfile, Guide, GuidePurchase, User
from sacavia_ledger.exceptions import CreatorNotFoundError
from sacavia_ledger.models.api import (
    CreatorEarningsData,
    EarningsPeriod,
    EarningsStats,
    GuideStatus,
    MonthlyDataPoint,
    PayoutInfo,
    PurchaseStatus,
    RecentSale,
    RecentSaleGuide,
    StripeConnectStatus,
    TopSellingGuide,
)
from sacavia_ledger.services.fees import to_major_units
from sacavia_ledger.services.payouts import PayoutService

logger = get_logger(__name__)

PERIOD_DAYS = {
    EarningsPeriod.WEEK: 7,
    EarningsPeriod.MONTH: 30,
    EarningsPeriod.QUARTER: 90,
    EarningsPeriod.YEAR: 365,
}

RECENT_SALES_LIMIT = 10
MONTHS_OF_HISTORY = 12
PAYOUT_INTERVAL = timedelta(days=7)


def parse_period(value: str | None) -> EarningsPeriod:
    """Map a query value to a reporting period; anything unknown means 30 days."""
    try:
        return EarningsPeriod(value)
    except ValueError:
        return EarningsPeriod.MONTH


def month_starts(now: datetime, count: int = MONTHS_OF_HISTORY) -> list[datetime]:
    """First instant of each of the last `count` calendar months, oldest first."""
    year, month = now.year, now.month
    starts = []
    for _ in range(count):
        starts.append(datetime(year, month, 1, tzinfo=UTC))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    return list(reversed(starts))


def bucket_monthly(
    sales: Iterable[tuple[datetime, int]], now: datetime
) -> list[MonthlyDataPoint]:
    """
    Sum creator earnings and count sales per calendar month.

    Args:
        sales: (purchase_date, creator_earnings_minor) pairs
        now: End of the window; its month is the last bucket
    """
    starts = month_starts(now)
    earnings = {(s.year, s.month): 0 for s in starts}
    counts = {(s.year, s.month): 0 for s in starts}

    for purchase_date, creator_earnings_minor in sales:
        key = (purchase_date.year, purchase_date.month)
        if key in earnings:
            earnings[key] += creator_earnings_minor
            counts[key] += 1

    return [
        MonthlyDataPoint(
            month=start.strftime("%b %y"),
            earnings=to_major_units(earnings[(start.year, start.month)]),
            sales=counts[(start.year, start.month)],
        )
        for start in starts
    ]


class CreatorAnalyticsService:
    """Builds the creator earnings dashboard."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_dashboard(
        self,
        creator_id: UUID,
        period: EarningsPeriod = EarningsPeriod.MONTH,
        now: datetime | None = None,
    ) -> CreatorEarningsData:
        """
        Aggregate a creator's earnings, sales, guides and payout position.

        Raises:
            CreatorNotFoundError: Creator doesn't exist
        """
        now = now or datetime.now(UTC)

        creator = await self.session.get(User, creator_id)
        if creator is None:
            raise CreatorNotFoundError(creator_id)

        profile = await self.session.get(CreatorProfile, creator_id)
        guides = await self._find_guides(creator_id)
        period_earnings, period_sales = await self._period_totals(
            creator_id, now - timedelta(days=PERIOD_DAYS[period])
        )
        top_selling = await self._top_selling_guide(creator_id)
        recent_sales = await self._recent_sales(creator_id)
        monthly = await self._monthly_sales(creator_id, month_starts(now)[0])
        payouts = await PayoutService(self.session).reconcile(creator_id)

        total_sales = profile.total_sales if profile else 0
        total_views = sum(g.views for g in guides)
        rated = [g.average_rating for g in guides if g.average_rating]
        average_rating = round(sum(rated) / len(rated), 2) if rated else 0.0
        conversion_rate = round(total_sales / total_views * 100, 2) if total_views else 0.0

        stripe_account_id = profile.stripe_account_id if profile else None
        stripe_active = bool(profile and profile.stripe_account_status == "active")

        logger.info(
            "creator_dashboard_built",
            creator_id=str(creator_id),
            period=period.value,
            period_sales=period_sales,
        )

        return CreatorEarningsData(
            stats=EarningsStats(
                total_earnings=to_major_units(profile.total_earnings_minor if profile else 0),
                monthly_earnings=to_major_units(period_earnings),
                total_sales=total_sales,
                monthly_sales=period_sales,
                total_guides=len(guides),
                published_guides=sum(1 for g in guides if g.status == GuideStatus.PUBLISHED.value),
                total_views=total_views,
                monthly_views=sum(g.monthly_views for g in guides),
                average_rating=average_rating,
                conversion_rate=conversion_rate,
                available_balance=to_major_units(payouts.available_balance_minor),
                pending_balance=to_major_units(payouts.pending_balance_minor),
                top_selling_guide=top_selling,
            ),
            recent_sales=recent_sales,
            monthly_data=bucket_monthly(monthly, now),
            payout_info=PayoutInfo(
                available_balance=to_major_units(payouts.available_balance_minor),
                pending_balance=to_major_units(payouts.pending_balance_minor),
                next_payout_date=(now + PAYOUT_INTERVAL).isoformat(),
                payout_method="stripe" if stripe_account_id else "Not set",
                minimum_payout=to_major_units(settings.minimum_payout_minor),
            ),
            stripe_connect=StripeConnectStatus(
                connected=bool(stripe_account_id),
                is_ready=stripe_active,
                account_id=stripe_account_id,
                charges_enabled=stripe_active,
                payouts_enabled=stripe_active,
            ),
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _find_guides(self, creator_id: UUID) -> list[Guide]:
        result = await self.session.execute(select(Guide).where(Guide.author_id == creator_id))
        return list(result.scalars().all())

    def _completed_sales_of(self, creator_id: UUID) -> list[ColumnElement[bool]]:
        return [
            Guide.author_id == creator_id,
            GuidePurchase.status == PurchaseStatus.COMPLETED.value,
        ]

    async def _period_totals(self, creator_id: UUID, since: datetime) -> tuple[int, int]:
        stmt = (
            select(
                func.coalesce(func.sum(GuidePurchase.creator_earnings_minor), 0),
                func.count(GuidePurchase.id),
            )
            .join(Guide, GuidePurchase.guide_id == Guide.id)
            .where(*self._completed_sales_of(creator_id), GuidePurchase.purchase_date >= since)
        )
        earnings, sales = (await self.session.execute(stmt)).one()
        return int(earnings), int(sales)

    async def _top_selling_guide(self, creator_id: UUID) -> TopSellingGuide | None:
        sales = func.count(GuidePurchase.id)
        revenue = func.coalesce(func.sum(GuidePurchase.creator_earnings_minor), 0)
        stmt = (
            select(Guide.id, Guide.title, sales.label("sales"), revenue.label("revenue"))
            .join(GuidePurchase, GuidePurchase.guide_id == Guide.id)
            .where(*self._completed_sales_of(creator_id))
            .group_by(Guide.id, Guide.title)
            .order_by(sales.desc(), revenue.desc())
            .limit(1)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return TopSellingGuide(
            id=row.id, title=row.title, sales=row.sales, revenue=to_major_units(row.revenue)
        )

    async def _recent_sales(self, creator_id: UUID) -> list[RecentSale]:
        stmt = (
            select(GuidePurchase, Guide.title, Guide.price_minor, User.username)
            .join(Guide, GuidePurchase.guide_id == Guide.id)
            .join(User, GuidePurchase.user_id == User.id)
            .where(*self._completed_sales_of(creator_id))
            .order_by(GuidePurchase.purchase_date.desc())
            .limit(RECENT_SALES_LIMIT)
        )
        result = await self.session.execute(stmt)
        return [
            RecentSale(
                id=purchase.id,
                guide=RecentSaleGuide(title=title, price=to_major_units(price_minor)),
                amount=to_major_units(purchase.amount_minor),
                creator_earnings=to_major_units(purchase.creator_earnings_minor),
                purchase_date=purchase.purchase_date.isoformat(),
                username=username,
            )
            for purchase, title, price_minor, username in result.all()
        ]

    async def _monthly_sales(self, creator_id: UUID, since: datetime) -> list[tuple[datetime, int]]:
        stmt = (
            select(GuidePurchase.purchase_date, GuidePurchase.creator_earnings_minor)
            .join(Guide, GuidePurchase.guide_id == Guide.id)
            .where(*self._completed_sales_of(creator_id), GuidePurchase.purchase_date >= since)
        )
        result = await self.session.execute(stmt)
        return [(purchase_date, earnings) for purchase_date, earnings in result.all()]
