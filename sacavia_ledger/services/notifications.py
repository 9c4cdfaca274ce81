"""
Notification Emitter - In-app notifications for ledger events.

Only stages rows on the session. Delivery is best-effort and handled by
the SideEffectRunner, so a failing notification never fails a purchase.
"""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.db.models import Notification
from sacavia_ledger.models.api import NotificationType, PayoutMethod
from sacavia_ledger.services.fees import to_major_units

logger = get_logger(__name__)


def format_money(amount_minor: int) -> str:
    """Render cents as a dollar string, e.g. 791 -> "$7.91"."""
    return f"${to_major_units(amount_minor):.2f}"


def guide_purchased_message(title: str, amount_minor: int, creator_earnings_minor: int) -> str:
    return (
        f'Your guide "{title}" was purchased for {format_money(amount_minor)}. '
        f"You earned {format_money(creator_earnings_minor)}!"
    )


class NotificationEmitter:
    """Creates notification rows for purchases, payouts and refunds."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def guide_purchased(
        self,
        creator_id: UUID,
        guide_id: UUID,
        title: str,
        amount_minor: int,
        creator_earnings_minor: int,
    ) -> Notification:
        """Tell a creator their guide sold and what they earned."""
        notification = Notification(
            recipient_id=creator_id,
            type=NotificationType.GUIDE_PURCHASED.value,
            title="Guide Purchased! 🎉",
            message=guide_purchased_message(title, amount_minor, creator_earnings_minor),
            priority="high",
            related_collection="guides",
            related_id=guide_id,
        )
        self.session.add(notification)
        logger.info(
            "guide_purchased_notification_staged",
            creator_id=str(creator_id),
            guide_id=str(guide_id),
        )
        return notification

    async def payout_requested(
        self,
        creator_id: UUID,
        payout_id: UUID,
        amount_minor: int,
        method: PayoutMethod,
        estimated_arrival: str,
    ) -> Notification:
        """Confirm a payout request to the creator."""
        notification = Notification(
            recipient_id=creator_id,
            type=NotificationType.PAYOUT_REQUESTED.value,
            title="Payout Requested! 💰",
            message=(
                f"Your {method.value} payout request for {format_money(amount_minor)} has been "
                f"submitted. You'll receive it within {estimated_arrival}."
            ),
            priority="high",
            related_collection="payouts",
            related_id=payout_id,
        )
        self.session.add(notification)
        logger.info("payout_notification_staged", creator_id=str(creator_id), payout_id=str(payout_id))
        return notification

    async def purchase_refunded(
        self,
        buyer_id: UUID,
        purchase_id: UUID,
        title: str,
        amount_minor: int,
    ) -> Notification:
        """Tell a buyer their purchase was refunded."""
        notification = Notification(
            recipient_id=buyer_id,
            type=NotificationType.PURCHASE_REFUNDED.value,
            title="Purchase Refunded",
            message=f'Your purchase of "{title}" was refunded ({format_money(amount_minor)}).',
            priority="normal",
            related_collection="guide-purchases",
            related_id=purchase_id,
        )
        self.session.add(notification)
        logger.info(
            "refund_notification_staged", buyer_id=str(buyer_id), purchase_id=str(purchase_id)
        )
        return notification
