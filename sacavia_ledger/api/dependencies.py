"""
FastAPI Dependencies - Services, payment provider and admin authorization.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.config import settings
from sacavia_ledger.db.session import get_read_db, get_write_db
from sacavia_ledger.services.analytics import CreatorAnalyticsService
from sacavia_ledger.services.payment_provider import PaymentProvider
from sacavia_ledger.services.payouts import PayoutService
from sacavia_ledger.services.purchases import PurchaseService
from sacavia_ledger.services.stripe_provider import StripeProvider

logger = get_logger(__name__)

_payment_provider: PaymentProvider | None = None


def get_payment_provider() -> PaymentProvider | None:
    """
    FastAPI dependency for the payment provider.

    Returns None when STRIPE_API_KEY is not set; only free guides can then
    be obtained.
    """
    global _payment_provider
    if not settings.payments_enabled:
        return None
    if _payment_provider is None:
        _payment_provider = StripeProvider(
            api_key=settings.stripe_api_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.payment_timeout_seconds,
        )
    return _payment_provider


async def get_purchase_service(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider | None = Depends(get_payment_provider),
) -> PurchaseService:
    """Purchase service on the primary database."""
    return PurchaseService(db, payment_provider=provider)


async def get_purchase_reader(db: AsyncSession = Depends(get_read_db)) -> PurchaseService:
    """Purchase service on the read replica, for status lookups."""
    return PurchaseService(db)


async def get_payout_service(
    db: AsyncSession = Depends(get_write_db),
    provider: PaymentProvider | None = Depends(get_payment_provider),
) -> PayoutService:
    """Payout service on the primary database."""
    return PayoutService(db, payment_provider=provider)


async def get_payout_reader(db: AsyncSession = Depends(get_read_db)) -> PayoutService:
    return PayoutService(db)


async def get_analytics_service(
    db: AsyncSession = Depends(get_read_db),
) -> CreatorAnalyticsService:
    return CreatorAnalyticsService(db)


async def require_admin_key(
    x_admin_key: str | None = Header(None, description="Admin API key"),
) -> None:
    """
    FastAPI dependency guarding admin operations (refunds).

    Raises:
        HTTPException 503 if no admin key is configured
        HTTPException 401 if the header is missing or wrong
    """
    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin operations are not configured",
        )

    if not x_admin_key or not secrets.compare_digest(x_admin_key, settings.admin_api_key):
        logger.warning("admin_key_rejected", header_present=bool(x_admin_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
            headers={"WWW-Authenticate": "ApiKey"},
        )
