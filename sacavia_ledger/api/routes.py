"""
API Routes - FastAPI endpoints for guide purchases, earnings and payouts.

NO DICTIONARIES - All requests/responses use Pydantic models.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from sacavia_ledger.api.dependencies import (
    get_analytics_service,
    get_payment_provider,
    get_payout_reader,
    get_payout_service,
    get_purchase_reader,
    get_purchase_service,
    require_admin_key,
)
from sacavia_ledger.db.session import get_read_db
from sacavia_ledger.exceptions import (
    AuthenticationRequiredError,
    CreatorNotFoundError,
    DuplicatePurchaseError,
    GuideNotFoundError,
    GuideNotPublishedError,
    InternalError,
    InvalidAmountError,
    InvalidPurchaseStateError,
    PaymentFailedError,
    PaymentProcessingUnavailableError,
    PaymentProviderError,
    PaymentTimeoutError,
    PayoutRejectedError,
    PurchaseNotFoundError,
    WebhookVerificationError,
    WriteVerificationError,
)
from sacavia_ledger.models.api import (
    CreatorEarningsResponse,
    FeeBreakdownResponse,
    HealthResponse,
    NewBalance,
    Pagination,
    PaymentMethod,
    PayoutListResponse,
    PayoutModel,
    PayoutRequest,
    PayoutResponse,
    PurchaseGuideRequest,
    PurchaseGuideResponse,
    PurchaseModel,
    PurchaseStatusResponse,
    RefundRequest,
    RefundResponse,
)
from sacavia_ledger.models.domain import FeeBreakdown, PayoutData, PurchaseData, PurchaseIntent
from sacavia_ledger.services.analytics import CreatorAnalyticsService, parse_period
from sacavia_ledger.services.fees import to_major_units, to_minor_units
from sacavia_ledger.services.payment_provider import PaymentProvider
from sacavia_ledger.services.payouts import PayoutService
from sacavia_ledger.services.purchases import PurchaseService

logger = get_logger(__name__)

router = APIRouter()


def _purchase_to_model(purchase: PurchaseData) -> PurchaseModel:
    return PurchaseModel(
        id=purchase.purchase_id,
        user_id=purchase.user_id,
        guide_id=purchase.guide_id,
        amount=to_major_units(purchase.amount_minor),
        currency=purchase.currency,
        payment_method=purchase.payment_method,
        transaction_id=purchase.transaction_id,
        status=purchase.status,
        platform_fee=to_major_units(purchase.platform_fee_minor),
        stripe_fee=to_major_units(purchase.stripe_fee_minor),
        creator_earnings=to_major_units(purchase.creator_earnings_minor),
        purchase_date=purchase.purchase_date.isoformat(),
        refund_reason=purchase.refund_reason,
        refunded_at=purchase.refunded_at.isoformat() if purchase.refunded_at else None,
    )


def _breakdown_to_model(breakdown: FeeBreakdown) -> FeeBreakdownResponse:
    return FeeBreakdownResponse(
        total_amount=to_major_units(breakdown.amount_minor),
        platform_fee=to_major_units(breakdown.platform_fee_minor),
        stripe_fee=to_major_units(breakdown.stripe_fee_minor),
        creator_earnings=to_major_units(breakdown.creator_earnings_minor),
    )


def _payout_to_model(payout: PayoutData) -> PayoutModel:
    return PayoutModel(
        id=payout.payout_id,
        creator_id=payout.creator_id,
        amount=to_major_units(payout.amount_minor),
        currency=payout.currency,
        method=payout.method,
        status=payout.status,
        transaction_id=payout.transaction_id,
        stripe_transfer_id=payout.stripe_transfer_id,
        notes=payout.notes,
        estimated_arrival=payout.estimated_arrival,
        processed_at=payout.processed_at.isoformat() if payout.processed_at else None,
        created_at=payout.created_at.isoformat(),
    )


# =============================================================================
# Guide Purchase Endpoints
# =============================================================================


@router.post(
    "/guides/{guide_id}/purchase",
    response_model=PurchaseGuideResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def purchase_guide(
    guide_id: UUID,
    request: PurchaseGuideRequest,
    service: PurchaseService = Depends(get_purchase_service),
) -> PurchaseGuideResponse:
    """
    Purchase a guide (free, paid or pay-what-you-want).

    Write operation - requires primary database.
    """
    intent = PurchaseIntent(
        user_id=request.user_id,
        guide_id=guide_id,
        amount_minor=to_minor_units(request.amount),
        currency=request.currency,
        payment_type=request.payment_type,
        payment_method_id=request.payment_method_id,
    )

    try:
        purchase = await service.purchase_guide(intent)

    except AuthenticationRequiredError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        ) from exc

    except GuideNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Guide not found",
        ) from exc

    except GuideNotPublishedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Guide is not available for purchase",
        ) from exc

    except DuplicatePurchaseError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except InvalidAmountError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except PaymentProcessingUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    except PaymentTimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Payment gateway timed out, please try again",
        ) from exc

    except PaymentFailedError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=str(exc),
        ) from exc

    except PaymentProviderError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error",
        ) from exc

    except (WriteVerificationError, InternalError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process purchase",
        ) from exc

    except Exception as exc:
        logger.exception("guide_purchase_unexpected_error", guide_id=str(guide_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process purchase",
        ) from exc

    message = (
        "Guide added to your library!"
        if purchase.payment_method == PaymentMethod.FREE
        else "Guide purchased successfully!"
    )
    return PurchaseGuideResponse(
        purchase=_purchase_to_model(purchase),
        breakdown=_breakdown_to_model(purchase.breakdown),
        message=message,
    )


@router.get(
    "/guides/{guide_id}/purchase",
    response_model=PurchaseStatusResponse,
    response_model_by_alias=True,
)
async def get_purchase_status(
    guide_id: UUID,
    user_id: UUID | None = Query(None, alias="userId"),
    service: PurchaseService = Depends(get_purchase_reader),
) -> PurchaseStatusResponse:
    """
    Whether the user owns the guide.

    Read operation - uses replica database.
    """
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )

    try:
        purchase = await service.get_purchase_status(user_id, guide_id)
    except Exception as exc:
        logger.exception("purchase_status_lookup_failed", guide_id=str(guide_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load purchase status",
        ) from exc

    return PurchaseStatusResponse(
        has_purchased=purchase is not None,
        purchase=_purchase_to_model(purchase) if purchase else None,
    )


@router.post(
    "/purchases/{purchase_id}/refund",
    response_model=RefundResponse,
    response_model_by_alias=True,
    dependencies=[Depends(require_admin_key)],
)
async def refund_purchase(
    purchase_id: UUID,
    request: RefundRequest,
    service: PurchaseService = Depends(get_purchase_service),
) -> RefundResponse:
    """
    Refund a completed purchase.

    Requires: X-Admin-Key header.
    """
    try:
        purchase = await service.refund_purchase(purchase_id, request.reason)

    except PurchaseNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Purchase not found",
        ) from exc

    except InvalidPurchaseStateError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Purchase is {exc.status} and cannot be refunded",
        ) from exc

    except PaymentProcessingUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    except PaymentTimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail="Payment gateway timed out, please try again",
        ) from exc

    except (PaymentProviderError, PaymentFailedError) as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Refund failed at the payment provider",
        ) from exc

    except (WriteVerificationError, InternalError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refund purchase",
        ) from exc

    except Exception as exc:
        logger.exception("refund_unexpected_error", purchase_id=str(purchase_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to refund purchase",
        ) from exc

    return RefundResponse(purchase=_purchase_to_model(purchase))


# =============================================================================
# Creator Endpoints
# =============================================================================


@router.get(
    "/creators/{creator_id}/earnings",
    response_model=CreatorEarningsResponse,
    response_model_by_alias=True,
)
async def get_creator_earnings(
    creator_id: UUID,
    period: str | None = Query(None),
    service: CreatorAnalyticsService = Depends(get_analytics_service),
) -> CreatorEarningsResponse:
    """
    Creator earnings dashboard.

    Read operation - uses replica database.
    """
    try:
        data = await service.get_dashboard(creator_id, parse_period(period))
    except CreatorNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Creator not found",
        ) from exc
    except Exception as exc:
        logger.exception("creator_earnings_failed", creator_id=str(creator_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load earnings",
        ) from exc

    return CreatorEarningsResponse(data=data)


@router.get(
    "/creators/{creator_id}/payouts",
    response_model=PayoutListResponse,
    response_model_by_alias=True,
)
async def list_payouts(
    creator_id: UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    service: PayoutService = Depends(get_payout_reader),
) -> PayoutListResponse:
    """Payout history, newest first."""
    try:
        result = await service.list_payouts(creator_id, page=page, limit=limit)
    except Exception as exc:
        logger.exception("payout_history_failed", creator_id=str(creator_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to load payouts",
        ) from exc

    return PayoutListResponse(
        payouts=[_payout_to_model(p) for p in result.payouts],
        pagination=Pagination(
            page=result.page,
            limit=result.limit,
            total_pages=result.total_pages,
            total_docs=result.total_docs,
            has_next_page=result.has_next_page,
            has_prev_page=result.has_prev_page,
        ),
    )


@router.post(
    "/creators/{creator_id}/payouts",
    response_model=PayoutResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_201_CREATED,
)
async def request_payout(
    creator_id: UUID,
    request: PayoutRequest,
    service: PayoutService = Depends(get_payout_service),
) -> PayoutResponse:
    """
    Request a payout of available earnings.

    Write operation - requires primary database.
    """
    try:
        result = await service.request_payout(
            creator_id, to_minor_units(request.amount), request.payout_method
        )

    except CreatorNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Creator not found",
        ) from exc

    except PayoutRejectedError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=exc.reason,
        ) from exc

    except PaymentProcessingUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(exc),
        ) from exc

    except Exception as exc:
        logger.exception("payout_request_unexpected_error", creator_id=str(creator_id))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to process payout",
        ) from exc

    return PayoutResponse(
        payout=_payout_to_model(result.payout),
        new_balance=NewBalance(
            available=to_major_units(result.available_balance_minor),
            pending=to_major_units(result.pending_balance_minor),
        ),
        message="Payout requested successfully!",
    )


# =============================================================================
# Webhooks
# =============================================================================


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    provider: PaymentProvider | None = Depends(get_payment_provider),
    service: PurchaseService = Depends(get_purchase_service),
) -> dict[str, str]:
    """
    Handle Stripe webhook events.

    charge.refunded moves the matching purchase to refunded and reverses its
    stats and earnings. Everything else is acknowledged.
    """
    if provider is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment provider not configured",
        )

    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = await provider.verify_webhook(payload, signature)
    except WebhookVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook signature",
        ) from exc

    logger.info(
        "stripe_webhook_received",
        event_id=event.event_id,
        event_type=event.event_type,
        payment_id=event.payment_id,
    )

    if event.event_type != "charge.refunded":
        logger.info("stripe_webhook_ignored", event_type=event.event_type, event_id=event.event_id)
        return {"status": "ignored", "event_id": event.event_id}

    try:
        purchase = await service.apply_provider_refund(event)
    except Exception as exc:
        logger.exception("stripe_webhook_refund_failed", event_id=event.event_id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from exc

    if purchase is None:
        return {"status": "acknowledged", "event_id": event.event_id}
    return {"status": "success", "event_id": event.event_id}


# =============================================================================
# Health
# =============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check(
    db: AsyncSession = Depends(get_read_db),
    provider: PaymentProvider | None = Depends(get_payment_provider),
) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_check_database_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Database unavailable",
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        payments="enabled" if provider is not None else "disabled",
        timestamp=datetime.now(UTC).isoformat(),
    )
