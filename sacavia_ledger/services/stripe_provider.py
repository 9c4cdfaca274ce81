"""
Stripe Payment Provider Implementation.

NO DICTIONARIES - All data uses strongly typed models.

The Stripe SDK is synchronous; every call runs in a worker thread under an
explicit timeout so a slow gateway never stalls the event loop.
"""

import asyncio
from collections.abc import Callable
from typing import Any, TypeVar

import stripe
from structlog import get_logger

from sacavia_ledger.exceptions import (
    PaymentFailedError,
    PaymentProviderError,
    PaymentTimeoutError,
    WebhookVerificationError,
)
from sacavia_ledger.observability.metrics import metrics
from sacavia_ledger.services.payment_provider import (
    PaymentRequest,
    PaymentResult,
    TransferRequest,
    TransferResult,
    WebhookEvent,
)

logger = get_logger(__name__)

T = TypeVar("T")


class StripeProvider:
    """
    Stripe payment provider implementation.

    Implements the PaymentProvider protocol for Stripe.
    """

    def __init__(self, api_key: str, webhook_secret: str, timeout_seconds: float = 15.0) -> None:
        """
        Initialize Stripe provider.

        Args:
            api_key: Stripe secret API key
            webhook_secret: Stripe webhook signing secret
            timeout_seconds: Upper bound on a single gateway call
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        stripe.api_key = api_key

    async def _call(self, operation: str, func: Callable[..., T], **kwargs: Any) -> T:
        """Run a blocking Stripe call in a thread, bounded by the gateway timeout."""
        with metrics.payment_gateway_duration.labels(operation=operation).time():
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(func, **kwargs), timeout=self.timeout_seconds
                )
            except TimeoutError as exc:
                metrics.payment_gateway_timeouts_total.labels(operation=operation).inc()
                logger.error(
                    "stripe_call_timed_out",
                    operation=operation,
                    timeout_seconds=self.timeout_seconds,
                )
                raise PaymentTimeoutError(self.timeout_seconds) from exc

    async def charge(self, request: PaymentRequest) -> PaymentResult:
        """
        Create and confirm a Stripe PaymentIntent.

        Args:
            request: Charge details

        Returns:
            Payment result with the PaymentIntent ID and status

        Raises:
            PaymentFailedError: If the card is declined
            PaymentTimeoutError: If Stripe does not answer in time
            PaymentProviderError: If Stripe API call fails
        """
        try:
            logger.info(
                "creating_stripe_payment_intent",
                amount_minor=request.amount_minor,
                currency=request.currency,
                idempotency_key=request.idempotency_key,
            )

            payment_intent = await self._call(
                "charge",
                stripe.PaymentIntent.create,
                amount=request.amount_minor,
                currency=request.currency.lower(),
                payment_method=request.payment_method_id,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                description=request.description,
                metadata={
                    "guide_id": request.metadata_guide_id,
                    "user_id": request.metadata_user_id,
                    "type": "guide_purchase",
                },
                idempotency_key=request.idempotency_key,
            )

            logger.info(
                "stripe_payment_intent_created",
                payment_intent_id=payment_intent.id,
                status=payment_intent.status,
            )

            return PaymentResult(
                payment_id=payment_intent.id,
                status=payment_intent.status,
                amount_minor=payment_intent.amount,
                currency=payment_intent.currency.upper(),
            )

        except stripe.CardError as exc:
            logger.warning(
                "stripe_card_declined",
                decline_code=getattr(exc, "code", None),
                error=str(exc),
            )
            raise PaymentFailedError(exc.user_message or str(exc)) from exc
        except stripe.StripeError as exc:
            logger.error(
                "stripe_payment_intent_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise PaymentProviderError(f"Stripe payment failed: {exc}") from exc

    async def refund_payment(self, payment_id: str, amount_minor: int | None = None) -> str:
        """
        Refund a Stripe payment.

        Args:
            payment_id: Stripe PaymentIntent ID
            amount_minor: Amount to refund in minor units (None = full refund)

        Returns:
            Stripe Refund ID

        Raises:
            PaymentProviderError: If refund fails
        """
        try:
            logger.info(
                "creating_stripe_refund",
                payment_intent_id=payment_id,
                amount_minor=amount_minor,
            )

            params: dict[str, Any] = {"payment_intent": payment_id}
            if amount_minor is not None:
                params["amount"] = amount_minor
            refund = await self._call("refund", stripe.Refund.create, **params)

            logger.info(
                "stripe_refund_created",
                refund_id=refund.id,
                status=refund.status,
                amount_minor=refund.amount,
            )

            refund_id: str = refund.id
            return refund_id

        except stripe.StripeError as exc:
            logger.error(
                "stripe_refund_failed",
                payment_intent_id=payment_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Stripe refund failed: {exc}") from exc

    async def create_transfer(self, request: TransferRequest) -> TransferResult:
        """
        Create a Stripe Transfer to a connected account.

        Raises:
            PaymentProviderError: If the transfer fails
        """
        try:
            logger.info(
                "creating_stripe_transfer",
                amount_minor=request.amount_minor,
                destination=request.destination_account_id,
            )

            transfer = await self._call(
                "transfer",
                stripe.Transfer.create,
                amount=request.amount_minor,
                currency=request.currency.lower(),
                destination=request.destination_account_id,
                description=request.description,
                metadata={
                    "creator_id": request.metadata_creator_id,
                    "payout_type": "creator_earnings",
                },
                idempotency_key=request.idempotency_key,
            )

            logger.info("stripe_transfer_created", transfer_id=transfer.id)

            return TransferResult(
                transfer_id=transfer.id,
                amount_minor=transfer.amount,
                currency=transfer.currency.upper(),
            )

        except stripe.StripeError as exc:
            logger.error(
                "stripe_transfer_failed",
                destination=request.destination_account_id,
                error=str(exc),
            )
            raise PaymentProviderError(f"Stripe transfer failed: {exc}") from exc

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse Stripe webhook event.

        Args:
            payload: Raw webhook payload
            signature: Stripe-Signature header value

        Returns:
            Parsed webhook event

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload, signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as exc:
            logger.error("stripe_webhook_verification_failed", error=str(exc))
            raise WebhookVerificationError("Invalid Stripe webhook signature") from exc
        except ValueError as exc:
            logger.error("stripe_webhook_parsing_failed", error=str(exc))
            raise WebhookVerificationError(f"Failed to parse Stripe webhook: {exc}") from exc

        logger.info("stripe_webhook_verified", event_id=event.id, event_type=event.type)

        obj = event.data.object
        if event.type.startswith("charge."):
            # Charges point back at the PaymentIntent recorded as transaction_id
            payment_id = obj.get("payment_intent")
            refunds = obj.get("refunds") or {}
            refund_data = refunds.get("data") or []
            refund_id = refund_data[0].get("id") if refund_data else None
        else:
            payment_id = obj.get("id")
            refund_id = None

        currency = obj.get("currency")
        return WebhookEvent(
            event_id=event.id,
            event_type=event.type,
            payment_id=payment_id,
            amount_minor=obj.get("amount"),
            amount_refunded_minor=obj.get("amount_refunded"),
            currency=currency.upper() if currency else None,
            refund_id=refund_id,
        )
