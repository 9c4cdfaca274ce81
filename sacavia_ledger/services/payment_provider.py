"""
Payment Provider Protocol - Provider-agnostic interface.

NO DICTIONARIES - All data uses strongly typed models.
"""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class PaymentRequest:
    """
    Provider-agnostic charge request.

    The payment method was collected client-side; the charge is confirmed
    server-side in a single call.
    """

    amount_minor: int
    currency: str
    payment_method_id: str
    description: str
    metadata_guide_id: str
    metadata_user_id: str
    idempotency_key: str


@dataclass(frozen=True)
class PaymentResult:
    """
    Provider-agnostic payment result.

    Only status == "succeeded" means the money was captured.
    """

    payment_id: str  # Provider-specific payment ID
    status: str
    amount_minor: int
    currency: str

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"


@dataclass(frozen=True)
class TransferRequest:
    """Provider-agnostic transfer of creator earnings to a connected account."""

    amount_minor: int
    currency: str
    destination_account_id: str
    description: str
    metadata_creator_id: str
    idempotency_key: str


@dataclass(frozen=True)
class TransferResult:
    """Provider-agnostic transfer result."""

    transfer_id: str
    amount_minor: int
    currency: str


@dataclass(frozen=True)
class WebhookEvent:
    """
    Provider-agnostic webhook event.

    Represents a webhook notification from payment provider.
    """

    event_id: str
    event_type: str
    payment_id: str | None
    amount_minor: int | None
    amount_refunded_minor: int | None
    currency: str | None
    refund_id: str | None


class PaymentProvider(Protocol):
    """
    Payment provider protocol.

    The ledger talks to Stripe only through this interface so tests can
    substitute an AsyncMock.
    """

    async def charge(self, request: PaymentRequest) -> PaymentResult:
        """
        Create and confirm a payment.

        Args:
            request: Charge details

        Returns:
            Payment result; callers must check succeeded

        Raises:
            PaymentFailedError: If the card is declined
            PaymentTimeoutError: If the gateway does not answer in time
            PaymentProviderError: If the provider call fails otherwise
        """
        ...

    async def refund_payment(self, payment_id: str, amount_minor: int | None = None) -> str:
        """
        Refund a payment.

        Args:
            payment_id: Provider-specific payment ID
            amount_minor: Amount to refund (None = full refund)

        Returns:
            Refund ID

        Raises:
            PaymentProviderError: If refund fails
        """
        ...

    async def create_transfer(self, request: TransferRequest) -> TransferResult:
        """
        Move funds to a creator's connected account.

        Raises:
            PaymentProviderError: If the transfer fails
        """
        ...

    async def verify_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        """
        Verify and parse webhook event from provider.

        Args:
            payload: Raw webhook payload
            signature: Webhook signature for verification

        Returns:
            Parsed webhook event

        Raises:
            WebhookVerificationError: If signature verification fails
        """
        ...
