"""
Exception Classes - Strongly typed exception hierarchy.

Every error carries typed attributes; routes translate them to HTTP responses.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    pass


class AuthenticationRequiredError(LedgerError):
    """Raised when a request carries no user identity."""

    def __init__(self) -> None:
        super().__init__("Authentication required")


class GuideNotFoundError(LedgerError):
    """Raised when the guide doesn't exist."""

    def __init__(self, guide_id: UUID) -> None:
        self.guide_id = guide_id
        super().__init__(f"Guide not found: {guide_id}")


class GuideNotPublishedError(LedgerError):
    """Raised when a guide that is not published is purchased."""

    def __init__(self, guide_id: UUID, status: str) -> None:
        self.guide_id = guide_id
        self.status = status
        super().__init__(f"Guide {guide_id} is not available for purchase (status: {status})")


class DuplicatePurchaseError(LedgerError):
    """Raised when the user already holds a completed purchase of the guide."""

    def __init__(self, user_id: UUID, guide_id: UUID) -> None:
        self.user_id = user_id
        self.guide_id = guide_id
        super().__init__("You have already purchased this guide")


class InvalidAmountError(LedgerError):
    """Raised when the supplied amount doesn't match the guide's pricing rules."""

    def __init__(self, amount_minor: int, reason: str) -> None:
        self.amount_minor = amount_minor
        self.reason = reason
        super().__init__(f"Invalid amount: {reason}")


class PaymentProcessingUnavailableError(LedgerError):
    """Raised when a payment is required but no payment provider is configured."""

    def __init__(self) -> None:
        super().__init__("Payment processing is not available")


class PaymentFailedError(LedgerError):
    """Raised when the payment provider declines or does not confirm a payment."""

    def __init__(self, message: str, payment_id: str | None = None) -> None:
        self.message = message
        self.payment_id = payment_id
        super().__init__(f"Payment failed: {message}")


class PaymentTimeoutError(PaymentFailedError):
    """Raised when the payment gateway does not answer in time. Retryable."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"payment gateway timed out after {timeout_seconds}s")


class PaymentProviderError(LedgerError):
    """Raised when a payment provider operation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Payment provider error: {message}")


class WebhookVerificationError(LedgerError):
    """Raised when webhook verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Webhook verification error: {message}")


class CreatorNotFoundError(LedgerError):
    """Raised when the creator (or their creator profile) doesn't exist."""

    def __init__(self, creator_id: UUID) -> None:
        self.creator_id = creator_id
        super().__init__(f"Creator not found: {creator_id}")


class PurchaseNotFoundError(LedgerError):
    """Raised when a purchase doesn't exist."""

    def __init__(self, purchase_id: UUID) -> None:
        self.purchase_id = purchase_id
        super().__init__(f"Purchase not found: {purchase_id}")


class InvalidPurchaseStateError(LedgerError):
    """Raised when a purchase status transition is not allowed."""

    def __init__(self, purchase_id: UUID, status: str, target: str) -> None:
        self.purchase_id = purchase_id
        self.status = status
        self.target = target
        super().__init__(f"Purchase {purchase_id} cannot move from {status} to {target}")


class PayoutRejectedError(LedgerError):
    """Raised when a payout request fails validation."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class WriteVerificationError(LedgerError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class InternalError(LedgerError):
    """Raised for unexpected failures inside the ledger."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Internal error: {message}")
