"""
Metrics Collection with Prometheus.

Exposes ledger and HTTP metrics for monitoring.
"""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

from sacavia_ledger.config import settings


class MetricLabels:
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    PAYMENT_METHOD = "payment_method"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the guide ledger.

    Covers HTTP traffic, purchases, the payment gateway, post-purchase side
    effects, refunds and payouts.
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "ledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Purchase Metrics
        # ====================================================================
        self.purchases_total = Counter(
            "ledger_purchases_total",
            "Total guide purchase attempts",
            [MetricLabels.PAYMENT_METHOD, "success", MetricLabels.ERROR_TYPE],
        )

        self.purchase_amount_minor = Histogram(
            "ledger_purchase_amount_minor",
            "Completed purchase amounts in minor units (cents)",
            [MetricLabels.PAYMENT_METHOD],
            buckets=(0, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 25000),
        )

        self.purchase_duration_seconds = Histogram(
            "ledger_purchase_duration_seconds",
            "End-to-end guide purchase duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 15.0),
        )

        # ====================================================================
        # Payment Gateway Metrics
        # ====================================================================
        self.payment_gateway_duration = Histogram(
            "ledger_payment_gateway_duration_seconds",
            "Payment gateway call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0, 30.0),
        )

        self.payment_gateway_timeouts_total = Counter(
            "ledger_payment_gateway_timeouts_total",
            "Payment gateway calls abandoned after the timeout",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Side Effect Metrics
        # ====================================================================
        self.side_effect_failures_total = Counter(
            "ledger_side_effect_failures_total",
            "Post-purchase side effects that exhausted retries",
            ["effect"],
        )

        self.side_effect_retries_total = Counter(
            "ledger_side_effect_retries_total",
            "Post-purchase side effect retry attempts",
            ["effect"],
        )

        # ====================================================================
        # Refund and Payout Metrics
        # ====================================================================
        self.refunds_total = Counter(
            "ledger_refunds_total",
            "Total purchase refunds",
            ["source"],
        )

        self.payouts_requested_total = Counter(
            "ledger_payouts_requested_total",
            "Total payout requests accepted",
            ["method"],
        )

        self.payout_amount_minor = Histogram(
            "ledger_payout_amount_minor",
            "Payout amounts in minor units (cents)",
            buckets=(2500, 5000, 10000, 25000, 50000, 100000, 250000),
        )

        self.payout_overdraws_total = Counter(
            "ledger_payout_overdraws_total",
            "Reconciliations where payouts exceeded lifetime earnings",
        )

        # ====================================================================
        # Database Metrics
        # ====================================================================
        self.db_write_verifications_total = Counter(
            "ledger_db_write_verifications_total",
            "Total write verification checks",
            ["success"],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_purchase(
        self,
        payment_method: str,
        success: bool,
        amount_minor: int,
        duration: float,
        error_type: str | None = None,
    ) -> None:
        """Record purchase metrics."""
        self.purchases_total.labels(
            payment_method=payment_method, success=str(success), error_type=error_type or "none"
        ).inc()
        if success:
            self.purchase_amount_minor.labels(payment_method=payment_method).observe(amount_minor)
        self.purchase_duration_seconds.observe(duration)

    def record_side_effect_failure(self, effect: str) -> None:
        """Record a side effect that exhausted its retries."""
        self.side_effect_failures_total.labels(effect=effect).inc()

    def record_payout(self, method: str, amount_minor: int) -> None:
        """Record an accepted payout request."""
        self.payouts_requested_total.labels(method=method).inc()
        self.payout_amount_minor.observe(amount_minor)


# Global metrics instance
metrics = LedgerMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/guides/{id}/purchase", "POST") as tracker:
            # ... process request
            tracker.set_status_code(201)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        self.start_time = time.time()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()
