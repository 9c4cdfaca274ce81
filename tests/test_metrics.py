"""
Tests for Prometheus metrics helpers.
"""

import pytest
from prometheus_client import REGISTRY

from sacavia_ledger.observability.metrics import metrics, track_http_request


def _sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestTrackHttpRequest:
    def test_records_status_code(self) -> None:
        labels = {"endpoint": "/test-tracked", "method": "GET", "status_code": "201"}
        before = _sample("ledger_http_requests_total", labels)

        with track_http_request("/test-tracked", "GET") as tracker:
            tracker.set_status_code(201)

        assert _sample("ledger_http_requests_total", labels) == before + 1

    def test_exception_counts_as_500(self) -> None:
        labels = {"endpoint": "/test-failing", "method": "POST", "status_code": "500"}
        before = _sample("ledger_http_requests_total", labels)

        with pytest.raises(RuntimeError):
            with track_http_request("/test-failing", "POST"):
                raise RuntimeError("boom")

        assert _sample("ledger_http_requests_total", labels) == before + 1
        assert (
            _sample("ledger_http_requests_in_progress", {"endpoint": "/test-failing", "method": "POST"})
            == 0
        )


class TestLedgerMetrics:
    def test_failed_purchase_labels_error_type(self) -> None:
        labels = {"payment_method": "paid", "success": "False", "error_type": "InvalidAmountError"}
        before = _sample("ledger_purchases_total", labels)

        metrics.record_purchase(
            "paid", success=False, amount_minor=100, duration=0.01, error_type="InvalidAmountError"
        )

        assert _sample("ledger_purchases_total", labels) == before + 1

    def test_side_effect_failure(self) -> None:
        labels = {"effect": "notification"}
        before = _sample("ledger_side_effect_failures_total", labels)

        metrics.record_side_effect_failure("notification")

        assert _sample("ledger_side_effect_failures_total", labels) == before + 1
