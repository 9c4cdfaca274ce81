"""
Tests for structured logging processors.
"""

import structlog

from sacavia_ledger.observability.logging import add_app_context, log_context, mask_payment_secrets


class TestMaskPaymentSecrets:
    def test_keeps_last_four(self) -> None:
        event = mask_payment_secrets(None, "info", {"event": "x", "payment_method_id": "pm_card_4242abcd"})

        assert event["payment_method_id"] == "***abcd"

    def test_short_values_fully_masked(self) -> None:
        event = mask_payment_secrets(None, "info", {"event": "x", "x_admin_key": "short"})

        assert event["x_admin_key"] == "***"

    def test_other_fields_untouched(self) -> None:
        event = mask_payment_secrets(None, "info", {"event": "x", "purchase_id": "abc"})

        assert event == {"event": "x", "purchase_id": "abc"}


def test_app_context_added() -> None:
    event = add_app_context(None, "info", {"event": "x"})

    assert event["service"] == "sacavia-guide-ledger"
    assert "version" in event


def test_log_context_binds_and_unbinds() -> None:
    with log_context(request_id="req-1"):
        assert structlog.contextvars.get_contextvars()["request_id"] == "req-1"

    assert "request_id" not in structlog.contextvars.get_contextvars()
