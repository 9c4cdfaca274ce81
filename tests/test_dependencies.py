"""
Tests for FastAPI dependencies.
"""

from collections.abc import Iterator
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import HTTPException

from sacavia_ledger.api import dependencies
from sacavia_ledger.api.dependencies import (
    get_analytics_service,
    get_payment_provider,
    get_payout_service,
    get_purchase_reader,
    get_purchase_service,
    require_admin_key,
)
from sacavia_ledger.services.analytics import CreatorAnalyticsService
from sacavia_ledger.services.payouts import PayoutService
from sacavia_ledger.services.purchases import PurchaseService
from sacavia_ledger.services.stripe_provider import StripeProvider


@pytest.fixture(autouse=True)
def reset_provider_cache() -> Iterator[None]:
    dependencies._payment_provider = None
    yield
    dependencies._payment_provider = None


class TestGetPaymentProvider:
    def test_stripe_when_key_configured(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.payments_enabled = True
            mock_settings.stripe_api_key = "sk_test_x"
            mock_settings.stripe_webhook_secret = "whsec_x"
            mock_settings.payment_timeout_seconds = 5.0

            provider = get_payment_provider()

        assert isinstance(provider, StripeProvider)
        assert provider.timeout_seconds == 5.0

    def test_provider_is_cached(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.payments_enabled = True
            mock_settings.payment_timeout_seconds = 5.0

            assert get_payment_provider() is get_payment_provider()

    def test_none_without_key(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.payments_enabled = False

            assert get_payment_provider() is None


class TestServiceFactories:
    async def test_purchase_service(self, db_session: AsyncMock, payment_provider: AsyncMock) -> None:
        service = await get_purchase_service(db_session, payment_provider)

        assert isinstance(service, PurchaseService)
        assert service.payment_provider is payment_provider

    async def test_purchase_reader_has_no_provider(self, db_session: AsyncMock) -> None:
        service = await get_purchase_reader(db_session)

        assert service.payment_provider is None

    async def test_payout_service(self, db_session: AsyncMock, payment_provider: AsyncMock) -> None:
        service = await get_payout_service(db_session, payment_provider)

        assert isinstance(service, PayoutService)

    async def test_analytics_service(self, db_session: AsyncMock) -> None:
        assert isinstance(await get_analytics_service(db_session), CreatorAnalyticsService)


class TestRequireAdminKey:
    async def test_valid_key(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.admin_api_key = "secret"

            assert await require_admin_key("secret") is None

    async def test_wrong_key(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.admin_api_key = "secret"

            with pytest.raises(HTTPException) as exc_info:
                await require_admin_key("guess")

        assert exc_info.value.status_code == 401

    async def test_missing_key(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.admin_api_key = "secret"

            with pytest.raises(HTTPException) as exc_info:
                await require_admin_key(None)

        assert exc_info.value.status_code == 401

    async def test_not_configured(self) -> None:
        with patch.object(dependencies, "settings") as mock_settings:
            mock_settings.admin_api_key = ""

            with pytest.raises(HTTPException) as exc_info:
                await require_admin_key("anything")

        assert exc_info.value.status_code == 503
