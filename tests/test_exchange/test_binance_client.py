"""Tests for BinanceFuturesClient.

All tests use mocked ccxt endpoint methods to avoid real API calls.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import ccxt.async_support as ccxt_async
import pytest

from engine.config import LIVE_FUTURES_URL, TESTNET_FUTURES_URL, ExchangeSettings
from engine.exceptions import ExchangeRejected, ExchangeTransient
from engine.exchange.binance_client import BinanceFuturesClient


@pytest.fixture
def exchange_settings() -> ExchangeSettings:
    return ExchangeSettings(
        api_key="test-key",  # type: ignore[arg-type]
        api_secret="test-secret",  # type: ignore[arg-type]
        testnet=True,
    )


@pytest.fixture
def multi_host_settings() -> ExchangeSettings:
    return ExchangeSettings(
        api_key="test-key",  # type: ignore[arg-type]
        api_secret="test-secret",  # type: ignore[arg-type]
        testnet=False,
        base_urls=["https://fapi.binance.com/", "https://fapi1.binance.com"],
    )


@pytest.fixture
def client(exchange_settings: ExchangeSettings) -> BinanceFuturesClient:
    return BinanceFuturesClient(exchange_settings)


class TestInit:
    def test_testnet_host_by_default(self, client: BinanceFuturesClient) -> None:
        assert client.endpoints == [TESTNET_FUTURES_URL]
        assert client.exchange.urls["api"]["fapiPrivate"] == f"{TESTNET_FUTURES_URL}/fapi/v1"
        assert client.exchange.urls["api"]["fapiPrivateV2"] == f"{TESTNET_FUTURES_URL}/fapi/v2"

    def test_live_host(self) -> None:
        settings = ExchangeSettings(
            api_key="k",  # type: ignore[arg-type]
            api_secret="s",  # type: ignore[arg-type]
            testnet=False,
        )
        assert BinanceFuturesClient(settings).endpoints == [LIVE_FUTURES_URL]

    def test_one_instance_per_host(self, multi_host_settings: ExchangeSettings) -> None:
        client = BinanceFuturesClient(multi_host_settings)
        assert client.endpoints == ["https://fapi.binance.com", "https://fapi1.binance.com"]
        backup = client._exchanges["https://fapi1.binance.com"]
        assert backup.urls["api"]["fapiPrivateV2"] == "https://fapi1.binance.com/fapi/v2"
        assert backup is not client.exchange

    def test_options(self, client: BinanceFuturesClient) -> None:
        assert client.exchange.enableRateLimit is True
        assert client.exchange.options["recvWindow"] == 60000
        assert client.exchange.timeout == 30000


class TestErrorTranslation:
    @pytest.mark.asyncio
    async def test_exchange_error_becomes_rejected_with_code(
        self, client: BinanceFuturesClient
    ) -> None:
        client.exchange.fapiPrivatePostOrder = AsyncMock(
            side_effect=ccxt_async.ExchangeError(
                'binanceusdm {"code":-4061,"msg":"Order\'s position side does not match user\'s setting."}'
            )
        )
        with pytest.raises(ExchangeRejected) as exc_info:
            await client.create_order({"symbol": "BTCUSDT"})
        assert exc_info.value.code == -4061
        assert exc_info.value.http_status == 400

    @pytest.mark.asyncio
    async def test_network_error_becomes_transient(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivatePostOrder = AsyncMock(
            side_effect=ccxt_async.RequestTimeout("binanceusdm timed out")
        )
        with pytest.raises(ExchangeTransient):
            await client.create_order({"symbol": "BTCUSDT"})

    @pytest.mark.asyncio
    async def test_authentication_error(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivateV2GetAccount = AsyncMock(
            side_effect=ccxt_async.AuthenticationError('{"code":-2015,"msg":"Invalid API-key"}')
        )
        with pytest.raises(ExchangeRejected) as exc_info:
            await client.fetch_available_balance()
        assert exc_info.value.http_status == 401
        assert exc_info.value.code == -2015


class TestEndpoints:
    @pytest.mark.asyncio
    async def test_create_order_passes_params(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivatePostOrder = AsyncMock(return_value={"orderId": 1})
        params = {"symbol": "BTCUSDT", "side": "BUY", "type": "MARKET", "quantity": "0.002"}
        assert await client.create_order(params) == {"orderId": 1}
        client.exchange.fapiPrivatePostOrder.assert_awaited_once_with(params)

    @pytest.mark.asyncio
    async def test_fetch_order_missing_returns_none(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivateGetOrder = AsyncMock(
            side_effect=ccxt_async.OrderNotFound('{"code":-2013,"msg":"Order does not exist."}')
        )
        assert await client.fetch_order("BTCUSDT", "eng-abc") is None
        client.exchange.fapiPrivateGetOrder.assert_awaited_once_with(
            {"symbol": "BTCUSDT", "origClientOrderId": "eng-abc"}
        )

    @pytest.mark.asyncio
    async def test_fetch_order_other_error_propagates(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivateGetOrder = AsyncMock(
            side_effect=ccxt_async.ExchangeError('{"code":-1021,"msg":"Timestamp outside recvWindow"}')
        )
        with pytest.raises(ExchangeRejected):
            await client.fetch_order("BTCUSDT", "eng-abc")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("raw", "expected"), [(True, True), ("true", True), ("false", False)])
    async def test_dual_side_position(
        self, client: BinanceFuturesClient, raw: object, expected: bool
    ) -> None:
        client.exchange.fapiPrivateGetPositionSideDual = AsyncMock(
            return_value={"dualSidePosition": raw}
        )
        assert await client.fetch_dual_side_position() is expected

    @pytest.mark.asyncio
    async def test_mark_price_is_decimal(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPublicGetPremiumIndex = AsyncMock(
            return_value={"symbol": "BTCUSDT", "markPrice": "50123.45000000"}
        )
        assert await client.fetch_mark_price("BTCUSDT") == Decimal("50123.45")

    @pytest.mark.asyncio
    async def test_available_balance(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivateV2GetAccount = AsyncMock(
            return_value={"availableBalance": "150.25"}
        )
        assert await client.fetch_available_balance() == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_position_risk_uses_requested_host(
        self, multi_host_settings: ExchangeSettings
    ) -> None:
        client = BinanceFuturesClient(multi_host_settings)
        backup = client._exchanges["https://fapi1.binance.com"]
        backup.fapiPrivateV2GetPositionRisk = AsyncMock(return_value=[{"symbol": "BTCUSDT"}])
        client.exchange.fapiPrivateV2GetPositionRisk = AsyncMock()

        rows = await client.fetch_position_risk("https://fapi1.binance.com")

        assert rows == [{"symbol": "BTCUSDT"}]
        client.exchange.fapiPrivateV2GetPositionRisk.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_position_risk_rejects_non_list(self, client: BinanceFuturesClient) -> None:
        client.exchange.fapiPrivateV2GetPositionRisk = AsyncMock(return_value={"msg": "oops"})
        with pytest.raises(ExchangeTransient, match="Expected array"):
            await client.fetch_position_risk(TESTNET_FUTURES_URL)

    @pytest.mark.asyncio
    async def test_position_risk_unknown_endpoint(self, client: BinanceFuturesClient) -> None:
        with pytest.raises(ValueError, match="Unknown endpoint"):
            await client.fetch_position_risk("https://elsewhere.example")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_connect_syncs_time_and_tolerates_failures(
        self, multi_host_settings: ExchangeSettings
    ) -> None:
        client = BinanceFuturesClient(multi_host_settings)
        primary, backup = client._exchanges.values()
        primary.load_time_difference = AsyncMock(return_value=5)
        backup.load_time_difference = AsyncMock(side_effect=ccxt_async.NetworkError("down"))

        await client.connect()

        primary.load_time_difference.assert_awaited_once()
        backup.load_time_difference.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_closes_every_instance(self, multi_host_settings: ExchangeSettings) -> None:
        client = BinanceFuturesClient(multi_host_settings)
        for exchange in client._exchanges.values():
            exchange.close = AsyncMock()
        await client.close()
        for exchange in client._exchanges.values():
            exchange.close.assert_awaited_once()
