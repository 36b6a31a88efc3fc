"""Tests for PositionQuery parsing and endpoint rotation."""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from engine.exceptions import ExchangeRejected, ExchangeTransient, PositionQueryError
from engine.models import PositionSide
from engine.position.query import PositionQuery, parse_position

ROWS = [
    {
        "symbol": "BTCUSDT",
        "positionAmt": "0.005",
        "entryPrice": "50000.0",
        "markPrice": "51000.0",
        "unRealizedProfit": "5.0",
        "liquidationPrice": "40000.0",
        "leverage": "10",
        "marginType": "isolated",
        "positionSide": "BOTH",
    },
    {
        "symbol": "ETHUSDT",
        "positionAmt": "0.000",
        "entryPrice": "0.0",
        "markPrice": "3000.0",
        "positionSide": "BOTH",
    },
    {
        "symbol": "SOLUSDT",
        "positionAmt": "-3",
        "entryPrice": "150",
        "markPrice": "149",
        "leverage": "5",
        "positionSide": "BOTH",
    },
]


class TestParsePosition:
    def test_long_row(self) -> None:
        position = parse_position(ROWS[0])
        assert position is not None
        assert position.side is PositionSide.LONG
        assert position.contracts == Decimal("0.005")
        assert position.entry_price == Decimal("50000.0")
        assert position.unrealized_pnl == Decimal("5.0")
        assert position.leverage == 10
        assert position.margin_type == "isolated"
        assert position.notional == Decimal("255.0000")

    def test_flat_row_skipped(self) -> None:
        assert parse_position(ROWS[1]) is None

    def test_negative_amount_is_short(self) -> None:
        position = parse_position(ROWS[2])
        assert position.side is PositionSide.SHORT
        assert position.contracts == Decimal("3")

    def test_dual_side_tag_is_authoritative(self) -> None:
        row = {**ROWS[2], "positionSide": "SHORT"}
        assert parse_position(row).side is PositionSide.SHORT
        row = {**ROWS[0], "positionSide": "LONG"}
        assert parse_position(row).side is PositionSide.LONG


class TestFetch:
    @pytest.mark.asyncio
    async def test_first_endpoint_wins(self, mock_exchange_client: AsyncMock) -> None:
        mock_exchange_client.fetch_position_risk.return_value = ROWS

        positions = await PositionQuery(mock_exchange_client).fetch()

        assert [p.symbol for p in positions] == ["BTCUSDT", "SOLUSDT"]
        mock_exchange_client.fetch_position_risk.assert_awaited_once_with("https://primary.example")

    @pytest.mark.asyncio
    async def test_rotates_to_backup(self, mock_exchange_client: AsyncMock) -> None:
        mock_exchange_client.fetch_position_risk.side_effect = [
            ExchangeTransient("connection reset"),
            ROWS,
        ]

        positions = await PositionQuery(mock_exchange_client).fetch()

        assert len(positions) == 2
        called = [c.args[0] for c in mock_exchange_client.fetch_position_risk.await_args_list]
        assert called == ["https://primary.example", "https://backup.example"]

    @pytest.mark.asyncio
    async def test_all_endpoints_fail(self, mock_exchange_client: AsyncMock) -> None:
        mock_exchange_client.fetch_position_risk.side_effect = [
            ExchangeTransient("connection reset"),
            ExchangeRejected("Invalid API-key", code=-2015, http_status=401),
        ]

        with pytest.raises(PositionQueryError) as exc_info:
            await PositionQuery(mock_exchange_client).fetch()

        assert len(exc_info.value.failures) == 2
        assert "connection reset" in str(exc_info.value)
        assert "Invalid API-key" in str(exc_info.value)
        assert mock_exchange_client.fetch_position_risk.await_count == 2

    @pytest.mark.asyncio
    async def test_timeout_rotates(self, mock_exchange_client: AsyncMock) -> None:
        async def respond(endpoint: str) -> list[dict]:
            if endpoint == "https://primary.example":
                await asyncio.sleep(10)
            return ROWS

        mock_exchange_client.fetch_position_risk.side_effect = respond

        positions = await PositionQuery(mock_exchange_client, timeout=0.01).fetch()

        assert len(positions) == 2

    @pytest.mark.asyncio
    async def test_find_normalises_symbol(self, mock_exchange_client: AsyncMock) -> None:
        mock_exchange_client.fetch_position_risk.return_value = ROWS
        query = PositionQuery(mock_exchange_client)

        position = await query.find("SOL/USDT:USDT")

        assert position is not None
        assert position.symbol == "SOLUSDT"
        assert await query.find("ETH") is None

    @pytest.mark.asyncio
    async def test_find_picks_requested_leg(self, mock_exchange_client: AsyncMock) -> None:
        mock_exchange_client.fetch_position_risk.return_value = [
            {**ROWS[0], "positionSide": "LONG", "positionAmt": "0.010"},
            {**ROWS[0], "positionSide": "SHORT", "positionAmt": "-0.002"},
        ]
        query = PositionQuery(mock_exchange_client)

        short = await query.find("BTC", PositionSide.SHORT)
        long = await query.find("BTC", PositionSide.LONG)

        assert short is not None and short.contracts == Decimal("0.002")
        assert long is not None and long.contracts == Decimal("0.010")
