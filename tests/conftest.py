"""Shared test fixtures for the order execution engine."""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from engine.config import AppSettings, ExchangeSettings, ExecutionSettings
from engine.exchange.client import ExchangeClient
from engine.instruments import InstrumentRuleTable

PRIMARY = "https://primary.example"
BACKUP = "https://backup.example"


def _filled_order(order_id: int = 1001, avg_price: str = "50000", qty: str = "0.002") -> dict:
    """A Binance new-order response for a fully filled market order."""
    return {
        "orderId": order_id,
        "status": "FILLED",
        "avgPrice": avg_price,
        "price": "0",
        "executedQty": qty,
        "origQty": qty,
        "updateTime": 1700000000000,
    }


@pytest.fixture
def mock_settings() -> AppSettings:
    """Return AppSettings with test defaults (testnet, dummy API keys)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=ExchangeSettings(
            api_key="test-api-key",  # type: ignore[arg-type]
            api_secret="test-api-secret",  # type: ignore[arg-type]
            testnet=True,
        ),
        execution=ExecutionSettings(),
    )


@pytest.fixture
def execution_settings() -> ExecutionSettings:
    """Execution settings with exit settling disabled so tests stay fast."""
    return ExecutionSettings(exit_settle_delay=0.0, exit_retry_delays=[0.0, 0.0])


@pytest.fixture
def rules() -> InstrumentRuleTable:
    return InstrumentRuleTable()


@pytest.fixture
def mock_exchange_client() -> AsyncMock:
    """Mock ExchangeClient in one-way mode with one filled order per call."""
    client = AsyncMock(spec=ExchangeClient)
    client.endpoints = [PRIMARY, BACKUP]
    client.create_order.return_value = _filled_order()
    client.fetch_order.return_value = None
    client.cancel_order.return_value = {}
    client.fetch_open_orders.return_value = []
    client.set_leverage.return_value = {"leverage": 10}
    client.fetch_dual_side_position.return_value = False
    client.fetch_mark_price.return_value = Decimal("50000")
    client.fetch_available_balance.return_value = Decimal("1000")
    client.fetch_position_risk.return_value = []
    return client
