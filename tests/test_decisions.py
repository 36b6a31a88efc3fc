"""Tests for decision record validation and mapping onto trade intents."""

from decimal import Decimal

import pytest

from engine.decisions import DecisionRecord, parse_decision
from engine.exceptions import ValidationError
from engine.models import IntentAction


def test_buy_to_enter_maps_to_open_long() -> None:
    intent = parse_decision(
        {
            "signal": "buy_to_enter",
            "coin": "BTC",
            "quantity": "0.01",
            "leverage": 5,
            "profit_target": "10",
            "stop_loss": "3",
            "confidence": 0.7,
            "risk_usd": 25,
            "invalidation_condition": "close below 48k",
            "justification": "breakout",
        }
    )
    assert intent.action is IntentAction.OPEN_LONG
    assert intent.symbol == "BTCUSDT"
    assert intent.amount == Decimal("0.01")
    assert intent.leverage == 5
    assert intent.take_profit_percent == Decimal("10")
    assert intent.stop_loss_percent == Decimal("3")
    assert intent.stop_loss_price is None
    assert intent.note == "breakout"


def test_sell_to_enter_with_pricing() -> None:
    intent = parse_decision(
        {"signal": "sell_to_enter", "coin": "ETH", "quantity": "0.5", "pricing": "3100"}
    )
    assert intent.action is IntentAction.OPEN_SHORT
    assert intent.price == Decimal("3100")


def test_hold_carries_absolute_prices() -> None:
    intent = parse_decision(
        {"signal": "hold", "coin": "SOL", "quantity": 0, "stop_loss": "140.5", "profit_target": "180"}
    )
    assert intent.action is IntentAction.HOLD
    assert intent.stop_loss_price == Decimal("140.5")
    assert intent.take_profit_price == Decimal("180")
    assert intent.stop_loss_percent is None


def test_close_defaults_to_full_position() -> None:
    intent = parse_decision({"signal": "close_position", "coin": "DOGE", "quantity": 0})
    assert intent.action is IntentAction.CLOSE
    assert intent.close_percentage == Decimal("100")
    assert intent.amount is None


def test_close_accepts_sell_percentage_alias() -> None:
    intent = parse_decision({"signal": "close_position", "coin": "BTC", "sell_percentage": 25})
    assert intent.close_percentage == Decimal("25")


@pytest.mark.parametrize(
    "raw",
    [
        {"signal": "moon", "coin": "BTC"},
        {"signal": "buy_to_enter", "coin": "BTC"},
        {"signal": "buy_to_enter", "coin": "BTC", "quantity": "0"},
        {"signal": "buy_to_enter", "coin": "BTC", "quantity": "0.1", "leverage": 0},
        {"signal": "close_position", "coin": "BTC", "percentage": 120},
        {"signal": "hold", "coin": ""},
        {"coin": "BTC"},
    ],
)
def test_malformed_records(raw: dict) -> None:
    with pytest.raises(ValidationError, match="Invalid decision record"):
        parse_decision(raw)


def test_unknown_fields_ignored() -> None:
    record = DecisionRecord.model_validate(
        {"signal": "hold", "coin": "BTC", "chain_of_thought": "..."}
    )
    assert record.signal == "hold"
