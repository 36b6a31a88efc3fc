"""Tests for the static instrument rule table and symbol normalisation."""

from decimal import Decimal

import pytest

from engine.exceptions import UnknownInstrument, ValidationError
from engine.instruments import InstrumentRuleTable, normalize_symbol


@pytest.mark.parametrize("symbol", ["BTC", "btc", "BTC/USDT", "BTC/USDT:USDT", "BTCUSDT", " btc-usdt "])
def test_normalize_symbol(symbol: str) -> None:
    assert normalize_symbol(symbol) == "BTCUSDT"


def test_known_rules(rules: InstrumentRuleTable) -> None:
    btc = rules.get("BTC")
    assert btc.min_unit == Decimal("0.001")
    assert btc.min_notional == Decimal("100")
    assert rules.get("DOGE/USDT").min_unit == Decimal("1")
    assert "ETH/USDT:USDT" in rules
    assert rules.symbols() == sorted(rules.symbols())


def test_unknown_symbol_is_validation_error(rules: InstrumentRuleTable) -> None:
    with pytest.raises(ValidationError) as exc_info:
        rules.get("XRP")
    assert isinstance(exc_info.value, UnknownInstrument)
    assert exc_info.value.kind == "ValidationError"
    assert "XRP" not in rules


def test_round_price_to_tick(rules: InstrumentRuleTable) -> None:
    assert rules.get("BTC").round_price(Decimal("50000.06")) == Decimal("50000.1")
    assert rules.get("DOGE").round_price(Decimal("0.123456")) == Decimal("0.12346")
