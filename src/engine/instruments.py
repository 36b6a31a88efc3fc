"""Static per-instrument quantization rules.

Binance futures reject quantities that are off the instrument's decimal grid
and orders whose notional falls under the instrument minimum. The table below
pins those constraints per symbol; it is deliberately static so that order
sizing never depends on an exchangeInfo round-trip.

All monetary values use Decimal.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from engine.exceptions import UnknownInstrument

_QUOTE = "USDT"


@dataclass(frozen=True)
class InstrumentRule:
    """Quantization constraints for one perpetual contract."""

    symbol: str
    quantity_decimals: int
    price_decimals: int
    min_notional: Decimal

    @property
    def min_unit(self) -> Decimal:
        """Smallest tradable quantity, 10^-quantity_decimals."""
        return Decimal(1).scaleb(-self.quantity_decimals)

    @property
    def tick(self) -> Decimal:
        return Decimal(1).scaleb(-self.price_decimals)

    def round_price(self, price: Decimal) -> Decimal:
        """Round a limit or trigger price to the instrument's price grid."""
        return price.quantize(self.tick, rounding=ROUND_HALF_UP)


DEFAULT_RULES: tuple[InstrumentRule, ...] = (
    InstrumentRule("BTCUSDT", quantity_decimals=3, price_decimals=1, min_notional=Decimal("100")),
    InstrumentRule("ETHUSDT", quantity_decimals=2, price_decimals=2, min_notional=Decimal("100")),
    InstrumentRule("BNBUSDT", quantity_decimals=2, price_decimals=2, min_notional=Decimal("100")),
    InstrumentRule("SOLUSDT", quantity_decimals=2, price_decimals=3, min_notional=Decimal("100")),
    InstrumentRule("ADAUSDT", quantity_decimals=0, price_decimals=4, min_notional=Decimal("100")),
    InstrumentRule("DOGEUSDT", quantity_decimals=0, price_decimals=5, min_notional=Decimal("100")),
)


def normalize_symbol(symbol: str) -> str:
    """Convert any accepted spelling to the exchange id.

    "BTC", "btc", "BTC/USDT", "BTC/USDT:USDT" and "BTCUSDT" all map to "BTCUSDT".
    """
    cleaned = symbol.strip().upper()
    if ":" in cleaned:
        cleaned = cleaned.split(":", 1)[0]
    cleaned = cleaned.replace("/", "").replace("-", "")
    if cleaned and not cleaned.endswith(_QUOTE):
        cleaned = f"{cleaned}{_QUOTE}"
    return cleaned


class InstrumentRuleTable:
    """Lookup of InstrumentRule by symbol (any accepted spelling)."""

    def __init__(self, rules: tuple[InstrumentRule, ...] | list[InstrumentRule] = DEFAULT_RULES) -> None:
        self._rules = {rule.symbol: rule for rule in rules}

    def get(self, symbol: str) -> InstrumentRule:
        """Return the rule for symbol.

        Raises:
            UnknownInstrument: If the symbol is not configured.
        """
        rule = self._rules.get(normalize_symbol(symbol))
        if rule is None:
            raise UnknownInstrument(
                f"No quantization rule for {symbol!r}. "
                f"Supported: {', '.join(sorted(self._rules))}"
            )
        return rule

    def __contains__(self, symbol: str) -> bool:
        return normalize_symbol(symbol) in self._rules

    def symbols(self) -> list[str]:
        return sorted(self._rules)
