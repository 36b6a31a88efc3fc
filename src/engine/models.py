"""Shared data models for the order execution engine.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or margins.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class IntentAction(str, Enum):
    """What a trade intent asks the engine to do."""

    OPEN_LONG = "open_long"
    OPEN_SHORT = "open_short"
    CLOSE = "close"
    HOLD = "hold"


class OrderSide(str, Enum):
    """Order direction, in exchange wire format."""

    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    """Order type, in exchange wire format."""

    MARKET = "MARKET"
    LIMIT = "LIMIT"


class PositionSide(str, Enum):
    """Position direction, in exchange wire format (dual-side positionSide tag)."""

    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def closing_side(self) -> OrderSide:
        """The order side that reduces a position on this side."""
        return OrderSide.SELL if self is PositionSide.LONG else OrderSide.BUY


class PositionMode(str, Enum):
    """Account-wide position mode."""

    ONE_WAY = "one_way"
    DUAL_SIDE = "dual_side"


@dataclass(frozen=True)
class TradeIntent:
    """A single high-level trade request from the decision source.

    Opens carry protective exits as percentages of the entry price; holds carry
    them as absolute prices. Never mutated once handed to the orchestrator.
    """

    symbol: str
    action: IntentAction
    amount: Decimal | None = None
    price: Decimal | None = None
    leverage: int | None = None
    close_percentage: Decimal | None = None
    stop_loss_percent: Decimal | None = None
    take_profit_percent: Decimal | None = None
    stop_loss_price: Decimal | None = None
    take_profit_price: Decimal | None = None
    note: str | None = None

    @property
    def is_open(self) -> bool:
        return self.action in (IntentAction.OPEN_LONG, IntentAction.OPEN_SHORT)


@dataclass(frozen=True)
class PositionSnapshot:
    """Open position as reported by the exchange position-risk endpoint."""

    symbol: str
    side: PositionSide
    contracts: Decimal  # always positive; direction lives in side
    entry_price: Decimal
    mark_price: Decimal
    leverage: int
    unrealized_pnl: Decimal
    liquidation_price: Decimal
    margin_type: str = "cross"

    @property
    def notional(self) -> Decimal:
        return self.contracts * self.mark_price


@dataclass
class OrderRequest:
    """A fully quantized order ready for submission.

    position_side is the direction the order acts on (the position it opens
    or the position it reduces); whether it is sent as a positionSide tag or
    expressed through reduceOnly depends on the account position mode.
    """

    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: Decimal
    position_side: PositionSide
    reduce_only: bool = False
    price: Decimal | None = None
    max_quantity: Decimal | None = None  # precision repair must not exceed this


@dataclass
class OrderResult:
    """Terminal result of one order submission."""

    success: bool
    order_id: str | None = None
    executed_price: Decimal | None = None
    executed_amount: Decimal | None = None
    submitted_quantity: Decimal | None = None  # after any precision repair
    error: str | None = None
    error_kind: str | None = None
    attempts: int = 0
    timestamp: float = field(default_factory=time.time)


@dataclass
class ExitResult:
    """Result of attaching stop-loss / take-profit orders to a position."""

    success: bool
    stop_loss_order_id: str | None = None
    take_profit_order_id: str | None = None
    stop_loss_price: Decimal | None = None
    take_profit_price: Decimal | None = None
    error: str | None = None
    attempts: int = 0


@dataclass
class IntentOutcome:
    """Everything the persistence collaborator needs about one processed intent.

    intent is None when the raw decision record could not be parsed at all.
    """

    intent: TradeIntent | None
    result: OrderResult
    error_kind: str | None = None
    quantity: Decimal | None = None
    leverage: int | None = None
    required_margin: Decimal | None = None
    exits: ExitResult | None = None


@dataclass
class BatchReport:
    """Ordered outcomes of one orchestration run."""

    batch_id: str
    starting_cash: Decimal
    remaining_cash: Decimal
    outcomes: list[IntentOutcome] = field(default_factory=list)
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def succeeded(self) -> list[IntentOutcome]:
        return [o for o in self.outcomes if o.result.success]

    @property
    def failed(self) -> list[IntentOutcome]:
        return [o for o in self.outcomes if not o.result.success]
