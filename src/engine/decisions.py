"""Validation of decision records coming from the external decision source.

A decision record is the loosely typed JSON object the decision source emits
per cycle (signal, coin, quantity, leverage, profit_target, stop_loss, ...).
DecisionRecord checks its shape with pydantic and maps it onto a TradeIntent.

The meaning of profit_target / stop_loss depends on the signal: for entries
they are percentage distances from the fill price, for hold they are the new
absolute trigger prices of an existing position.
"""

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Literal

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

from engine.exceptions import ValidationError
from engine.instruments import normalize_symbol
from engine.models import IntentAction, TradeIntent

_SIGNAL_ACTIONS = {
    "buy_to_enter": IntentAction.OPEN_LONG,
    "sell_to_enter": IntentAction.OPEN_SHORT,
    "hold": IntentAction.HOLD,
    "close_position": IntentAction.CLOSE,
}


class DecisionRecord(BaseModel):
    """One trading decision as produced by the decision source."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    signal: Literal["buy_to_enter", "sell_to_enter", "hold", "close_position"]
    coin: str = Field(min_length=1)
    quantity: Decimal | None = Field(default=None, ge=0)
    leverage: int | None = Field(default=None, ge=1)
    profit_target: Decimal | None = Field(default=None, gt=0)
    stop_loss: Decimal | None = Field(default=None, gt=0)
    pricing: Decimal | None = Field(default=None, gt=0)
    percentage: Decimal | None = Field(
        default=None,
        gt=0,
        le=100,
        validation_alias=AliasChoices("percentage", "sell_percentage"),
    )
    confidence: float | None = Field(default=None, ge=0, le=1)
    risk_usd: Decimal | None = None
    invalidation_condition: str | None = None
    justification: str | None = None

    @model_validator(mode="after")
    def _entries_need_quantity(self) -> "DecisionRecord":
        if self.signal in ("buy_to_enter", "sell_to_enter"):
            if self.quantity is None or self.quantity <= 0:
                raise ValueError(f"{self.signal} requires a positive quantity")
        return self

    def to_intent(self) -> TradeIntent:
        action = _SIGNAL_ACTIONS[self.signal]
        symbol = normalize_symbol(self.coin)

        if action is IntentAction.CLOSE:
            return TradeIntent(
                symbol=symbol,
                action=action,
                close_percentage=self.percentage if self.percentage is not None else Decimal("100"),
                note=self.justification,
            )

        if action is IntentAction.HOLD:
            return TradeIntent(
                symbol=symbol,
                action=action,
                stop_loss_price=self.stop_loss,
                take_profit_price=self.profit_target,
                note=self.justification,
            )

        return TradeIntent(
            symbol=symbol,
            action=action,
            amount=self.quantity,
            price=self.pricing,
            leverage=self.leverage,
            stop_loss_percent=self.stop_loss,
            take_profit_percent=self.profit_target,
            note=self.justification,
        )


def parse_decision(raw: Mapping[str, Any]) -> TradeIntent:
    """Validate one raw record and convert it to a TradeIntent.

    Raises:
        ValidationError: If the record is malformed.
    """
    try:
        record = DecisionRecord.model_validate(dict(raw))
    except pydantic.ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'record'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ValidationError(f"Invalid decision record: {problems}") from exc
    return record.to_intent()
