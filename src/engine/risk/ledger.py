"""Margin budgeting across one decision batch.

A batch may carry several opening intents that each look affordable against
the account's available balance on their own but not together. The ledger
starts from the available balance at batch start and is debited as orders
are accepted, so later intents are sized against what is actually left.

Fresh per orchestration run; never persisted or shared across runs.
"""

from dataclasses import dataclass
from decimal import Decimal

from engine.exceptions import MarginInsufficient
from engine.logging import get_logger

logger = get_logger(__name__)

_ZERO = Decimal("0")


@dataclass(frozen=True)
class Admission:
    """Result of asking the ledger whether an intent fits the budget."""

    allowed: bool
    required_margin: Decimal
    reason: str = ""


def required_margin(quantity: Decimal, price: Decimal, leverage: int) -> Decimal:
    """Margin needed for a position: notional / leverage."""
    if leverage < 1:
        raise ValueError(f"Leverage must be >= 1, got {leverage}")
    return quantity * price / Decimal(leverage)


class MarginLedger:
    """Remaining deployable margin for one batch; monotonically non-increasing.

    Args:
        initial_cash: Available margin at batch start. Negative balances are
            treated as zero.
    """

    def __init__(self, initial_cash: Decimal) -> None:
        self._initial_cash = max(initial_cash, _ZERO)
        self._remaining_cash = self._initial_cash
        self._committed: list[Decimal] = []

    @property
    def initial_cash(self) -> Decimal:
        return self._initial_cash

    @property
    def remaining_cash(self) -> Decimal:
        return self._remaining_cash

    @property
    def committed_total(self) -> Decimal:
        return sum(self._committed, _ZERO)

    def admit(self, quantity: Decimal, price: Decimal, leverage: int) -> Admission:
        """Check whether an order of this size fits the remaining budget.

        Does not reserve anything; call commit() once the order is accepted.
        """
        margin = required_margin(quantity, price, leverage)
        if margin > self._remaining_cash:
            reason = (
                f"Insufficient remaining margin for multi-order batch: "
                f"need ${margin:.2f} but have ${self._remaining_cash:.2f}"
            )
            logger.warning(
                "margin_rejected",
                required=str(margin),
                remaining=str(self._remaining_cash),
            )
            return Admission(allowed=False, required_margin=margin, reason=reason)

        return Admission(allowed=True, required_margin=margin)

    def commit(self, margin: Decimal) -> Decimal:
        """Debit margin for an accepted order and return the new remaining cash.

        Raises:
            ValueError: If margin is negative.
            MarginInsufficient: If margin exceeds what is left, which would
                mean commit() was called without a matching admit().
        """
        if margin < _ZERO:
            raise ValueError(f"Cannot commit negative margin {margin}")
        if margin > self._remaining_cash:
            raise MarginInsufficient(
                f"Commit of {margin} exceeds remaining margin {self._remaining_cash}"
            )

        self._remaining_cash -= margin
        self._committed.append(margin)
        logger.info(
            "margin_committed",
            margin=str(margin),
            remaining=str(self._remaining_cash),
        )
        return self._remaining_cash
