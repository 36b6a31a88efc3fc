"""Order amount quantization and escalation.

Pure Decimal functions, no I/O. Every quantity that reaches the exchange
passes through here:

1. truncate toward zero onto the instrument's decimal grid (never round up)
2. raise a positive request that truncates to zero to one minimal unit
3. escalate amounts that fall under the instrument minimum notional
4. for sub-minimal opens, escalate leverage within hard safety caps
5. for closes, clamp to what is actually held

Because the arithmetic is exact Decimal, floor(x) + unit > x always holds, so
a single extra unit is always enough to cross the minimum notional once the
truncated amount falls short. UnachievableMinimum guards the cases where the
inputs themselves are unusable (non-positive price).
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_DOWN, Decimal
from enum import Enum

from engine.exceptions import QuantizationFloor, UnachievableMinimum
from engine.instruments import InstrumentRule

_ZERO = Decimal("0")


def truncate_amount(raw: Decimal, rule: InstrumentRule) -> Decimal:
    """Truncate raw toward zero onto the rule's quantity grid."""
    return raw.quantize(rule.min_unit, rounding=ROUND_DOWN)


def quantize_amount(raw: Decimal, rule: InstrumentRule) -> Decimal:
    """Quantize an order amount.

    floor(raw * 10^d) / 10^d, except that a positive raw amount that would
    truncate to zero becomes one minimal unit instead of silently vanishing.
    Idempotent: quantizing a quantized amount returns it unchanged.
    """
    amount = truncate_amount(raw, rule)
    if amount == _ZERO and raw > _ZERO:
        return rule.min_unit
    return amount


def min_notional_ok(amount: Decimal, price: Decimal, rule: InstrumentRule) -> bool:
    """Whether amount * price reaches the instrument minimum notional."""
    return amount * price >= rule.min_notional


def required_amount_for_min_notional(price: Decimal, rule: InstrumentRule) -> Decimal:
    """Smallest grid amount whose notional reaches min_notional at price.

    Raises:
        UnachievableMinimum: If no amount can satisfy the threshold.
    """
    if price <= _ZERO:
        raise UnachievableMinimum(
            f"Cannot meet minimum notional {rule.min_notional} for {rule.symbol} "
            f"at non-positive price {price}"
        )

    amount = quantize_amount(rule.min_notional / price, rule)
    if min_notional_ok(amount, price, rule):
        return amount

    amount += rule.min_unit
    if not min_notional_ok(amount, price, rule):
        raise UnachievableMinimum(
            f"Cannot meet minimum notional {rule.min_notional} for {rule.symbol}: "
            f"{amount} @ {price} = {amount * price}"
        )
    return amount


def escalate_for_min_notional(
    amount: Decimal, price: Decimal, rule: InstrumentRule
) -> Decimal:
    """Return amount unchanged if it meets min_notional, else the required amount."""
    if min_notional_ok(amount, price, rule):
        return amount
    return required_amount_for_min_notional(price, rule)


@dataclass(frozen=True)
class LeverageEscalation:
    """Outcome of the small-amount escalation for an open."""

    amount: Decimal
    leverage: int
    multiplier: int


def escalate_small_amount(
    raw: Decimal,
    price: Decimal,
    leverage: int,
    rule: InstrumentRule,
    max_leverage: int = 30,
    max_multiplier: int = 20,
) -> LeverageEscalation:
    """Make a sub-minimal open admissible by raising leverage.

    The multiplier is how many times the requested notional must grow to reach
    the notional of one minimal unit. Leverage grows by the same factor (capped
    at max_leverage), so required margin stays close to what was asked for
    while the quantity moves up to the smallest grid unit.

    Raises:
        QuantizationFloor: If the multiplier or the resulting leverage is
            beyond the safety caps.
    """
    if raw <= _ZERO or price <= _ZERO:
        raise QuantizationFloor(
            f"Amount {raw} @ {price} cannot be escalated for {rule.symbol}"
        )

    requested_notional = raw * price
    unit_notional = rule.min_unit * price
    multiplier = int((unit_notional / requested_notional).to_integral_value(rounding=ROUND_CEILING))
    proposed = min(leverage * multiplier, max_leverage)

    if multiplier > max_multiplier or proposed > max_leverage:
        raise QuantizationFloor(
            f"Amount {raw} too small. Minimum for {rule.symbol} is {rule.min_unit}. "
            f"Needs {multiplier}x the requested size (cap {max_multiplier}x); "
            f"suggested leverage {leverage * multiplier}x exceeds safe limit {max_leverage}x."
        )

    return LeverageEscalation(amount=rule.min_unit, leverage=proposed, multiplier=multiplier)


class CloseAdjustment(str, Enum):
    """How a close amount was repaired, if at all."""

    NONE = "none"
    MINIMUM = "minimum"  # raised to one minimal unit
    ENTIRE_POSITION = "entire_position"  # holdings are below one unit
    CLAMPED = "clamped"  # request exceeded holdings


@dataclass(frozen=True)
class CloseSizing:
    amount: Decimal
    adjustment: CloseAdjustment


def size_close(requested: Decimal, held: Decimal, rule: InstrumentRule) -> CloseSizing:
    """Turn a requested close amount into one the exchange will accept.

    The result never exceeds held. When the whole position is smaller than one
    grid unit the entire position is closed as-is, bypassing the unit floor.
    """
    if held <= _ZERO:
        raise QuantizationFloor(f"Nothing held for {rule.symbol}")

    amount = truncate_amount(requested, rule)

    if amount < rule.min_unit:
        if held >= rule.min_unit:
            return CloseSizing(rule.min_unit, CloseAdjustment.MINIMUM)
        return CloseSizing(held, CloseAdjustment.ENTIRE_POSITION)

    if amount > held:
        clamped = truncate_amount(held, rule)
        if clamped == _ZERO:
            clamped = held
        return CloseSizing(clamped, CloseAdjustment.CLAMPED)

    return CloseSizing(amount, CloseAdjustment.NONE)
