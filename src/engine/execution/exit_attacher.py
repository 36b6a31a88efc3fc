"""Best-effort stop-loss / take-profit attachment.

Protective orders are STOP_MARKET and TAKE_PROFIT_MARKET orders with
closePosition=true, triggered on the mark price. They are placed against
the position as the exchange currently reports it, so a just-filled entry
is given a settle delay to show up in position risk first.

Failure here never reverses the entry that triggered it; callers get an
ExitResult with success=False and carry on.
"""

import asyncio
from decimal import Decimal

from engine.exceptions import ExchangeFailure, ExchangeTransient, PositionNotFound
from engine.exchange.client import ExchangeClient
from engine.exchange.errors import RepairAction, classify_exchange_error
from engine.execution.mode_resolver import PositionModeResolver
from engine.instruments import InstrumentRule, InstrumentRuleTable
from engine.logging import get_logger
from engine.models import ExitResult, PositionMode, PositionSide, PositionSnapshot
from engine.position.query import PositionQuery

logger = get_logger(__name__)

STOP_LOSS_TYPE = "STOP_MARKET"
TAKE_PROFIT_TYPE = "TAKE_PROFIT_MARKET"
_PROTECTIVE_TYPES = frozenset({STOP_LOSS_TYPE, TAKE_PROFIT_TYPE})

_HUNDRED = Decimal("100")


def exit_prices_from_percent(
    position: PositionSnapshot,
    rule: InstrumentRule,
    stop_loss_percent: Decimal | None,
    take_profit_percent: Decimal | None,
) -> tuple[Decimal | None, Decimal | None]:
    """Trigger prices at the given distances from the entry price.

    Longs stop below and take profit above entry; shorts the other way round.
    """
    entry = position.entry_price
    sign = Decimal("1") if position.side is PositionSide.LONG else Decimal("-1")

    stop_loss = None
    if stop_loss_percent is not None:
        stop_loss = rule.round_price(entry * (1 - sign * stop_loss_percent / _HUNDRED))

    take_profit = None
    if take_profit_percent is not None:
        take_profit = rule.round_price(entry * (1 + sign * take_profit_percent / _HUNDRED))

    return stop_loss, take_profit


class ExitAttacher:
    """Attaches protective orders to an open position with its own retry.

    Args:
        exchange_client: Exchange to place protective orders on.
        position_query: Source of the position being protected.
        mode_resolver: Shared position mode cache.
        rules: Instrument rules, for trigger price rounding.
        settle_delay: Seconds to wait before the first attempt.
        max_attempts: Total attempts.
        retry_delays: Wait before attempt n+1 is retry_delays[n-1]; the last
            value is reused if there are more attempts than delays.
        timeout: Seconds to wait for each exchange call.
    """

    def __init__(
        self,
        exchange_client: ExchangeClient,
        position_query: PositionQuery,
        mode_resolver: PositionModeResolver,
        rules: InstrumentRuleTable,
        settle_delay: float = 8.0,
        max_attempts: int = 3,
        retry_delays: list[float] | tuple[float, ...] = (3.0, 5.0),
        timeout: float = 20.0,
    ) -> None:
        self._exchange_client = exchange_client
        self._position_query = position_query
        self._mode_resolver = mode_resolver
        self._rules = rules
        self._settle_delay = settle_delay
        self._max_attempts = max(1, max_attempts)
        self._retry_delays = list(retry_delays) or [0.0]
        self._timeout = timeout

    async def attach(
        self,
        symbol: str,
        stop_loss_percent: Decimal | None = None,
        take_profit_percent: Decimal | None = None,
        *,
        side: PositionSide | None = None,
        stop_loss_price: Decimal | None = None,
        take_profit_price: Decimal | None = None,
        settle: bool = True,
    ) -> ExitResult:
        """Place stop-loss and/or take-profit orders for symbol's position.

        Percentages are distances from the entry price; absolute prices are
        used as given (rounded to tick) and take precedence. side selects the
        leg to protect when a dual-side account holds both; without it the
        first open position on symbol is used.

        On failure the returned result still carries any protective order
        that was placed and not cancelled since.
        """
        wants_stop = stop_loss_price is not None or stop_loss_percent is not None
        wants_take = take_profit_price is not None or take_profit_percent is not None
        if not (wants_stop or wants_take):
            return ExitResult(success=True)

        if settle and self._settle_delay > 0:
            await asyncio.sleep(self._settle_delay)

        result = ExitResult(success=False)
        for attempt in range(1, self._max_attempts + 1):
            result.attempts = attempt
            try:
                await self._attach_once(
                    result,
                    symbol,
                    side,
                    stop_loss_percent,
                    take_profit_percent,
                    stop_loss_price,
                    take_profit_price,
                )
            except (ExchangeFailure, PositionNotFound) as exc:
                result.error = str(exc)
                if (
                    isinstance(exc, ExchangeFailure)
                    and classify_exchange_error(exc) is RepairAction.RESOLVE_POSITION_MODE
                ):
                    self._mode_resolver.on_mismatch_error()
                logger.warning(
                    "exit_attach_attempt_failed",
                    symbol=symbol,
                    attempt=f"{attempt}/{self._max_attempts}",
                    error=str(exc),
                )
                if attempt < self._max_attempts:
                    delay = self._retry_delays[min(attempt - 1, len(self._retry_delays) - 1)]
                    await asyncio.sleep(delay)
                continue

            result.success = True
            result.error = None
            logger.info(
                "exits_attached",
                symbol=symbol,
                stop_loss=str(result.stop_loss_price) if result.stop_loss_price else None,
                take_profit=str(result.take_profit_price) if result.take_profit_price else None,
                attempts=attempt,
            )
            return result

        logger.error(
            "exit_attach_failed",
            symbol=symbol,
            error=result.error,
            stop_loss_order_id=result.stop_loss_order_id,
            take_profit_order_id=result.take_profit_order_id,
        )
        return result

    async def _attach_once(
        self,
        result: ExitResult,
        symbol: str,
        side: PositionSide | None,
        stop_loss_percent: Decimal | None,
        take_profit_percent: Decimal | None,
        stop_loss_price: Decimal | None,
        take_profit_price: Decimal | None,
    ) -> None:
        """One attempt; records each placed order on result as it goes."""
        rule = self._rules.get(symbol)
        position = await self._position_query.find(rule.symbol, side)
        if position is None:
            leg = f" {side.value}" if side is not None else ""
            raise PositionNotFound(f"No open{leg} position for {rule.symbol} to protect")

        pct_stop, pct_take = exit_prices_from_percent(
            position, rule, stop_loss_percent, take_profit_percent
        )
        stop = rule.round_price(stop_loss_price) if stop_loss_price is not None else pct_stop
        take = rule.round_price(take_profit_price) if take_profit_price is not None else pct_take

        mode = await self._mode_resolver.get_mode()
        await self._cancel_existing(rule.symbol, position.side, mode)
        # anything recorded by an earlier attempt was just cancelled
        result.stop_loss_order_id = result.take_profit_order_id = None
        result.stop_loss_price = result.take_profit_price = None

        if stop is not None:
            order = await self._place(rule.symbol, position.side, mode, STOP_LOSS_TYPE, stop)
            result.stop_loss_order_id = str(order.get("orderId"))
            result.stop_loss_price = stop
        if take is not None:
            order = await self._place(rule.symbol, position.side, mode, TAKE_PROFIT_TYPE, take)
            result.take_profit_order_id = str(order.get("orderId"))
            result.take_profit_price = take

    async def _cancel_existing(self, symbol: str, side: PositionSide, mode: PositionMode) -> None:
        open_orders = await self._with_timeout(self._exchange_client.fetch_open_orders(symbol))
        for order in open_orders:
            if order.get("type") not in _PROTECTIVE_TYPES:
                continue
            if mode is PositionMode.DUAL_SIDE and order.get("positionSide") != side.value:
                continue
            await self._with_timeout(
                self._exchange_client.cancel_order(symbol, str(order["orderId"]))
            )

    async def _place(
        self,
        symbol: str,
        side: PositionSide,
        mode: PositionMode,
        order_type: str,
        trigger: Decimal,
    ) -> dict:
        params = {
            "symbol": symbol,
            "side": side.closing_side.value,
            "type": order_type,
            "stopPrice": format(trigger, "f"),
            "closePosition": "true",
            "workingType": "MARK_PRICE",
        }
        if mode is PositionMode.DUAL_SIDE:
            params["positionSide"] = side.value
        return await self._with_timeout(self._exchange_client.create_order(params))

    async def _with_timeout(self, call):
        try:
            return await asyncio.wait_for(call, timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ExchangeTransient(f"Exit order request timeout after {self._timeout}s") from exc
