"""Order submission with bounded, error-classified retry.

The single place where an OrderRequest becomes exchange wire parameters and
where failed placements are repaired and retried. Open, close and short call
sites only differ in the request they hand in and the base delay they use.

Each attempt is tagged with its own client order id. After a transient
failure the submitter looks that id up before retrying, so a request that
timed out client-side but was accepted server-side is reported as filled
instead of being placed a second time. If the lookup itself fails the retry
goes ahead and may duplicate the order.
"""

import asyncio
import time
import uuid
from dataclasses import replace
from decimal import Decimal, InvalidOperation

from engine.exceptions import EngineError, ExchangeFailure, ExchangeTransient
from engine.exchange.client import ExchangeClient
from engine.exchange.errors import RepairAction, classify_exchange_error
from engine.execution.mode_resolver import PositionModeResolver
from engine.instruments import InstrumentRuleTable
from engine.logging import get_logger
from engine.models import OrderRequest, OrderResult, OrderType, PositionMode
from engine.quantizer import quantize_amount

logger = get_logger(__name__)

_LIVE_STATUSES = frozenset({"NEW", "PARTIALLY_FILLED", "FILLED"})


def _wire(value: Decimal) -> str:
    """Plain decimal string, never scientific notation."""
    return format(value, "f")


def _positive(payload: dict, *keys: str) -> Decimal | None:
    """First strictly positive Decimal among payload[keys], if any."""
    for key in keys:
        raw = payload.get(key)
        if raw in (None, ""):
            continue
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            continue
        if value > 0:
            return value
    return None


def _error_kind(error: Exception | None) -> str | None:
    if error is None:
        return None
    if isinstance(error, EngineError):
        return error.kind
    return type(error).__name__


def new_client_order_id() -> str:
    return f"eng-{uuid.uuid4().hex[:28]}"


class OrderSubmitter:
    """Places orders, repairing and retrying rejected attempts.

    Args:
        exchange_client: Exchange to place orders on.
        mode_resolver: Shared position mode cache.
        rules: Instrument rules, used for precision repair and price rounding.
        max_attempts: Total attempts per order, including the first.
        timeout: Seconds to wait for one placement call.
    """

    def __init__(
        self,
        exchange_client: ExchangeClient,
        mode_resolver: PositionModeResolver,
        rules: InstrumentRuleTable,
        max_attempts: int = 3,
        timeout: float = 20.0,
    ) -> None:
        self._exchange_client = exchange_client
        self._mode_resolver = mode_resolver
        self._rules = rules
        self._max_attempts = max(1, max_attempts)
        self._timeout = timeout

    def build_params(
        self,
        request: OrderRequest,
        mode: PositionMode,
        client_order_id: str | None = None,
    ) -> dict:
        """Shape wire parameters for one attempt.

        Dual-side accounts tag every order with positionSide. One-way accounts
        never send positionSide; reducing orders carry reduceOnly instead.
        """
        rule = self._rules.get(request.symbol)
        params: dict = {
            "symbol": rule.symbol,
            "side": request.side.value,
            "type": request.order_type.value,
            "quantity": _wire(request.quantity),
        }

        if mode is PositionMode.DUAL_SIDE:
            params["positionSide"] = request.position_side.value
        elif request.reduce_only:
            params["reduceOnly"] = "true"

        if request.order_type is OrderType.LIMIT:
            if request.price is None:
                raise ValueError(f"LIMIT order for {rule.symbol} requires a price")
            params["price"] = _wire(rule.round_price(request.price))
            params["timeInForce"] = "GTC"
        else:
            params["newOrderRespType"] = "RESULT"

        if client_order_id:
            params["newClientOrderId"] = client_order_id
        return params

    async def submit(self, request: OrderRequest, base_delay: float = 3.0) -> OrderResult:
        """Place an order, retrying up to max_attempts times.

        Never raises for exchange or transport failures; exhausting the budget
        yields OrderResult(success=False) carrying the last error.

        Args:
            request: Quantized order.
            base_delay: Backoff unit in seconds; attempt n waits n * base_delay.
        """
        last_error: Exception | None = None

        for attempt in range(1, self._max_attempts + 1):
            mode = await self._mode_resolver.get_mode()
            client_order_id = new_client_order_id()
            try:
                params = self.build_params(request, mode, client_order_id)
                response = await asyncio.wait_for(
                    self._exchange_client.create_order(params),
                    timeout=self._timeout,
                )
            except asyncio.TimeoutError:
                error: Exception = ExchangeTransient(
                    f"Order request timeout after {self._timeout}s"
                )
            except ExchangeFailure as exc:
                error = exc
            except Exception as exc:
                logger.error(
                    "order_attempt_unexpected_error",
                    symbol=request.symbol,
                    attempt=attempt,
                    exc_info=True,
                )
                error = exc
            else:
                return self._to_result(request, response, attempt)

            last_error = error
            logger.warning(
                "order_attempt_failed",
                symbol=request.symbol,
                side=request.side.value,
                quantity=str(request.quantity),
                mode=mode.value,
                attempt=f"{attempt}/{self._max_attempts}",
                error=str(error),
                error_code=getattr(error, "code", None),
            )

            if isinstance(error, ExchangeTransient):
                placed = await self._lookup(request, client_order_id)
                if placed is not None:
                    logger.info(
                        "order_found_after_transient_failure",
                        symbol=request.symbol,
                        client_order_id=client_order_id,
                    )
                    return self._to_result(request, placed, attempt)

            action = classify_exchange_error(error)
            if action is RepairAction.RESOLVE_POSITION_MODE:
                self._mode_resolver.on_mismatch_error()

            if attempt == self._max_attempts:
                break

            if action is RepairAction.RESOLVE_POSITION_MODE:
                continue
            if action is RepairAction.BUMP_PRECISION:
                request = self._bump_quantity(request)

            await asyncio.sleep(attempt * base_delay)

        logger.error(
            "order_failed",
            symbol=request.symbol,
            attempts=self._max_attempts,
            error=str(last_error),
        )
        return OrderResult(
            success=False,
            error=str(last_error) if last_error is not None else "Order not placed",
            error_kind=_error_kind(last_error),
            attempts=self._max_attempts,
        )

    def _bump_quantity(self, request: OrderRequest) -> OrderRequest:
        """Add one grid unit, unless that would exceed the request's ceiling."""
        rule = self._rules.get(request.symbol)
        bumped = quantize_amount(request.quantity + rule.min_unit, rule)
        if request.max_quantity is not None and bumped > request.max_quantity:
            logger.warning(
                "precision_bump_skipped",
                symbol=request.symbol,
                quantity=str(request.quantity),
                max_quantity=str(request.max_quantity),
            )
            return request
        logger.info(
            "precision_bump",
            symbol=request.symbol,
            old_quantity=str(request.quantity),
            new_quantity=str(bumped),
        )
        return replace(request, quantity=bumped)

    async def _lookup(self, request: OrderRequest, client_order_id: str) -> dict | None:
        """Return the order placed under client_order_id if it is live or filled."""
        try:
            order = await asyncio.wait_for(
                self._exchange_client.fetch_order(request.symbol, client_order_id),
                timeout=self._timeout,
            )
        except (ExchangeFailure, asyncio.TimeoutError) as exc:
            logger.warning(
                "order_lookup_failed_retry_may_duplicate",
                symbol=request.symbol,
                client_order_id=client_order_id,
                error=str(exc) or type(exc).__name__,
            )
            return None

        if order and str(order.get("status", "")).upper() in _LIVE_STATUSES:
            return order
        return None

    def _to_result(self, request: OrderRequest, response: dict, attempt: int) -> OrderResult:
        order_id = response.get("orderId")
        executed_price = _positive(response, "avgPrice", "price") or request.price
        executed_amount = _positive(response, "executedQty", "origQty") or request.quantity
        update_time = response.get("updateTime")
        timestamp = float(update_time) / 1000.0 if update_time else time.time()

        logger.info(
            "order_placed",
            order_id=order_id,
            symbol=request.symbol,
            side=request.side.value,
            executed_price=str(executed_price) if executed_price is not None else None,
            executed_amount=str(executed_amount),
            status=response.get("status"),
            attempts=attempt,
        )
        return OrderResult(
            success=True,
            order_id=str(order_id) if order_id is not None else None,
            executed_price=executed_price,
            executed_amount=executed_amount,
            submitted_quantity=request.quantity,
            attempts=attempt,
            timestamp=timestamp,
        )
