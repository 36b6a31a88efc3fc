"""Batch orchestration of trade intents.

Runs one decision batch: every intent is validated, sized, admitted against
the batch margin ledger, submitted and optionally protected, strictly one
after the other in input order. The ledger and the position mode cache are
shared by all intents of the batch, so an intent is only evaluated once the
previous one has either committed its margin or failed.

Per-intent failures (EngineError) are recorded on that intent's outcome and
the batch moves on. ConfigurationError and anything that is not an
EngineError stop the batch.

Mark prices for opens are the only reads issued concurrently; they are
prefetched before the first intent runs.
"""

import asyncio
import time
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

import structlog

from engine.config import ExecutionSettings
from engine.decisions import parse_decision
from engine.exceptions import (
    ConfigurationError,
    EngineError,
    ExchangeFailure,
    ExchangeTransient,
    MarginInsufficient,
    PositionNotFound,
    QuantizationFloor,
    ValidationError,
)
from engine.exchange.client import ExchangeClient
from engine.execution.exit_attacher import ExitAttacher
from engine.execution.submitter import OrderSubmitter
from engine.instruments import InstrumentRuleTable, normalize_symbol
from engine.logging import get_logger
from engine.market_data.mark_prices import MarkPriceService
from engine.models import (
    BatchReport,
    IntentAction,
    IntentOutcome,
    OrderRequest,
    OrderResult,
    OrderSide,
    OrderType,
    PositionSide,
    TradeIntent,
)
from engine.position.query import PositionQuery
from engine.quantizer import (
    CloseAdjustment,
    escalate_for_min_notional,
    escalate_small_amount,
    min_notional_ok,
    quantize_amount,
    size_close,
    truncate_amount,
)
from engine.risk.ledger import MarginLedger, required_margin

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


class OutcomeSink(Protocol):
    """Persistence collaborator receiving each finished batch."""

    async def record_batch(self, report: BatchReport) -> None: ...


@dataclass
class _BatchState:
    """Mutable state shared by the intents of one run."""

    ledger: MarginLedger
    cash_error: Exception | None = None
    price_failures: dict[str, Exception] = field(default_factory=dict)


class ExecutionOrchestrator:
    """Sequences trade intents through sizing, margin, submission and exits.

    The position mode resolver behind submitter and exit attacher is process
    scoped and outlives runs; the margin ledger is created per run.

    Args:
        exchange_client: Exchange used for balance and leverage calls.
        rules: Instrument quantization rules.
        position_query: Open position source for closes.
        submitter: Order submitter.
        exit_attacher: Protective order attacher.
        mark_prices: Mark price service for sizing opens.
        settings: Execution settings (leverage caps, delays, exit defaults).
        sink: Optional persistence collaborator.
    """

    def __init__(
        self,
        exchange_client: ExchangeClient,
        rules: InstrumentRuleTable,
        position_query: PositionQuery,
        submitter: OrderSubmitter,
        exit_attacher: ExitAttacher,
        mark_prices: MarkPriceService,
        settings: ExecutionSettings,
        sink: OutcomeSink | None = None,
    ) -> None:
        self._exchange_client = exchange_client
        self._rules = rules
        self._position_query = position_query
        self._submitter = submitter
        self._exit_attacher = exit_attacher
        self._mark_prices = mark_prices
        self._settings = settings
        self._sink = sink

    async def run(
        self,
        intents: Sequence[TradeIntent],
        available_cash: Decimal | None = None,
    ) -> BatchReport:
        """Execute intents in order and return their outcomes.

        Args:
            intents: Intents in the order they must be executed.
            available_cash: Margin budget for the batch; fetched from the
                exchange when omitted.
        """
        return await self._run_items(list(intents), available_cash)

    async def run_decisions(
        self,
        records: Sequence[Mapping[str, Any]],
        available_cash: Decimal | None = None,
    ) -> BatchReport:
        """Validate raw decision records, then execute them like run().

        Malformed records become failed outcomes with a ValidationError.
        """
        items: list[TradeIntent | EngineError] = []
        for raw in records:
            try:
                items.append(parse_decision(raw))
            except ValidationError as exc:
                items.append(exc)
        return await self._run_items(items, available_cash)

    async def _run_items(
        self,
        items: list[TradeIntent | EngineError],
        available_cash: Decimal | None,
    ) -> BatchReport:
        batch_id = uuid.uuid4().hex[:12]
        intents = [item for item in items if isinstance(item, TradeIntent)]

        with structlog.contextvars.bound_contextvars(batch_id=batch_id):
            state = await self._start_batch(intents, available_cash)
            report = BatchReport(
                batch_id=batch_id,
                starting_cash=state.ledger.initial_cash,
                remaining_cash=state.ledger.remaining_cash,
            )
            logger.info(
                "batch_started",
                intents=len(items),
                starting_cash=str(state.ledger.initial_cash),
            )

            for index, item in enumerate(items):
                report.outcomes.append(await self._run_one(index, item, state))

            report.remaining_cash = state.ledger.remaining_cash
            report.finished_at = time.time()
            logger.info(
                "batch_finished",
                succeeded=len(report.succeeded),
                failed=len(report.failed),
                remaining_cash=str(report.remaining_cash),
                duration=round(report.finished_at - report.started_at, 3),
            )

            await self._hand_off(report)
        return report

    async def _start_batch(
        self, intents: list[TradeIntent], available_cash: Decimal | None
    ) -> _BatchState:
        cash_error: Exception | None = None
        if available_cash is None:
            try:
                available_cash = await asyncio.wait_for(
                    self._exchange_client.fetch_available_balance(),
                    timeout=self._settings.price_timeout_seconds,
                )
            except (ExchangeFailure, asyncio.TimeoutError) as exc:
                cash_error = exc if isinstance(exc, ExchangeFailure) else ExchangeTransient(
                    "Available balance request timed out"
                )
                logger.error("available_balance_unavailable", error=str(cash_error))
                available_cash = Decimal("0")

        state = _BatchState(ledger=MarginLedger(available_cash), cash_error=cash_error)

        needs_price = []
        for intent in intents:
            if not intent.is_open or intent.price is not None:
                continue
            try:
                self._validate(intent)
            except ValidationError:
                continue
            needs_price.append(intent.symbol)
        if needs_price:
            state.price_failures = await self._mark_prices.prefetch(needs_price)
        return state

    async def _run_one(
        self, index: int, item: TradeIntent | EngineError, state: _BatchState
    ) -> IntentOutcome:
        if isinstance(item, EngineError):
            logger.warning("decision_rejected", intent_index=index, error=str(item))
            return IntentOutcome(
                intent=None,
                result=OrderResult(success=False, error=str(item), error_kind=item.kind),
                error_kind=item.kind,
            )

        with structlog.contextvars.bound_contextvars(
            intent_index=index, symbol=item.symbol, action=item.action.value
        ):
            try:
                self._validate(item)
                if item.is_open:
                    outcome = await self._open(item, state)
                elif item.action is IntentAction.CLOSE:
                    outcome = await self._close(item)
                else:
                    outcome = await self._hold(item)
            except ConfigurationError:
                raise
            except EngineError as exc:
                logger.warning("intent_failed", error_kind=exc.kind, error=str(exc))
                return IntentOutcome(
                    intent=item,
                    result=OrderResult(success=False, error=str(exc), error_kind=exc.kind),
                    error_kind=exc.kind,
                )

            if outcome.error_kind is None and not outcome.result.success:
                outcome.error_kind = outcome.result.error_kind
            return outcome

    def _validate(self, intent: TradeIntent) -> None:
        """Reject malformed intents before any network call."""
        self._rules.get(intent.symbol)

        if intent.is_open:
            if intent.amount is None or intent.amount <= 0:
                raise ValidationError(f"Open intent needs a positive amount, got {intent.amount}")
            if intent.leverage is not None and not (
                1 <= intent.leverage <= self._settings.max_leverage
            ):
                raise ValidationError(
                    f"Leverage {intent.leverage} outside 1..{self._settings.max_leverage}"
                )
            if intent.price is not None and intent.price <= 0:
                raise ValidationError(f"Price must be positive, got {intent.price}")
            for name in ("stop_loss_percent", "take_profit_percent"):
                value = getattr(intent, name)
                if value is not None and not (0 < value < _HUNDRED):
                    raise ValidationError(f"{name} must be between 0 and 100, got {value}")

        elif intent.action is IntentAction.CLOSE:
            pct = intent.close_percentage
            if pct is not None and not (0 < pct <= _HUNDRED):
                raise ValidationError(f"Close percentage must be in (0, 100], got {pct}")
            if intent.amount is not None and intent.amount <= 0:
                raise ValidationError(f"Close amount must be positive, got {intent.amount}")
            if intent.price is not None and intent.price <= 0:
                raise ValidationError(f"Price must be positive, got {intent.price}")

        else:
            for name in ("stop_loss_price", "take_profit_price"):
                value = getattr(intent, name)
                if value is not None and value <= 0:
                    raise ValidationError(f"{name} must be positive, got {value}")

    async def _price_for(self, intent: TradeIntent, state: _BatchState) -> Decimal:
        if intent.price is not None:
            return intent.price
        failure = state.price_failures.get(normalize_symbol(intent.symbol))
        if failure is not None:
            raise failure
        return await self._mark_prices.get_price(intent.symbol)

    async def _open(self, intent: TradeIntent, state: _BatchState) -> IntentOutcome:
        rule = self._rules.get(intent.symbol)
        if state.cash_error is not None:
            raise state.cash_error

        price = await self._price_for(intent, state)
        leverage = intent.leverage or self._settings.default_leverage
        raw = intent.amount

        if truncate_amount(raw, rule) == 0:
            escalation = escalate_small_amount(
                raw,
                price,
                leverage,
                rule,
                max_leverage=self._settings.max_leverage,
                max_multiplier=self._settings.max_position_multiplier,
            )
            logger.info(
                "small_amount_escalated",
                requested=str(raw),
                amount=str(escalation.amount),
                multiplier=escalation.multiplier,
                leverage_from=leverage,
                leverage_to=escalation.leverage,
            )
            amount, leverage = escalation.amount, escalation.leverage
        else:
            amount = quantize_amount(raw, rule)

        escalated = escalate_for_min_notional(amount, price, rule)
        if escalated != amount:
            logger.info(
                "min_notional_escalated",
                amount_from=str(amount),
                amount_to=str(escalated),
                price=str(price),
                min_notional=str(rule.min_notional),
            )
            amount = escalated
        if not min_notional_ok(amount, price, rule):
            raise QuantizationFloor(
                f"{amount} {rule.symbol} @ {price} is below minimum notional {rule.min_notional}"
            )

        admission = state.ledger.admit(amount, price, leverage)
        if not admission.allowed:
            raise MarginInsufficient(admission.reason)

        await self._set_leverage(rule.symbol, leverage)

        long = intent.action is IntentAction.OPEN_LONG
        position_side = PositionSide.LONG if long else PositionSide.SHORT
        # precision repair may grow the order, but never past what the budget covers
        affordable = truncate_amount(state.ledger.remaining_cash * leverage / price, rule)
        request = OrderRequest(
            symbol=rule.symbol,
            side=OrderSide.BUY if long else OrderSide.SELL,
            order_type=OrderType.LIMIT if intent.price is not None else OrderType.MARKET,
            quantity=amount,
            position_side=position_side,
            price=intent.price,
            max_quantity=max(affordable, amount),
        )
        result = await self._submitter.submit(
            request, base_delay=self._settings.open_retry_base_delay
        )

        outcome = IntentOutcome(
            intent=intent,
            result=result,
            quantity=amount,
            leverage=leverage,
            required_margin=admission.required_margin,
        )
        if not result.success:
            return outcome

        self._commit_fill(outcome, price, state)

        stop_loss, take_profit = intent.stop_loss_percent, intent.take_profit_percent
        if self._settings.auto_attach_exits:
            if stop_loss is None:
                stop_loss = self._settings.default_stop_loss_percent
            if take_profit is None:
                take_profit = self._settings.default_take_profit_percent
        if stop_loss is not None or take_profit is not None:
            outcome.exits = await self._exit_attacher.attach(
                rule.symbol, stop_loss, take_profit, side=position_side
            )
        return outcome

    def _commit_fill(self, outcome: IntentOutcome, price: Decimal, state: _BatchState) -> None:
        """Debit the ledger for the quantity the exchange actually accepted."""
        quantity = outcome.result.submitted_quantity or outcome.quantity
        if quantity != outcome.quantity:
            margin = required_margin(quantity, price, outcome.leverage)
            logger.info(
                "submitted_quantity_changed",
                quantity_from=str(outcome.quantity),
                quantity_to=str(quantity),
                margin=str(margin),
            )
            outcome.quantity = quantity
            outcome.required_margin = margin

        margin = outcome.required_margin
        if margin > state.ledger.remaining_cash:
            # the order is already live; stop further opens instead of going negative
            logger.error(
                "fill_exceeds_remaining_margin",
                margin=str(margin),
                remaining=str(state.ledger.remaining_cash),
            )
            margin = state.ledger.remaining_cash
        state.ledger.commit(margin)

    async def _set_leverage(self, symbol: str, leverage: int) -> None:
        try:
            await asyncio.wait_for(
                self._exchange_client.set_leverage(symbol, leverage),
                timeout=self._settings.order_timeout_seconds,
            )
        except (ExchangeFailure, asyncio.TimeoutError) as exc:
            # the account keeps its previous leverage for this symbol
            logger.warning(
                "set_leverage_failed",
                symbol=symbol,
                leverage=leverage,
                error=str(exc) or type(exc).__name__,
            )

    async def _close(self, intent: TradeIntent) -> IntentOutcome:
        rule = self._rules.get(intent.symbol)
        position = await self._position_query.find(rule.symbol)
        if position is None:
            raise PositionNotFound(f"No open position found for {rule.symbol}")

        held = position.contracts
        if intent.amount is not None:
            requested = intent.amount
        else:
            pct = intent.close_percentage if intent.close_percentage is not None else _HUNDRED
            requested = held * pct / _HUNDRED

        sizing = size_close(requested, held, rule)
        if sizing.adjustment is not CloseAdjustment.NONE:
            logger.info(
                "close_amount_adjusted",
                requested=str(requested),
                amount=str(sizing.amount),
                held=str(held),
                adjustment=sizing.adjustment.value,
            )

        request = OrderRequest(
            symbol=rule.symbol,
            side=position.side.closing_side,
            order_type=OrderType.LIMIT if intent.price is not None else OrderType.MARKET,
            quantity=sizing.amount,
            position_side=position.side,
            reduce_only=True,
            price=intent.price,
            max_quantity=held,
        )
        result = await self._submitter.submit(
            request, base_delay=self._settings.close_retry_base_delay
        )
        return IntentOutcome(
            intent=intent,
            result=result,
            quantity=sizing.amount,
            leverage=position.leverage,
        )

    async def _hold(self, intent: TradeIntent) -> IntentOutcome:
        rule = self._rules.get(intent.symbol)
        if intent.stop_loss_price is None and intent.take_profit_price is None:
            logger.info("hold_no_action")
            return IntentOutcome(intent=intent, result=OrderResult(success=True))

        exits = await self._exit_attacher.attach(
            rule.symbol,
            stop_loss_price=intent.stop_loss_price,
            take_profit_price=intent.take_profit_price,
            settle=False,
        )
        return IntentOutcome(
            intent=intent,
            result=OrderResult(success=exits.success, error=exits.error, attempts=exits.attempts),
            exits=exits,
        )

    async def _hand_off(self, report: BatchReport) -> None:
        if self._sink is None:
            return
        try:
            await self._sink.record_batch(report)
        except Exception:
            logger.error("outcome_sink_failed", batch_id=report.batch_id, exc_info=True)
