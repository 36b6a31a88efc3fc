"""Library entry point for the order execution engine.

An external scheduler calls run_batch() once per decision cycle. There is
no CLI or server loop; the scheduler owns timing and must not start a batch
while the previous one is still running.

run_batch() builds and tears down its own exchange connection. A scheduler
that lives across cycles should call build_components() once and reuse the
orchestrator, so the position mode cache survives between batches.

Component wiring order (in build_components):
1. ExchangeClient (BinanceFuturesClient unless one is injected)
2. InstrumentRuleTable (static quantization rules)
3. PositionModeResolver (process-scoped position mode cache)
4. PositionQuery (endpoint-rotating position reads)
5. MarkPriceService (mark price cache)
6. OrderSubmitter (retrying order placement)
7. ExitAttacher (stop-loss / take-profit attachment)
8. ExecutionOrchestrator (batch sequencing)
"""

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import Any

from engine.config import AppSettings, require_credentials
from engine.exchange.binance_client import BinanceFuturesClient
from engine.exchange.client import ExchangeClient
from engine.execution.exit_attacher import ExitAttacher
from engine.execution.mode_resolver import PositionModeResolver
from engine.execution.submitter import OrderSubmitter
from engine.instruments import InstrumentRuleTable
from engine.logging import get_logger, setup_logging
from engine.market_data.mark_prices import MarkPriceService
from engine.models import BatchReport
from engine.orchestrator import ExecutionOrchestrator, OutcomeSink
from engine.position.query import PositionQuery


def build_components(
    settings: AppSettings,
    exchange_client: ExchangeClient | None = None,
    sink: OutcomeSink | None = None,
) -> dict[str, Any]:
    """Build the engine's dependency graph from settings.

    Does NOT call exchange_client.connect(); run_batch() does that.

    Args:
        settings: Application-wide settings.
        exchange_client: Pre-built client (tests, alternate venues).
        sink: Optional persistence collaborator for batch reports.

    Returns:
        Dict mapping component names to instances.
    """
    execution = settings.execution

    if exchange_client is None:
        exchange_client = BinanceFuturesClient(settings.exchange)

    rules = InstrumentRuleTable()
    mode_resolver = PositionModeResolver(
        exchange_client, timeout=execution.mode_query_timeout_seconds
    )
    position_query = PositionQuery(
        exchange_client, timeout=execution.position_query_timeout_seconds
    )
    mark_prices = MarkPriceService(exchange_client, timeout=execution.price_timeout_seconds)
    submitter = OrderSubmitter(
        exchange_client,
        mode_resolver,
        rules,
        max_attempts=execution.order_max_attempts,
        timeout=execution.order_timeout_seconds,
    )
    exit_attacher = ExitAttacher(
        exchange_client,
        position_query,
        mode_resolver,
        rules,
        settle_delay=execution.exit_settle_delay,
        max_attempts=execution.exit_max_attempts,
        retry_delays=execution.exit_retry_delays,
        timeout=execution.order_timeout_seconds,
    )
    orchestrator = ExecutionOrchestrator(
        exchange_client=exchange_client,
        rules=rules,
        position_query=position_query,
        submitter=submitter,
        exit_attacher=exit_attacher,
        mark_prices=mark_prices,
        settings=execution,
        sink=sink,
    )

    return {
        "exchange_client": exchange_client,
        "rules": rules,
        "mode_resolver": mode_resolver,
        "position_query": position_query,
        "mark_prices": mark_prices,
        "submitter": submitter,
        "exit_attacher": exit_attacher,
        "orchestrator": orchestrator,
    }


async def run_batch(
    records: Sequence[Mapping[str, Any]],
    settings: AppSettings | None = None,
    sink: OutcomeSink | None = None,
    available_cash: Decimal | None = None,
) -> BatchReport:
    """Execute one batch of raw decision records against the exchange.

    Credentials are checked before anything touches the network.

    Raises:
        ConfigurationError: If API credentials are missing.
    """
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.log_level)
    logger = get_logger("engine.main")

    require_credentials(settings.exchange)

    components = build_components(settings, sink=sink)
    exchange_client = components["exchange_client"]

    logger.info(
        "engine_starting",
        testnet=settings.exchange.testnet,
        decisions=len(records),
    )
    try:
        await exchange_client.connect()
        return await components["orchestrator"].run_decisions(
            records, available_cash=available_cash
        )
    finally:
        await exchange_client.close()
        logger.info("engine_stopped")
