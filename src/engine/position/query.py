"""Open position lookup with endpoint rotation.

One signed position-risk read per candidate endpoint, in order. The first
endpoint that answers wins; a failing endpoint is never retried, the query
just moves on to the next one. If every endpoint fails the individual
failures are raised together as a PositionQueryError.
"""

import asyncio
from decimal import Decimal, InvalidOperation

from engine.exceptions import ExchangeFailure, ExchangeTransient, PositionQueryError
from engine.exchange.client import ExchangeClient
from engine.instruments import normalize_symbol
from engine.logging import get_logger
from engine.models import PositionSide, PositionSnapshot

logger = get_logger(__name__)


def _dec(row: dict, key: str) -> Decimal:
    value = row.get(key)
    if value in (None, ""):
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def parse_position(row: dict) -> PositionSnapshot | None:
    """Convert one raw position-risk row; None for flat rows.

    In dual-side mode the row's positionSide is authoritative; in one-way mode
    (positionSide BOTH) the direction comes from the sign of positionAmt.
    """
    amount = _dec(row, "positionAmt")
    if amount == 0:
        return None

    tagged = str(row.get("positionSide", "BOTH")).upper()
    if tagged in (PositionSide.LONG.value, PositionSide.SHORT.value):
        side = PositionSide(tagged)
    else:
        side = PositionSide.LONG if amount > 0 else PositionSide.SHORT

    return PositionSnapshot(
        symbol=str(row["symbol"]),
        side=side,
        contracts=abs(amount),
        entry_price=_dec(row, "entryPrice"),
        mark_price=_dec(row, "markPrice"),
        leverage=int(_dec(row, "leverage")),
        unrealized_pnl=_dec(row, "unRealizedProfit"),
        liquidation_price=_dec(row, "liquidationPrice"),
        margin_type=str(row.get("marginType", "cross")).lower(),
    )


class PositionQuery:
    """Fetches current open positions, rotating through alternate endpoints.

    Args:
        exchange_client: Exchange exposing ordered endpoints.
        timeout: Per-endpoint timeout in seconds.
    """

    def __init__(self, exchange_client: ExchangeClient, timeout: float = 30.0) -> None:
        self._exchange_client = exchange_client
        self._timeout = timeout

    async def fetch(self) -> list[PositionSnapshot]:
        """Return all non-flat positions.

        Raises:
            PositionQueryError: If every endpoint failed.
        """
        endpoints = self._exchange_client.endpoints
        failures: list[tuple[str, Exception]] = []

        for i, endpoint in enumerate(endpoints, 1):
            try:
                rows = await asyncio.wait_for(
                    self._exchange_client.fetch_position_risk(endpoint),
                    timeout=self._timeout,
                )
            except (asyncio.TimeoutError, ExchangeFailure) as exc:
                if isinstance(exc, asyncio.TimeoutError):
                    exc = ExchangeTransient(f"timeout after {self._timeout}s")
                failures.append((endpoint, exc))
                logger.warning(
                    "position_endpoint_failed",
                    endpoint=endpoint,
                    attempt=f"{i}/{len(endpoints)}",
                    error=str(exc),
                )
                continue

            positions = [p for p in (parse_position(row) for row in rows) if p is not None]
            logger.info("positions_fetched", endpoint=endpoint, count=len(positions))
            return positions

        logger.error("position_fetch_failed_all_endpoints", endpoints=len(endpoints))
        raise PositionQueryError(failures)

    async def find(
        self, symbol: str, side: PositionSide | None = None
    ) -> PositionSnapshot | None:
        """Return the first open position for symbol, or None.

        A dual-side account can hold a long and a short leg on one symbol;
        pass side to pick one of them.
        """
        wanted = normalize_symbol(symbol)
        for position in await self.fetch():
            if position.symbol != wanted:
                continue
            if side is not None and position.side is not side:
                continue
            return position
        return None
