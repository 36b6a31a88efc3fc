"""Mark price look-ups with a short-lived in-memory cache.

Opening intents are sized against the current mark price. A batch usually
touches a handful of symbols, so prefetch() pulls all of them concurrently
before the intents are processed one by one; per-symbol failures are kept
apart so that one bad look-up only fails the intents that need it.
"""

import asyncio
import time
from decimal import Decimal

from engine.exceptions import ExchangeFailure, ExchangeTransient
from engine.exchange.client import ExchangeClient
from engine.instruments import normalize_symbol
from engine.logging import get_logger

logger = get_logger(__name__)


class MarkPriceService:
    """Per-symbol mark price cache with staleness detection.

    Uses asyncio.Lock for safe concurrent reads/writes from multiple coroutines.

    Args:
        exchange_client: Source of mark prices.
        timeout: Seconds to wait for one price request.
        max_age_seconds: Cached prices older than this are refetched.
    """

    def __init__(
        self,
        exchange_client: ExchangeClient,
        timeout: float = 20.0,
        max_age_seconds: float = 30.0,
    ) -> None:
        self._exchange_client = exchange_client
        self._timeout = timeout
        self._max_age_seconds = max_age_seconds
        self._prices: dict[str, tuple[Decimal, float]] = {}
        self._lock = asyncio.Lock()

    async def update_price(self, symbol: str, price: Decimal, timestamp: float | None = None) -> None:
        async with self._lock:
            self._prices[normalize_symbol(symbol)] = (
                price,
                timestamp if timestamp is not None else time.time(),
            )

    async def get_cached(self, symbol: str) -> Decimal | None:
        """Return the cached price if present and fresh, else None."""
        async with self._lock:
            entry = self._prices.get(normalize_symbol(symbol))
        if entry is None or time.time() - entry[1] > self._max_age_seconds:
            return None
        return entry[0]

    async def is_stale(self, symbol: str) -> bool:
        return await self.get_cached(symbol) is None

    async def get_price(self, symbol: str) -> Decimal:
        """Return a fresh mark price, hitting the exchange on a cache miss.

        Raises:
            ExchangeTransient: On timeout or a non-positive price.
            ExchangeRejected: If the exchange refuses the request.
        """
        cached = await self.get_cached(symbol)
        if cached is not None:
            return cached

        exchange_symbol = normalize_symbol(symbol)
        try:
            price = await asyncio.wait_for(
                self._exchange_client.fetch_mark_price(exchange_symbol),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExchangeTransient(
                f"Mark price request for {exchange_symbol} timed out after {self._timeout}s"
            ) from exc

        if price <= 0:
            raise ExchangeTransient(f"Invalid mark price {price} for {exchange_symbol}")

        await self.update_price(exchange_symbol, price)
        logger.debug("mark_price_fetched", symbol=exchange_symbol, price=str(price))
        return price

    async def prefetch(self, symbols: list[str]) -> dict[str, Exception]:
        """Warm the cache for symbols concurrently.

        Returns:
            Failures keyed by normalised symbol; empty when all succeeded.
        """
        unique = sorted({normalize_symbol(s) for s in symbols})
        if not unique:
            return {}

        results = await asyncio.gather(
            *(self.get_price(symbol) for symbol in unique),
            return_exceptions=True,
        )

        failures: dict[str, Exception] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, ExchangeFailure):
                failures[symbol] = result
                logger.warning("mark_price_prefetch_failed", symbol=symbol, error=str(result))
            elif isinstance(result, BaseException):
                raise result

        logger.info(
            "mark_prices_prefetched",
            symbols=len(unique),
            failed=len(failures),
        )
        return failures
