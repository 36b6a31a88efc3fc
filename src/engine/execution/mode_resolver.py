"""Cached, invalidatable lookup of the account-wide position mode.

Two states: unresolved (no cached mode) and resolved. The first caller after
construction or after an invalidation queries the exchange; everybody else
gets the cached value. The cache is never expired by time, only by an
explicit mismatch signal from the exchange.
"""

import asyncio

from engine.exceptions import ExchangeFailure
from engine.exchange.client import ExchangeClient
from engine.logging import get_logger
from engine.models import PositionMode

logger = get_logger(__name__)


class PositionModeResolver:
    """Process-scoped position mode cache with single-flight resolution.

    Concurrent callers that find the cache empty queue on a lock; the first
    one performs the query and the rest observe its result, so at most one
    position-mode request is ever in flight.

    Args:
        exchange_client: Exchange to query.
        timeout: Seconds to wait for the position-mode call.
    """

    def __init__(self, exchange_client: ExchangeClient, timeout: float = 20.0) -> None:
        self._exchange_client = exchange_client
        self._timeout = timeout
        self._mode: PositionMode | None = None
        self._lock = asyncio.Lock()

    @property
    def cached_mode(self) -> PositionMode | None:
        """The cached mode, or None while unresolved."""
        return self._mode

    async def get_mode(self) -> PositionMode:
        """Return the cached mode, resolving it from the exchange if needed.

        If the query fails the engine proceeds as ONE_WAY (the exchange
        default) but stays unresolved, so the next caller tries again.
        """
        if self._mode is not None:
            return self._mode

        async with self._lock:
            if self._mode is not None:
                return self._mode

            try:
                dual = await asyncio.wait_for(
                    self._exchange_client.fetch_dual_side_position(),
                    timeout=self._timeout,
                )
            except (ExchangeFailure, asyncio.TimeoutError) as exc:
                logger.warning(
                    "position_mode_query_failed",
                    fallback=PositionMode.ONE_WAY.value,
                    error=str(exc) or type(exc).__name__,
                )
                return PositionMode.ONE_WAY

            self._mode = PositionMode.DUAL_SIDE if dual else PositionMode.ONE_WAY
            logger.info("position_mode_resolved", mode=self._mode.value, dual_side=dual)
            return self._mode

    def on_mismatch_error(self) -> None:
        """Drop the cached mode after the exchange reported a side mismatch."""
        if self._mode is not None:
            logger.warning("position_mode_invalidated", previous=self._mode.value)
        self._mode = None
