"""Market data layer -- mark price look-ups for order sizing."""

from engine.market_data.mark_prices import MarkPriceService

__all__ = ["MarkPriceService"]
