"""Exchange client layer -- Binance USD-M futures integration via ccxt."""

from engine.exchange.binance_client import BinanceFuturesClient
from engine.exchange.client import ExchangeClient
from engine.exchange.errors import RepairAction, classify_exchange_error

__all__ = ["BinanceFuturesClient", "ExchangeClient", "RepairAction", "classify_exchange_error"]
