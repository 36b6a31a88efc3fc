"""Binance USD-M futures client implementation via ccxt async.

Wraps ccxt.async_support.binanceusdm and talks to the raw futures endpoints
(new order, leverage, position side, premium index, position risk) so the
engine sees Binance's own payloads: orderId, avgPrice, executedQty.

ccxt handles request signing, rate limiting and the server clock offset.
One ccxt instance is kept per configured base URL so that signed reads can
rotate hosts when one of them is unreachable.
"""

from decimal import Decimal

import ccxt.async_support as ccxt_async

from engine.config import ExchangeSettings
from engine.exceptions import ExchangeRejected, ExchangeTransient
from engine.exchange.client import ExchangeClient
from engine.exchange.errors import ORDER_NOT_FOUND_CODE, extract_error_code
from engine.logging import get_logger

logger = get_logger(__name__)

_FAPI_PATHS = {
    "fapiPublic": "/fapi/v1",
    "fapiPublicV2": "/fapi/v2",
    "fapiPublicV3": "/fapi/v3",
    "fapiPrivate": "/fapi/v1",
    "fapiPrivateV2": "/fapi/v2",
    "fapiPrivateV3": "/fapi/v3",
    "fapiData": "/futures/data",
}


def _fapi_urls(host: str) -> dict[str, str]:
    """Point every futures API family at host."""
    return {name: f"{host}{path}" for name, path in _FAPI_PATHS.items()}


class BinanceFuturesClient(ExchangeClient):
    """Concrete Binance USD-M futures client using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings
        self._hosts = settings.resolved_base_urls()
        self._exchanges: dict[str, ccxt_async.binanceusdm] = {
            host: ccxt_async.binanceusdm(self._build_config(host)) for host in self._hosts
        }

    def _build_config(self, host: str) -> dict:
        return {
            "apiKey": self._settings.api_key.get_secret_value(),
            "secret": self._settings.api_secret.get_secret_value(),
            "enableRateLimit": True,
            "timeout": int(self._settings.timeout_seconds * 1000),
            "options": {
                "defaultType": "future",
                "recvWindow": self._settings.recv_window,
                "adjustForTimeDifference": True,
            },
            "urls": {"api": _fapi_urls(host)},
        }

    @property
    def exchange(self) -> ccxt_async.binanceusdm:
        """Access the primary ccxt exchange instance."""
        return self._exchanges[self._hosts[0]]

    @property
    def endpoints(self) -> list[str]:
        return list(self._hosts)

    async def connect(self) -> None:
        """Synchronise the local clock offset with the exchange server time."""
        logger.info("connecting_to_binance", hosts=self._hosts, testnet=self._settings.testnet)
        for host, exchange in self._exchanges.items():
            try:
                await exchange.load_time_difference()
            except ccxt_async.BaseError as exc:
                # alternates may be down at startup
                logger.warning("time_sync_failed", host=host, error=str(exc))
        logger.info("binance_connected", testnet=self._settings.testnet)

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_binance_connection")
        for exchange in self._exchanges.values():
            await exchange.close()
        logger.info("binance_connection_closed")

    async def _call(self, method: str, params: dict | None = None, host: str | None = None):
        """Invoke a raw ccxt endpoint, translating ccxt errors to engine errors."""
        exchange = self._exchanges[host] if host else self.exchange
        try:
            return await getattr(exchange, method)(params or {})
        except ccxt_async.NetworkError as exc:
            raise ExchangeTransient(str(exc)) from exc
        except ccxt_async.AuthenticationError as exc:
            raise ExchangeRejected(
                str(exc), code=extract_error_code(str(exc)), http_status=401
            ) from exc
        except ccxt_async.ExchangeError as exc:
            raise ExchangeRejected(
                str(exc), code=extract_error_code(str(exc)), http_status=400
            ) from exc
        except ccxt_async.BaseError as exc:
            raise ExchangeTransient(str(exc)) from exc

    async def create_order(self, params: dict) -> dict:
        """Place an order via POST /fapi/v1/order."""
        logger.info(
            "creating_order",
            symbol=params.get("symbol"),
            side=params.get("side"),
            order_type=params.get("type"),
            quantity=params.get("quantity"),
            position_side=params.get("positionSide"),
            reduce_only=params.get("reduceOnly"),
        )
        return await self._call("fapiPrivatePostOrder", params)

    async def fetch_order(self, symbol: str, client_order_id: str) -> dict | None:
        """GET /fapi/v1/order by origClientOrderId."""
        try:
            return await self._call(
                "fapiPrivateGetOrder",
                {"symbol": symbol, "origClientOrderId": client_order_id},
            )
        except ExchangeRejected as exc:
            if exc.code == ORDER_NOT_FOUND_CODE:
                return None
            raise

    async def cancel_order(self, symbol: str, order_id: str) -> dict:
        logger.info("cancelling_order", order_id=order_id, symbol=symbol)
        return await self._call("fapiPrivateDeleteOrder", {"symbol": symbol, "orderId": order_id})

    async def fetch_open_orders(self, symbol: str) -> list[dict]:
        return await self._call("fapiPrivateGetOpenOrders", {"symbol": symbol})

    async def set_leverage(self, symbol: str, leverage: int) -> dict:
        logger.info("setting_leverage", symbol=symbol, leverage=leverage)
        return await self._call(
            "fapiPrivatePostLeverage", {"symbol": symbol, "leverage": leverage}
        )

    async def fetch_dual_side_position(self) -> bool:
        """GET /fapi/v1/positionSide/dual."""
        response = await self._call("fapiPrivateGetPositionSideDual")
        value = response.get("dualSidePosition", False)
        if isinstance(value, str):
            return value.lower() == "true"
        return bool(value)

    async def fetch_mark_price(self, symbol: str) -> Decimal:
        """GET /fapi/v1/premiumIndex for one symbol."""
        response = await self._call("fapiPublicGetPremiumIndex", {"symbol": symbol})
        return Decimal(str(response["markPrice"]))

    async def fetch_available_balance(self) -> Decimal:
        """GET /fapi/v2/account availableBalance."""
        response = await self._call("fapiPrivateV2GetAccount")
        return Decimal(str(response.get("availableBalance", "0")))

    async def fetch_position_risk(self, endpoint: str) -> list[dict]:
        """GET /fapi/v2/positionRisk through the given host."""
        if endpoint not in self._exchanges:
            raise ValueError(f"Unknown endpoint {endpoint}")
        response = await self._call("fapiPrivateV2GetPositionRisk", host=endpoint)
        if not isinstance(response, list):
            raise ExchangeTransient(
                f"Expected array response from {endpoint}, got {type(response).__name__}"
            )
        return response
