"""Abstract exchange client interface.

Defines the contract for all exchange implementations.
Execution code depends only on this interface, keeping Binance-specific
details isolated in the concrete implementation.

Every method returns raw exchange payloads (or Decimals parsed from them)
and raises only engine exceptions: ExchangeRejected for business errors,
ExchangeTransient for transport failures.
"""

from abc import ABC, abstractmethod
from decimal import Decimal


class ExchangeClient(ABC):
    """Abstract base class for derivatives exchange API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection (clock offset, sessions)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @property
    @abstractmethod
    def endpoints(self) -> list[str]:
        """Ordered alternate endpoints for signed reads (first is primary)."""
        ...

    @abstractmethod
    async def create_order(self, params: dict) -> dict:
        """Place an order from wire-format parameters.

        Returns the raw order payload (orderId, avgPrice/price,
        executedQty/origQty, status).
        """
        ...

    @abstractmethod
    async def fetch_order(self, symbol: str, client_order_id: str) -> dict | None:
        """Look an order up by client order id; None if the exchange has no such order."""
        ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: str) -> dict:
        """Cancel an open order."""
        ...

    @abstractmethod
    async def fetch_open_orders(self, symbol: str) -> list[dict]:
        """List open orders for a symbol."""
        ...

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> dict:
        """Change the initial leverage for a symbol."""
        ...

    @abstractmethod
    async def fetch_dual_side_position(self) -> bool:
        """Return True if the account runs in dual-side (hedge) position mode."""
        ...

    @abstractmethod
    async def fetch_mark_price(self, symbol: str) -> Decimal:
        """Fetch the current mark price for a symbol."""
        ...

    @abstractmethod
    async def fetch_available_balance(self) -> Decimal:
        """Fetch margin available for new positions, in quote currency."""
        ...

    @abstractmethod
    async def fetch_position_risk(self, endpoint: str) -> list[dict]:
        """Fetch raw position-risk rows through one specific endpoint."""
        ...
