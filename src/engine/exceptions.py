"""Custom exceptions for the order execution engine.

All exceptions live here to avoid circular imports between the exchange,
execution and orchestration layers. Per-intent errors are caught by the
orchestrator and recorded on that intent's outcome; only
ConfigurationError is allowed to halt a batch.
"""


class EngineError(Exception):
    """Base exception for all engine errors."""

    @property
    def kind(self) -> str:
        """Short error category recorded on intent outcomes."""
        return type(self).__name__


class ConfigurationError(EngineError):
    """Raised when the engine cannot run at all (e.g., missing credentials)."""


class ValidationError(EngineError):
    """Raised when an intent is malformed; rejected before any network call."""


class UnknownInstrument(ValidationError):
    """Raised when a symbol has no configured quantization rule."""

    @property
    def kind(self) -> str:
        return "ValidationError"


class QuantizationFloor(EngineError):
    """Raised when an amount cannot be made tradable within the safety caps."""


class UnachievableMinimum(QuantizationFloor):
    """Raised when one extra unit still does not reach the minimum notional."""


class MarginInsufficient(EngineError):
    """Raised when the batch margin ledger cannot cover an intent."""


class PositionNotFound(EngineError):
    """Raised when a close is requested against no matching open position."""


class ExchangeFailure(EngineError):
    """Base for failures reported by (or while talking to) the exchange."""

    def __init__(
        self,
        message: str,
        code: int | None = None,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.http_status = http_status


class ExchangeRejected(ExchangeFailure):
    """Business rejection (4xx): position side mismatch, precision, etc."""


class ExchangeTransient(ExchangeFailure):
    """Transport-level failure (5xx, timeout, network); safe to retry."""


class PositionQueryError(ExchangeTransient):
    """Raised when every position endpoint failed; carries each failure."""

    def __init__(self, failures: list[tuple[str, Exception]]) -> None:
        self.failures = failures
        detail = "; ".join(f"{endpoint}: {exc}" for endpoint, exc in failures)
        super().__init__(
            f"Failed to fetch positions from all {len(failures)} endpoints: {detail}"
        )
