"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from engine.exceptions import ConfigurationError

LIVE_FUTURES_URL = "https://fapi.binance.com"
TESTNET_FUTURES_URL = "https://testnet.binancefuture.com"


class ExchangeSettings(BaseSettings):
    """Binance USD-M futures connection settings."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    testnet: bool = True  # dry-run by default, live trading is opt-in
    base_urls: list[str] = []  # ordered alternates; empty = default host
    recv_window: int = 60000  # ms
    timeout_seconds: float = 30.0

    def resolved_base_urls(self) -> list[str]:
        """Return the ordered list of hosts to talk to, defaulting per network."""
        urls = [url.strip().rstrip("/") for url in self.base_urls if url.strip()]
        if urls:
            return urls
        return [TESTNET_FUTURES_URL if self.testnet else LIVE_FUTURES_URL]


class ExecutionSettings(BaseSettings):
    """Order execution, escalation caps, retry budgets and exit defaults."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_")

    default_leverage: int = 10
    max_leverage: int = 30
    max_position_multiplier: int = 20

    order_max_attempts: int = 3
    open_retry_base_delay: float = 3.0  # seconds, multiplied by attempt number
    close_retry_base_delay: float = 2.0

    order_timeout_seconds: float = 20.0
    mode_query_timeout_seconds: float = 20.0
    position_query_timeout_seconds: float = 30.0
    price_timeout_seconds: float = 20.0

    auto_attach_exits: bool = True
    default_stop_loss_percent: Decimal = Decimal("3")
    default_take_profit_percent: Decimal = Decimal("10")
    exit_settle_delay: float = 8.0  # let a fresh fill show up in position risk
    exit_max_attempts: int = 3
    exit_retry_delays: list[float] = [3.0, 5.0]


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    execution: ExecutionSettings = ExecutionSettings()


def require_credentials(settings: ExchangeSettings) -> None:
    """Fail fast when signed endpoints cannot possibly work.

    Raises:
        ConfigurationError: If the API key or secret is empty.
    """
    network = "TESTNET" if settings.testnet else "LIVE"
    missing = [
        name
        for name, value in (
            ("BINANCE_API_KEY", settings.api_key),
            ("BINANCE_API_SECRET", settings.api_secret),
        )
        if not value.get_secret_value()
    ]
    if missing:
        raise ConfigurationError(
            f"{' and '.join(missing)} not configured for {network} trading"
        )
