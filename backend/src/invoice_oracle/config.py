"""
Application configuration loaded from environment variables.

All configuration is validated at startup to fail fast on misconfiguration.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from invoice_oracle.services.xrpl import NETWORK_URLS, XRPLNetwork


DEFAULT_MARKET_DATA_URL = (
    "https://api.coingecko.com/api/v3/simple/price"
    "?ids=ethereum&vs_currencies=usd&include_24hr_change=true&include_market_cap=true"
)


class Settings(BaseSettings):
    """
    Application settings with validation.

    All settings are loaded from environment variables with the same name.
    Use .env file for local development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Ledger
    ledger_backend: Literal["xrpl", "memory"] = Field(
        default="memory",
        description="Ledger collaborator: XRP Ledger verifier account or in-process ledger"
    )
    xrpl_network: Literal["testnet", "mainnet", "devnet"] = Field(
        default="testnet",
        description="XRPL network to connect to"
    )
    xrpl_wallet_seed: str | None = Field(
        default=None,
        description="Wallet seed for signing verification transactions (optional for read-only)"
    )
    verifier_address: str | None = Field(
        default=None,
        description="XRPL account that receives verification requests and fulfillments"
    )
    trusted_senders: list[str] = Field(
        default_factory=list,
        description="Oracle and owner accounts allowed to fulfill, fail or register invoices (JSON list)"
    )
    event_poll_interval: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between ledger event polls"
    )

    # Market data
    market_data_url: str = Field(
        default=DEFAULT_MARKET_DATA_URL,
        description="Price feed endpoint returning {asset: {usd, usd_24h_change, usd_market_cap}}"
    )
    market_asset: str = Field(
        default="ethereum",
        description="Key of the asset in the price feed response"
    )
    market_timeout_seconds: float = Field(
        default=9.0,
        gt=0,
        le=60,
        description="Hard timeout for the market-data request"
    )

    # Server
    debug: bool = Field(
        default=False,
        description="Enable debug mode with detailed error messages"
    )

    @property
    def xrpl_url(self) -> str:
        """Return the JSON-RPC URL for the configured XRPL network."""
        return NETWORK_URLS[XRPLNetwork(self.xrpl_network)]


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once at startup and cached for subsequent calls.
    This ensures consistent configuration across the application lifecycle.
    """
    return Settings()
