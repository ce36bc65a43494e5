"""Configuration module for the WalletChat command engine."""

import os
from decimal import Decimal
from typing import Dict, List, Union, cast
from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

SATS_PER_BTC = Decimal("100000000")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application Configuration
    app_name: str = Field(default="WalletChat Bitcoin Assistant", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Bitcoin network the wallet operates on (mainnet / testnet)
    bitcoin_network: str = Field(default="mainnet", alias="BITCOIN_NETWORK")
    default_fiat_currency: str = Field(default="USD", alias="DEFAULT_FIAT_CURRENCY")

    # Price / fee collaborators
    price_api_url: str = Field(
        default="https://api.coinbase.com/v2/prices/BTC-{currency}/spot",
        alias="PRICE_API_URL"
    )
    fee_api_url: str = Field(
        default="https://mempool.space/api/v1/fees/recommended",
        alias="FEE_API_URL"
    )
    http_timeout: float = Field(default=10.0, alias="HTTP_TIMEOUT")
    http_max_retries: int = Field(default=2, alias="HTTP_MAX_RETRIES")
    price_cache_seconds: int = Field(default=60, alias="PRICE_CACHE_SECONDS")
    fee_cache_seconds: int = Field(default=60, alias="FEE_CACHE_SECONDS")

    # Send flow
    typical_tx_vsize: int = Field(default=140, alias="TYPICAL_TX_VSIZE")
    fallback_fee_rates: Dict[str, int] = Field(
        default={"slow": 8, "medium": 20, "fast": 40},
        alias="FALLBACK_FEE_RATES"
    )
    min_confidence: float = Field(default=0.5, alias="MIN_CONFIDENCE")

    # MongoDB Configuration (conversation history)
    mongodb_url: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URL")
    mongodb_database: str = Field(default="walletchat", alias="MONGODB_DATABASE")
    history_cache_limit: int = Field(default=100, alias="HISTORY_CACHE_LIMIT")

    # Logging
    log_file: str = Field(default="logs/app.log", alias="LOG_FILE")
    log_rotation: str = Field(default="10 MB", alias="LOG_ROTATION")
    log_retention: str = Field(default="30 days", alias="LOG_RETENTION")

    # Fiat display symbols
    FIAT_SYMBOLS: dict = {
        "USD": "$",
        "EUR": "€",
        "GBP": "£",
        "JPY": "¥",
        "CAD": "C$",
        "AUD": "A$",
        "INR": "₹",
        "NGN": "₦",
    }

    SUPPORTED_NETWORKS: List[str] = ["mainnet", "testnet"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
        "populate_by_name": True,
    }

    @property
    def is_testnet(self) -> bool:
        return self.bitcoin_network.lower() == "testnet"

    def get_fiat_symbol(self, currency: str) -> str:
        """Get display symbol for a fiat currency, falling back to the code."""
        code = currency.upper()
        return cast(Dict[str, str], self.FIAT_SYMBOLS).get(code, f"{code} ")

    def format_btc(self, amount: Union[Decimal, int, float]) -> str:
        """Format a BTC amount for display, trimming trailing zeros."""
        value = Decimal(str(amount)).quantize(Decimal("0.00000001"))
        text = format(value, "f").rstrip("0").rstrip(".")
        return f"{text or '0'} BTC"

    def format_fiat(self, amount: Union[Decimal, int, float], currency: str = "") -> str:
        """Format a fiat amount for display."""
        if not currency:
            currency = self.default_fiat_currency
        symbol = self.get_fiat_symbol(currency)
        return f"{symbol}{Decimal(str(amount)):,.2f}"

    def to_sats(self, amount_btc: Union[Decimal, int, float]) -> int:
        """Convert a BTC amount to satoshis."""
        return int(Decimal(str(amount_btc)) * SATS_PER_BTC)


# Create global settings instance
try:
    settings = Settings()
except Exception as e:
    print(f"Warning: Could not load all settings from environment: {e}")
    print("Using default settings. Please check your .env file.")
    settings = Settings.model_construct()

# Ensure logs directory exists
try:
    log_dir = os.path.dirname(settings.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
except OSError as e:
    print(f"Warning: Could not create logs directory: {e}")
