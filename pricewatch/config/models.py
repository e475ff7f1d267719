"""Config models and loader.

This module defines Pydantic models for file- and environment-based
configuration. Environment settings accept both the ``PRICEWATCH_`` prefixed
names and the bare deployment names (``MONGODB_URI``, ``MONGODB_DATABASE``,
``COIN_PAIR``). JSON config files are parsed with `orjson`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import orjson
from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PRICE_API_URL = "https://api.binance.com/api/v3/ticker/price"


class StoreConfig(BaseModel):
    """Connection settings for the backing store.

    Attributes
    ----------
    uri: str
        MongoDB connection string; may embed credentials.
    database: str
        Database name used for samples and run records.
    connect_timeout_ms: int
        Bound for server selection, socket connect and the liveness ping.
    """

    uri: str = Field("mongodb://localhost:27017", description="Connection URI")
    database: str = Field("pricewatch", description="Database name")
    connect_timeout_ms: int = Field(5000, ge=1)
    max_pool_size: int = Field(10, ge=1)
    min_pool_size: int = Field(2, ge=0)


class PriceSourceConfig(BaseModel):
    """Settings for the price API fetch operation."""

    symbol: str = Field("BTCUSDT", description="Coin pair to watch")
    url: str = Field(DEFAULT_PRICE_API_URL, description="Ticker price endpoint")
    timeout_seconds: float = Field(5.0, gt=0)
    max_retries: int = Field(1, ge=0, description="Number of retry attempts")
    backoff_initial_ms: int = Field(
        200, ge=0, description="Initial backoff in milliseconds"
    )


class WatchConfig(BaseModel):
    """Polling cadence, stop threshold and target collection."""

    interval_seconds: float = Field(10.0, gt=0)
    threshold_fraction: float = Field(
        0.001, ge=0, description="Stop once drift from baseline exceeds this"
    )
    collection: str = Field("coin_prices")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    price_source: PriceSourceConfig = Field(default_factory=PriceSourceConfig)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    @staticmethod
    def load(path: Path) -> "AppConfig":
        """Load application config from a JSON file."""
        return AppConfig.model_validate(orjson.loads(path.read_bytes()))

    @staticmethod
    def from_env(settings: Optional["EnvSettings"] = None) -> "AppConfig":
        """Build the configuration from environment settings."""
        s = settings or EnvSettings()
        return AppConfig(
            store=StoreConfig(
                uri=s.mongodb_uri,
                database=s.mongodb_database,
                connect_timeout_ms=s.connect_timeout_ms,
                max_pool_size=s.max_pool_size,
                min_pool_size=s.min_pool_size,
            ),
            price_source=PriceSourceConfig(
                symbol=s.coin_pair,
                url=s.price_api_url,
                timeout_seconds=s.fetch_timeout_seconds,
            ),
            watch=WatchConfig(
                interval_seconds=s.fetch_interval_seconds,
                threshold_fraction=s.price_change_threshold,
                collection=s.prices_collection,
            ),
        )


class EnvSettings(BaseSettings):
    """Environment-driven settings and .env support.

    Attributes
    ----------
    log_level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".
    mongodb_uri: str
        Store connection string (``PRICEWATCH_MONGODB_URI`` or ``MONGODB_URI``).
    mongodb_database: str
        Store database name (``PRICEWATCH_MONGODB_DATABASE`` or
        ``MONGODB_DATABASE``).
    coin_pair: str
        Symbol to watch (``PRICEWATCH_COIN_PAIR`` or ``COIN_PAIR``).
    price_change_threshold: float
        Fractional drift from the first price that stops the watcher.
    http_token: Optional[str]
        Bearer token protecting ``/status`` in HTTP mode.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="PRICEWATCH_", extra="ignore"
    )

    log_level: str = Field("INFO")
    mongodb_uri: str = Field(
        "mongodb://localhost:27017",
        validation_alias=AliasChoices("PRICEWATCH_MONGODB_URI", "MONGODB_URI"),
    )
    mongodb_database: str = Field(
        "pricewatch",
        validation_alias=AliasChoices(
            "PRICEWATCH_MONGODB_DATABASE", "MONGODB_DATABASE"
        ),
    )
    coin_pair: str = Field(
        "BTCUSDT",
        validation_alias=AliasChoices("PRICEWATCH_COIN_PAIR", "COIN_PAIR"),
    )
    price_api_url: str = Field(DEFAULT_PRICE_API_URL)
    fetch_interval_seconds: float = Field(10.0, gt=0)
    fetch_timeout_seconds: float = Field(5.0, gt=0)
    price_change_threshold: float = Field(0.001, ge=0)
    prices_collection: str = Field("coin_prices")
    connect_timeout_ms: int = Field(5000, ge=1)
    max_pool_size: int = Field(10, ge=1)
    min_pool_size: int = Field(2, ge=0)
    http_token: Optional[str] = Field(
        None, description="Bearer token required by /status when set"
    )
