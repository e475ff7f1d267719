"""Configuration loading from JSON files and the environment."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest
from pydantic import ValidationError

from pricewatch.config.models import AppConfig, EnvSettings


def test_defaults() -> None:
    cfg = AppConfig()
    assert cfg.store.database == "pricewatch"
    assert cfg.price_source.symbol == "BTCUSDT"
    assert cfg.watch.interval_seconds == 10.0
    assert cfg.watch.threshold_fraction == 0.001
    assert cfg.watch.collection == "coin_prices"


def test_load_json_file(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_bytes(
        orjson.dumps(
            {
                "store": {"uri": "mongodb://db:27017", "database": "prices"},
                "price_source": {"symbol": "ETHUSDT", "max_retries": 3},
                "watch": {"interval_seconds": 2.5, "threshold_fraction": 0.02},
            }
        )
    )

    cfg = AppConfig.load(path)

    assert cfg.store.uri == "mongodb://db:27017"
    assert cfg.store.database == "prices"
    assert cfg.price_source.symbol == "ETHUSDT"
    assert cfg.price_source.max_retries == 3
    assert cfg.watch.interval_seconds == 2.5
    assert cfg.watch.threshold_fraction == 0.02
    # Unspecified fields keep their defaults
    assert cfg.store.connect_timeout_ms == 5000


def test_invalid_interval_rejected(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"watch": {"interval_seconds": 0}}))
    with pytest.raises(ValidationError):
        AppConfig.load(path)


def test_env_bare_deployment_names(monkeypatch) -> None:
    monkeypatch.setenv("MONGODB_URI", "mongodb://bare:27017")
    monkeypatch.setenv("MONGODB_DATABASE", "bare_db")
    monkeypatch.setenv("COIN_PAIR", "SOLUSDT")

    s = EnvSettings(_env_file=None)

    assert s.mongodb_uri == "mongodb://bare:27017"
    assert s.mongodb_database == "bare_db"
    assert s.coin_pair == "SOLUSDT"


def test_env_prefixed_names_take_precedence(monkeypatch) -> None:
    monkeypatch.setenv("MONGODB_URI", "mongodb://bare:27017")
    monkeypatch.setenv("PRICEWATCH_MONGODB_URI", "mongodb://prefixed:27017")
    monkeypatch.setenv("PRICEWATCH_PRICE_CHANGE_THRESHOLD", "0.05")
    monkeypatch.setenv("PRICEWATCH_FETCH_INTERVAL_SECONDS", "1.5")
    monkeypatch.setenv("PRICEWATCH_HTTP_TOKEN", "tok")

    s = EnvSettings(_env_file=None)

    assert s.mongodb_uri == "mongodb://prefixed:27017"
    assert s.price_change_threshold == 0.05
    assert s.fetch_interval_seconds == 1.5
    assert s.http_token == "tok"


def test_from_env_maps_settings(monkeypatch) -> None:
    monkeypatch.setenv("MONGODB_URI", "mongodb://env:27017")
    monkeypatch.setenv("COIN_PAIR", "ETHUSDT")
    monkeypatch.setenv("PRICEWATCH_PRICES_COLLECTION", "eth_prices")
    monkeypatch.setenv("PRICEWATCH_MAX_POOL_SIZE", "4")

    cfg = AppConfig.from_env(EnvSettings(_env_file=None))

    assert cfg.store.uri == "mongodb://env:27017"
    assert cfg.store.max_pool_size == 4
    assert cfg.price_source.symbol == "ETHUSDT"
    assert cfg.watch.collection == "eth_prices"


def test_negative_threshold_rejected(monkeypatch) -> None:
    monkeypatch.setenv("PRICEWATCH_PRICE_CHANGE_THRESHOLD", "-0.1")
    with pytest.raises(ValidationError):
        EnvSettings(_env_file=None)
