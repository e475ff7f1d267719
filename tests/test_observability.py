"""Logging setup."""

from __future__ import annotations

import logging

import pytest
import structlog

from pricewatch.observability import setup_logging


@pytest.fixture
def restore_logging():
    names = ("pymongo", "httpx")
    levels = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in levels.items():
        logging.getLogger(name).setLevel(level)
    structlog.reset_defaults()


def test_setup_logging_quiets_drivers_and_configures_structlog(
    restore_logging,
) -> None:
    structlog.reset_defaults()

    setup_logging("INFO")

    assert logging.getLogger("pymongo").level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING
    assert structlog.is_configured()


def test_setup_logging_debug_keeps_driver_loggers(restore_logging) -> None:
    logging.getLogger("pymongo").setLevel(logging.NOTSET)

    setup_logging("DEBUG")

    assert logging.getLogger("pymongo").level == logging.NOTSET
    assert structlog.is_configured()
