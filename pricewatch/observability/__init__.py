"""Observability utilities: logging setup.

This module configures standard logging and integrates `structlog` for
structured logs at the same level.
"""

from __future__ import annotations

import logging

import structlog

# Driver/client libraries that are noisy at INFO (heartbeats, per-request lines)
_QUIET_LOGGERS = (
    "pymongo",
    "pymongo.connection",
    "pymongo.serverSelection",
    "pymongo.topology",
    "httpx",
    "httpcore",
)


def setup_logging(level: str = "INFO") -> None:
    """Configure application logging.

    Parameters
    ----------
    level: str
        Logging level name (e.g., "DEBUG", "INFO"). Defaults to "INFO".

    Behavior
    --------
    - Initializes Python's logging with the requested level.
    - Raises driver/client loggers to WARNING unless DEBUG was requested.
    - Configures `structlog` with a filtering bound logger.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format=("%(asctime)s %(levelname)s %(name)s - %(message)s"),
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    if numeric_level > logging.DEBUG:
        for logger_name in _QUIET_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
    )
