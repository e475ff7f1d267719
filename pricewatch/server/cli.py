"""Command-line interface for the price watcher.

Modes
-----
- ``watch`` (default): poll the price API until the price drifts past the
  threshold, then stop, disconnect and exit 0.
- ``check``: run the connectivity checks as one recorded session; exit 1 if
  any check failed.
- ``--http``: serve the watcher behind FastAPI (``/health``, ``/ready``,
  ``/status``) with uvicorn.

Exit codes: 0 on threshold or interrupt, 1 when the store cannot be reached
or a run fails.

Usage
-----
    pricewatch --config config.json
    pricewatch check --session-prefix nightly
    python -m pricewatch.server.cli --http --port 8080
"""

from __future__ import annotations

import argparse
import asyncio
import importlib
import logging
import os
from pathlib import Path
from typing import Optional

from ..config.models import AppConfig, EnvSettings
from ..errors import StoreConnectionError
from ..observability import setup_logging
from ..services.polling import FetcherOutcome
from .app import PriceWatchApp
from .http import create_app

logger = logging.getLogger(__name__)


def _load_config(config_path: Optional[str]) -> AppConfig:
    """Load config from a JSON file if given, else from the environment."""
    if config_path:
        return AppConfig.load(Path(config_path))
    return AppConfig.from_env(EnvSettings())


async def _watch(config: AppConfig) -> int:
    """Run the watcher to completion and map its outcome to an exit code."""
    try:
        async with PriceWatchApp(config) as app:
            outcome = await app.watch()
    except StoreConnectionError as exc:
        logger.error("cli.store_unavailable", extra={"error": str(exc)})
        return 1
    if outcome is FetcherOutcome.THRESHOLD_REACHED:
        logger.info(
            "cli.threshold_reached",
            extra={"threshold_fraction": config.watch.threshold_fraction},
        )
        return 0
    return 1 if outcome is FetcherOutcome.FAILED else 0


async def _check(config: AppConfig, session_prefix: Optional[str]) -> int:
    """Run the recorded connectivity checks."""
    try:
        async with PriceWatchApp(config, session_prefix=session_prefix) as app:
            report = await app.check()
    except StoreConnectionError as exc:
        logger.error("cli.store_unavailable", extra={"error": str(exc)})
        return 1
    for name, result in report.results.items():
        logger.info(
            "cli.check.unit",
            extra={
                "unit": name,
                "succeeded": result.succeeded,
                "duration_ms": result.duration_ms,
                "error": result.error,
            },
        )
    logger.info(
        "cli.check.done",
        extra={"session_id": report.session_id, "status": report.status.value},
    )
    return 0 if all(r.succeeded for r in report.results.values()) else 1


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entrypoint; exits with the run's exit code."""
    parser = argparse.ArgumentParser(description="pricewatch CLI")
    parser.add_argument(
        "command",
        nargs="?",
        choices=["watch", "check"],
        default="watch",
        help="watch (default) or check",
    )
    parser.add_argument("--config", help="Path to JSON app config")
    parser.add_argument(
        "--session-prefix",
        dest="session_prefix",
        help="Label prepended to recorded session ids (check mode)",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=[
            "CRITICAL",
            "ERROR",
            "WARNING",
            "INFO",
            "DEBUG",
        ],
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    parser.add_argument(
        "--http",
        action="store_true",
        help="Serve the watcher over HTTP (requires uvicorn)",
    )
    parser.add_argument(
        "--host", default="127.0.0.1", help="HTTP bind host (default 127.0.0.1)"
    )
    parser.add_argument("--port", type=int, default=8080, help="HTTP port")
    args = parser.parse_args(argv)

    # Determine effective log level
    env_level = os.environ.get("PRICEWATCH_LOG_LEVEL", "INFO").upper()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env_level)
    # Apply early so subsequent imports use configured level
    setup_logging(effective_level)

    config = _load_config(args.config)

    if args.http:
        # Lazy import uvicorn only for HTTP mode
        uvicorn = importlib.import_module("uvicorn")
        uvicorn.run(
            create_app(config),
            host=args.host,
            port=args.port,
            log_level=effective_level.lower(),
        )
        return

    try:
        if args.command == "check":
            code = asyncio.run(_check(config, args.session_prefix))
        else:
            code = asyncio.run(_watch(config))
    except KeyboardInterrupt:
        # asyncio.run has already unwound the app scope (stop + disconnect)
        logger.info("cli.interrupted")
        code = 0
    raise SystemExit(code)


if __name__ == "__main__":
    main()
