"""Composition root for the price watcher.

:class:`PriceWatchApp` builds the shared connection, the price adapter, the
sample store, the session recorder and the polling fetcher from an
:class:`~pricewatch.config.models.AppConfig`. It is an async context manager:
the store connection and HTTP client are acquired on entry and released on
every exit path (normal return, error, cancellation).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from ..adapters import FetchOperation
from ..adapters.binance import BinancePriceAdapter
from ..adapters.mongo_store import MongoSampleStore
from ..config.models import AppConfig
from ..domain.models import SessionStatus, UnitResult
from ..errors import StorageError
from ..services.connection import SharedConnectionManager
from ..services.polling import FetcherOutcome, PollingFetcher
from ..services.session_recorder import SessionRecorder
from ..services.threshold import ThresholdStopPolicy

logger = logging.getLogger(__name__)


class CheckReport(BaseModel):
    """Result of a recorded connectivity check run."""

    session_id: str
    status: SessionStatus
    recorded: bool = Field(..., description="Whether the run reached the store")
    results: Dict[str, UnitResult] = Field(default_factory=dict)


class PriceWatchApp:
    """Owns every long-lived resource of one watcher process.

    Parameters
    ----------
    config: AppConfig
        Store, price source and watch settings.
    connection: Optional[SharedConnectionManager]
        Pre-built connection manager (tests); built from ``config.store``
        otherwise.
    fetch_operation: Optional[FetchOperation]
        Quote source (tests); a :class:`BinancePriceAdapter` otherwise.
    session_prefix: Optional[str]
        Label prepended to recorded session ids.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        connection: Optional[SharedConnectionManager] = None,
        fetch_operation: Optional[FetchOperation] = None,
        session_prefix: Optional[str] = None,
    ) -> None:
        self.config = config
        self.connection = connection or SharedConnectionManager(
            config.store.uri,
            config.store.database,
            connect_timeout_ms=config.store.connect_timeout_ms,
            max_pool_size=config.store.max_pool_size,
            min_pool_size=config.store.min_pool_size,
        )
        self.price_source: FetchOperation = fetch_operation or BinancePriceAdapter(
            config.price_source.symbol,
            config.price_source.url,
            config.price_source.timeout_seconds,
            max_retries=config.price_source.max_retries,
            backoff_initial_ms=config.price_source.backoff_initial_ms,
        )
        self.samples = MongoSampleStore(self.connection, config.watch.collection)
        self.recorder = SessionRecorder(self.connection, session_prefix)
        self.fetcher: Optional[PollingFetcher] = None

    async def __aenter__(self) -> "PriceWatchApp":
        try:
            await self.connection.connect()
        except BaseException:
            await self._close_price_source()
            raise
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        try:
            if self.fetcher is not None:
                self.fetcher.stop()
                await self.fetcher.wait()
        finally:
            await self._close_price_source()
            await self.connection.disconnect()

    def build_fetcher(self) -> PollingFetcher:
        """Create the fetcher wired to this app's source, store and policy."""
        return PollingFetcher(
            period=self.config.watch.interval_seconds,
            fetch_operation=self.price_source,
            storage_port=self.samples,
            stop_policy=ThresholdStopPolicy(self.config.watch.threshold_fraction),
        )

    async def start_watch(self) -> PollingFetcher:
        """Prepare the sample collection and start polling in the background."""
        try:
            await self.samples.ensure_indexes()
        except StorageError as exc:
            # Indexes only speed up readers; polling proceeds without them
            logger.warning("app.indexes.unavailable", extra={"error": str(exc)})
        self.fetcher = self.build_fetcher()
        await self.fetcher.start()
        logger.info(
            "app.watch.started",
            extra={
                "collection": self.samples.collection_name,
                "threshold_fraction": self.config.watch.threshold_fraction,
                "period_seconds": self.config.watch.interval_seconds,
            },
        )
        return self.fetcher

    async def watch(self) -> FetcherOutcome:
        """Poll until the fetcher stops; return how it ended."""
        fetcher = await self.start_watch()
        outcome = await fetcher.wait()
        logger.info("app.watch.finished", extra={"outcome": outcome.value})
        return outcome

    async def check(self) -> CheckReport:
        """Run the connectivity checks as one recorded session.

        Units: store ping, sample index setup, one price quote. A failing unit
        is recorded and the remaining units still run.
        """
        recorded = await self.recorder.prepare()
        units = {
            "store.ping": self._ping_store,
            "samples.indexes": self.samples.ensure_indexes,
            "price_api.quote": self.price_source,
        }
        session_id = await self.recorder.start_session(total_units=len(units))
        results: Dict[str, UnitResult] = {}
        for name, operation in units.items():
            results[name] = await self.recorder.execute_and_record(name, operation)
        tally = self.recorder.tally(session_id)
        status = await self.recorder.end_session(
            session_id, tally.succeeded, tally.failed, tally.skipped
        )
        return CheckReport(
            session_id=session_id, status=status, recorded=recorded, results=results
        )

    async def _ping_store(self) -> None:
        await self.connection.get_handle().command("ping")

    async def _close_price_source(self) -> None:
        aclose = getattr(self.price_source, "aclose", None)
        if callable(aclose):
            await aclose()
