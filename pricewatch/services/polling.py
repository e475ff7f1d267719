"""Interval polling fetcher with a stop policy.

The fetcher runs one fetch-and-store cycle immediately on ``start()``, then
one per ``period`` on a background task until the stop policy fires or
``stop()`` is called. Cycles never overlap: when a cycle overruns the period
the missed ticks are skipped, not queued. A failed fetch or write is logged
and the schedule carries on; only the stop policy (or a fatal policy error)
ends the run. The fetcher reports how it ended through :meth:`wait`; ending
the process is left to the owner.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel

from ..adapters import FetchOperation, StoragePort
from ..domain.models import Sample, utcnow
from ..errors import BaselineZeroError, FetcherStateError, FetchError, StorageError

logger = logging.getLogger(__name__)

StopPolicy = Callable[[Sample, Sample], bool]


class FetcherState(Enum):
    """Fetcher lifecycle states. ``STOPPED`` is terminal."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class FetcherOutcome(Enum):
    """How a fetcher run ended."""

    THRESHOLD_REACHED = "threshold_reached"
    STOPPED = "stopped"  # Explicit stop()
    FAILED = "failed"  # Fatal error (e.g., zero baseline)


class FetcherStatus(BaseModel):
    """Point-in-time view of a fetcher, as served by ``/status``."""

    state: str
    period_seconds: float
    subject: Optional[str] = None
    baseline: Optional[Sample] = None
    last_sample: Optional[Sample] = None
    cycles: int = 0
    fetch_failures: int = 0
    storage_failures: int = 0
    samples_persisted: int = 0
    skipped_ticks: int = 0
    started_at: Optional[datetime] = None
    outcome: Optional[str] = None


class PollingFetcher:  # pylint: disable=too-many-instance-attributes
    """Fetch, persist and evaluate on a fixed period.

    Parameters
    ----------
    period: float
        Seconds between cycle starts.
    fetch_operation: FetchOperation
        Async callable producing a quote (or a ready-made sample).
    storage_port: StoragePort
        Destination for every successful sample.
    stop_policy: StopPolicy
        ``(baseline, current) -> bool``; True ends the run.
    """

    def __init__(
        self,
        period: float,
        fetch_operation: FetchOperation,
        storage_port: StoragePort,
        stop_policy: StopPolicy,
    ) -> None:
        if period <= 0:
            raise ValueError("period must be > 0")
        self._period = float(period)
        self._fetch = fetch_operation
        self._storage = storage_port
        self._stop_policy = stop_policy
        self._state = FetcherState.IDLE
        self._outcome: Optional[FetcherOutcome] = None
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task[None]] = None
        self._baseline: Optional[Sample] = None
        self._last_sample: Optional[Sample] = None
        self._started_at: Optional[datetime] = None
        self._cycles = 0
        self._fetch_failures = 0
        self._storage_failures = 0
        self._persisted = 0
        self._skipped_ticks = 0

    @property
    def state(self) -> FetcherState:
        return self._state

    @property
    def outcome(self) -> Optional[FetcherOutcome]:
        return self._outcome

    @property
    def baseline(self) -> Optional[Sample]:
        return self._baseline

    @property
    def period(self) -> float:
        return self._period

    async def start(self) -> None:
        """Run the first cycle now, then schedule one per period.

        Raises
        ------
        FetcherStateError
            Unless the fetcher is idle (running or already stopped).
        """
        if self._state is not FetcherState.IDLE:
            raise FetcherStateError(
                f"Cannot start fetcher in state '{self._state.value}'"
            )
        self._state = FetcherState.RUNNING
        self._started_at = utcnow()
        logger.info("fetcher.start", extra={"period_seconds": self._period})
        await self._safe_cycle()
        if self._state is FetcherState.RUNNING:
            self._task = asyncio.create_task(self._run(), name="polling-fetcher")

    def stop(self) -> None:
        """Stop scheduling cycles (idempotent).

        An in-flight cycle completes; no further cycle starts. The shared
        store connection is left open.
        """
        self._finish(FetcherOutcome.STOPPED)

    async def wait(self) -> FetcherOutcome:
        """Wait for the run to end and return its outcome.

        Raises
        ------
        FetcherStateError
            If the fetcher was never started nor stopped.
        """
        if self._task is not None:
            await self._task
        if self._outcome is None:
            raise FetcherStateError("Fetcher has not been started")
        return self._outcome

    def status(self) -> FetcherStatus:
        """Snapshot of counters, baseline and last sample."""
        latest = self._last_sample or self._baseline
        return FetcherStatus(
            state=self._state.value,
            period_seconds=self._period,
            subject=latest.subject if latest is not None else None,
            baseline=self._baseline,
            last_sample=self._last_sample,
            cycles=self._cycles,
            fetch_failures=self._fetch_failures,
            storage_failures=self._storage_failures,
            samples_persisted=self._persisted,
            skipped_ticks=self._skipped_ticks,
            started_at=self._started_at,
            outcome=self._outcome.value if self._outcome else None,
        )

    def _finish(self, outcome: FetcherOutcome) -> None:
        if self._state is FetcherState.STOPPED:
            return
        self._state = FetcherState.STOPPED
        self._outcome = outcome
        self._stop_event.set()
        logger.info(
            "fetcher.stopped",
            extra={
                "outcome": outcome.value,
                "cycles": self._cycles,
                "samples_persisted": self._persisted,
            },
        )

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self._period
        while not self._stop_event.is_set():
            delay = next_tick - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass
                continue
            await self._safe_cycle()
            now = loop.time()
            next_tick += self._period
            if next_tick <= now:
                missed = int((now - next_tick) // self._period) + 1
                next_tick += missed * self._period
                self._skipped_ticks += missed
                logger.debug(
                    "fetcher.tick.skipped",
                    extra={"skipped": missed, "period_seconds": self._period},
                )

    async def _safe_cycle(self) -> None:
        try:
            await self._cycle()
        except Exception:  # pylint: disable=broad-except
            # A single bad cycle must not kill the schedule
            logger.exception("fetcher.cycle.unexpected_error")

    async def _cycle(self) -> None:
        self._cycles += 1
        try:
            result = await self._fetch()
        except FetchError as exc:
            self._fetch_failures += 1
            logger.warning(
                "fetcher.cycle.fetch_failed",
                extra={"cycle": self._cycles, "error": str(exc)},
            )
            return
        sample = result if isinstance(result, Sample) else Sample.from_quote(result)
        self._last_sample = sample

        try:
            await self._storage.persist(sample)
            self._persisted += 1
        except StorageError as exc:
            self._storage_failures += 1
            logger.warning(
                "fetcher.cycle.storage_failed",
                extra={"cycle": self._cycles, "error": str(exc)},
            )

        if self._baseline is None:
            self._baseline = sample
            logger.info(
                "fetcher.baseline.set",
                extra={"subject": sample.subject, "value": sample.value},
            )
            return

        try:
            should_stop = self._stop_policy(self._baseline, sample)
        except BaselineZeroError as exc:
            logger.error(
                "fetcher.policy.baseline_zero",
                extra={"subject": sample.subject, "error": str(exc)},
            )
            self._finish(FetcherOutcome.FAILED)
            return

        logger.debug(
            "fetcher.cycle.ok",
            extra={
                "cycle": self._cycles,
                "subject": sample.subject,
                "value": sample.value,
                "baseline": self._baseline.value,
            },
        )
        if should_stop:
            logger.info(
                "fetcher.threshold_reached",
                extra={
                    "subject": sample.subject,
                    "baseline": self._baseline.value,
                    "value": sample.value,
                    "policy": repr(self._stop_policy),
                },
            )
            self._finish(FetcherOutcome.THRESHOLD_REACHED)
