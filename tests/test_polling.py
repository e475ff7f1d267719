"""Polling fetcher lifecycle, scheduling and stop behaviour."""

from __future__ import annotations

import asyncio
import logging

import pytest

from pricewatch.adapters.mongo_store import MongoSampleStore
from pricewatch.errors import FetcherStateError
from pricewatch.services.polling import FetcherOutcome, FetcherState, PollingFetcher
from pricewatch.services.threshold import ThresholdStopPolicy
from tests.fakes import MemoryStore, SequenceFetch, make_manager


def _fetcher(fetch, store, *, period=0.01, threshold=0.5) -> PollingFetcher:
    return PollingFetcher(
        period=period,
        fetch_operation=fetch,
        storage_port=store,
        stop_policy=ThresholdStopPolicy(threshold),
    )


@pytest.mark.asyncio
async def test_end_to_end_stops_after_threshold_sample() -> None:
    """Baseline 100, threshold 0.1%: stops on 100.2 with three stored samples."""
    manager = make_manager()
    async with manager:
        store = MongoSampleStore(manager, "coin_prices")
        fetch = SequenceFetch([100, 100.05, 100.2])
        fetcher = _fetcher(fetch, store, threshold=0.001)

        await fetcher.start()
        outcome = await asyncio.wait_for(fetcher.wait(), timeout=2)

        assert outcome is FetcherOutcome.THRESHOLD_REACHED
        assert fetcher.state is FetcherState.STOPPED
        assert fetch.calls == 3
        assert await store.count() == 3
        assert fetcher.baseline is not None and fetcher.baseline.value == 100
        # The fetcher does not own the shared connection
        assert manager.is_connected


@pytest.mark.asyncio
async def test_first_cycle_runs_inside_start() -> None:
    fetch = SequenceFetch([100])
    store = MemoryStore()
    fetcher = _fetcher(fetch, store, period=60)

    await fetcher.start()
    try:
        assert fetch.calls == 1
        assert len(store.samples) == 1
        assert fetcher.baseline == store.samples[0]
        assert fetcher.state is FetcherState.RUNNING
    finally:
        fetcher.stop()
        assert await fetcher.wait() is FetcherOutcome.STOPPED


@pytest.mark.asyncio
async def test_failed_fetch_does_not_stop_loop() -> None:
    """Cycle 2 of 5 fails; cycles 1, 3, 4 and 5 still persist."""
    fetch = SequenceFetch([100], fail_on={2}, notify_at=5)
    store = MemoryStore()
    fetcher = _fetcher(fetch, store)

    await fetcher.start()
    await asyncio.wait_for(fetch.reached.wait(), timeout=2)
    fetcher.stop()
    await fetcher.wait()

    assert fetch.calls == 5
    assert len(store.samples) == 4
    status = fetcher.status()
    assert status.fetch_failures == 1
    assert status.samples_persisted == 4


@pytest.mark.asyncio
async def test_overrunning_cycles_never_overlap() -> None:
    """period=10ms with a 50ms fetch: cycle starts are at least 50ms apart."""
    fetch = SequenceFetch([100], delay=0.05, notify_at=3)
    store = MemoryStore()
    fetcher = _fetcher(fetch, store, period=0.01)

    await fetcher.start()
    await asyncio.wait_for(fetch.reached.wait(), timeout=2)
    fetcher.stop()
    await fetcher.wait()

    gaps = [b - a for a, b in zip(fetch.started, fetch.started[1:])]
    assert len(gaps) >= 2
    # Small allowance for event loop timer granularity
    assert all(gap >= 0.049 for gap in gaps)
    assert fetcher.status().skipped_ticks > 0


@pytest.mark.asyncio
async def test_baseline_is_first_successful_sample() -> None:
    fetch = SequenceFetch([100, 100, 200], fail_on={1})
    store = MemoryStore()
    fetcher = _fetcher(fetch, store, threshold=0.5)

    await fetcher.start()
    assert fetcher.baseline is None
    outcome = await asyncio.wait_for(fetcher.wait(), timeout=2)

    assert outcome is FetcherOutcome.THRESHOLD_REACHED
    assert fetcher.baseline is not None
    assert fetcher.baseline.value == 100
    assert [s.value for s in store.samples] == [100, 200]


@pytest.mark.asyncio
async def test_storage_failures_are_tolerated() -> None:
    fetch = SequenceFetch([100, 100, 300])
    store = MemoryStore(fail=True)
    fetcher = _fetcher(fetch, store, threshold=0.5)

    await fetcher.start()
    outcome = await asyncio.wait_for(fetcher.wait(), timeout=2)

    assert outcome is FetcherOutcome.THRESHOLD_REACHED
    assert store.attempts == 3
    assert fetcher.status().storage_failures == 3


@pytest.mark.asyncio
async def test_zero_baseline_is_fatal() -> None:
    fetch = SequenceFetch([0, 1])
    store = MemoryStore()
    fetcher = _fetcher(fetch, store)

    await fetcher.start()
    outcome = await asyncio.wait_for(fetcher.wait(), timeout=2)

    assert outcome is FetcherOutcome.FAILED
    assert fetch.calls == 2


@pytest.mark.asyncio
async def test_unexpected_fetch_error_is_logged_and_loop_continues(caplog) -> None:
    calls = {"n": 0}
    fetch = SequenceFetch([100, 100, 300])

    async def flaky():
        calls["n"] += 1
        if calls["n"] == 2:
            raise RuntimeError("decoder exploded")
        return await fetch()

    store = MemoryStore()
    fetcher = _fetcher(flaky, store, threshold=0.5)

    with caplog.at_level(logging.ERROR):
        await fetcher.start()
        outcome = await asyncio.wait_for(fetcher.wait(), timeout=2)

    assert outcome is FetcherOutcome.THRESHOLD_REACHED
    assert any(
        r.getMessage() == "fetcher.cycle.unexpected_error" for r in caplog.records
    )


@pytest.mark.asyncio
async def test_start_twice_fails_and_stopped_is_terminal() -> None:
    fetcher = _fetcher(SequenceFetch([100]), MemoryStore(), period=60)

    await fetcher.start()
    with pytest.raises(FetcherStateError):
        await fetcher.start()

    fetcher.stop()
    fetcher.stop()  # idempotent
    assert await fetcher.wait() is FetcherOutcome.STOPPED
    with pytest.raises(FetcherStateError):
        await fetcher.start()


@pytest.mark.asyncio
async def test_stop_from_inside_a_cycle_lets_it_finish() -> None:
    store = MemoryStore()
    holder = {}

    async def stopping_fetch():
        if holder["fetcher"].status().cycles >= 2:
            holder["fetcher"].stop()
        return await SequenceFetch([100])()

    fetcher = _fetcher(stopping_fetch, store)
    holder["fetcher"] = fetcher

    await fetcher.start()
    assert await asyncio.wait_for(fetcher.wait(), timeout=2) is FetcherOutcome.STOPPED
    # The cycle that called stop() still persisted its sample
    assert len(store.samples) == 2


@pytest.mark.asyncio
async def test_wait_before_start_raises() -> None:
    fetcher = _fetcher(SequenceFetch([100]), MemoryStore())
    with pytest.raises(FetcherStateError):
        await fetcher.wait()


def test_period_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _fetcher(SequenceFetch([100]), MemoryStore(), period=0)


@pytest.mark.asyncio
async def test_threshold_logged(caplog) -> None:
    caplog.set_level(logging.INFO)
    fetcher = _fetcher(SequenceFetch([100, 300]), MemoryStore())

    await fetcher.start()
    await asyncio.wait_for(fetcher.wait(), timeout=2)

    rec = next(
        r for r in caplog.records if r.getMessage() == "fetcher.threshold_reached"
    )
    assert getattr(rec, "baseline") == 100
    assert getattr(rec, "value") == 300
