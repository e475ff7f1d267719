"""Capabilities consumed by the polling fetcher.

A fetch operation produces a :class:`~pricewatch.domain.models.Quote`; a
storage port persists a :class:`~pricewatch.domain.models.Sample`. Concrete
implementations live in :mod:`.binance` and :mod:`.mongo_store`; tests supply
their own.
"""

from __future__ import annotations

from typing import Protocol

from ..domain.models import Quote, Sample


class FetchOperation(Protocol):
    """Async callable returning one observation."""

    async def __call__(self) -> Quote:
        """Fetch a quote.

        Raises
        ------
        FetchError
            On transient failure (network, upstream status, bad payload).
        """
        raise NotImplementedError


class StoragePort(Protocol):
    """Sink for captured samples; requires a live store connection."""

    async def persist(self, sample: Sample) -> None:
        """Append ``sample`` to storage.

        Raises
        ------
        StorageError
            If the write fails or the store is not connected.
        """
        raise NotImplementedError
