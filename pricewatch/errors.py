"""Exception taxonomy shared by the connection, fetcher and recorder layers."""

from __future__ import annotations


class PriceWatchError(Exception):
    """Base class for all pricewatch errors."""


class StoreConnectionError(PriceWatchError):
    """Connecting to (or pinging) the backing store failed.

    Fatal to that connect attempt only; callers may retry.
    """


class NotConnectedError(PriceWatchError):
    """The store handle was requested before a successful ``connect()``."""


class FetchError(PriceWatchError):
    """A fetch operation failed transiently (network, status, bad payload)."""


class StorageError(PriceWatchError):
    """Persisting a sample or record to the backing store failed."""


class BaselineZeroError(PriceWatchError, ZeroDivisionError):
    """Drift is undefined because the baseline value is exactly zero."""


class FetcherStateError(PriceWatchError):
    """A fetcher lifecycle method was called in the wrong state."""
