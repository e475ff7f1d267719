"""MongoDB sample store.

Storage port for the polling fetcher. Samples are appended to one collection
of the shared database; the handle is looked up per write so the store
never outlives or duplicates the shared connection.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from ..domain.models import Sample
from ..errors import NotConnectedError, StorageError
from ..services.connection import SharedConnectionManager

logger = logging.getLogger(__name__)


def sample_document(sample: Sample) -> Dict[str, Any]:
    """Map a sample to its stored document shape."""
    return {
        "subject": sample.subject,
        "value": sample.value,
        "observed_at": sample.observed_at,
        "captured_at": sample.captured_at,
    }


class MongoSampleStore:
    """Append-only sample collection on the shared connection.

    Parameters
    ----------
    connection: SharedConnectionManager
        Shared connection; must be connected before :meth:`persist`.
    collection: str
        Target collection name.
    """

    def __init__(
        self, connection: SharedConnectionManager, collection: str = "coin_prices"
    ) -> None:
        self._connection = connection
        self._collection_name = collection

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def _collection(self) -> Any:
        try:
            return self._connection.get_handle()[self._collection_name]
        except NotConnectedError as exc:
            raise StorageError(str(exc)) from exc

    async def ensure_indexes(self) -> None:
        """Create the time indexes used by readers of the collection."""
        coll = self._collection()
        try:
            await coll.create_index([("observed_at", DESCENDING)])
            await coll.create_index([("captured_at", DESCENDING)])
        except PyMongoError as exc:
            raise StorageError(
                f"Failed to create indexes on {self._collection_name}: {exc}"
            ) from exc
        logger.info(
            "samples.indexes.ready",
            extra={
                "database": self._connection.database_name,
                "collection": self._collection_name,
            },
        )

    async def persist(self, sample: Sample) -> None:
        """Insert one sample document.

        Raises
        ------
        StorageError
            If the store is not connected or the insert fails.
        """
        coll = self._collection()
        try:
            await coll.insert_one(sample_document(sample))
        except PyMongoError as exc:
            raise StorageError(
                f"Failed to save {sample.subject} sample: {exc}"
            ) from exc
        logger.info(
            "samples.saved",
            extra={"subject": sample.subject, "value": sample.value},
        )

    async def count(self) -> int:
        """Number of stored samples (used by the ``check`` run)."""
        coll = self._collection()
        try:
            return await coll.count_documents({})
        except PyMongoError as exc:
            raise StorageError(f"Failed to count samples: {exc}") from exc
