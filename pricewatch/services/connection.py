"""Shared store connection manager.

One instance owns the single live MongoDB client for the process. It is
constructed by the composition root and passed by reference to every
consumer (sample store, session recorder). Connect attempts are
deduplicated: concurrent callers await the same in-flight attempt, and once
connected further ``connect()`` calls return immediately.
"""

from __future__ import annotations

import asyncio
import logging
import re
from enum import Enum
from typing import Any, Callable, Optional

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from ..errors import NotConnectedError, StoreConnectionError

logger = logging.getLogger(__name__)

_CREDENTIALS_RE = re.compile(r"//([^:/@]+):([^@]+)@")


def redact_uri(uri: str) -> str:
    """Mask ``user:password@`` credentials embedded in a connection URI."""
    return _CREDENTIALS_RE.sub("//*****:*****@", uri)


class ConnectionState(Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"  # Last attempt failed; retryable


class SharedConnectionManager:
    """Owner of the one live connection to the backing store.

    Parameters
    ----------
    uri: str
        MongoDB connection string.
    database: str
        Name of the database exposed through :meth:`get_handle`.
    connect_timeout_ms: int
        Bound applied to server selection, socket connect and the ping.
    max_pool_size, min_pool_size: int
        Driver pool bounds.
    client_factory: Optional[Callable[..., Any]]
        Builds the driver client; defaults to ``pymongo.AsyncMongoClient``.
        Tests pass a factory returning a fake client.
    """

    def __init__(
        self,
        uri: str,
        database: str,
        *,
        connect_timeout_ms: int = 5000,
        max_pool_size: int = 10,
        min_pool_size: int = 2,
        client_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self._uri = uri
        self._database_name = database
        self._connect_timeout_ms = connect_timeout_ms
        self._max_pool_size = max_pool_size
        self._min_pool_size = min_pool_size
        self._client_factory = client_factory or AsyncMongoClient
        self._client: Optional[Any] = None
        self._db: Optional[Any] = None
        self._state = ConnectionState.DISCONNECTED
        self._inflight: Optional[asyncio.Task[None]] = None
        self._last_error: Optional[BaseException] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def database_name(self) -> str:
        return self._database_name

    @property
    def last_error(self) -> Optional[BaseException]:
        """Error from the most recent failed connect attempt, if any."""
        return self._last_error

    async def connect(self) -> None:
        """Establish the shared connection (idempotent).

        Behavior
        --------
        - Connected: returns immediately.
        - Attempt in flight: awaits that same attempt.
        - Otherwise starts one attempt: build client, ping, mark connected.

        Raises
        ------
        StoreConnectionError
            If the client cannot be built or the ping fails/times out. State
            becomes ``FAILED`` and a later call starts a fresh attempt.
        """
        if self._state is ConnectionState.CONNECTED:
            return
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._connect())
        # Shield so one cancelled waiter does not abort the shared attempt
        await asyncio.shield(self._inflight)

    async def _connect(self) -> None:
        self._state = ConnectionState.CONNECTING
        logger.info(
            "store.connect.start",
            extra={"uri": redact_uri(self._uri), "database": self._database_name},
        )
        client: Optional[Any] = None
        connected = False
        try:
            client = self._client_factory(
                self._uri,
                serverSelectionTimeoutMS=self._connect_timeout_ms,
                connectTimeoutMS=self._connect_timeout_ms,
                maxPoolSize=self._max_pool_size,
                minPoolSize=self._min_pool_size,
            )
            db = client[self._database_name]
            await asyncio.wait_for(
                db.command("ping"), timeout=self._connect_timeout_ms / 1000.0
            )
            connected = True
        except Exception as exc:  # pylint: disable=broad-except
            # Option validation and URI parsing errors fail the attempt too
            self._last_error = exc
            logger.error(
                "store.connect.failed",
                extra={
                    "database": self._database_name,
                    "error": str(exc) or type(exc).__name__,
                },
            )
            raise StoreConnectionError(
                f"Failed to connect to store '{self._database_name}': {exc}"
            ) from exc
        finally:
            # Every exit path, cancellation included, clears the in-flight
            # marker so the next connect() starts a fresh attempt
            self._inflight = None
            if not connected:
                self._state = ConnectionState.FAILED
                if client is not None:
                    await self._close_quietly(client)
        self._client = client
        self._db = db
        self._state = ConnectionState.CONNECTED
        self._last_error = None
        logger.info(
            "store.connect.ok",
            extra={"database": self._database_name},
        )

    def get_handle(self) -> Any:
        """Return the shared database handle.

        Raises
        ------
        NotConnectedError
            Unless the manager is connected.
        """
        if self._state is not ConnectionState.CONNECTED or self._db is None:
            raise NotConnectedError("Store not connected. Call connect() first.")
        return self._db

    def get_client(self) -> Any:
        """Return the shared driver client (same contract as get_handle)."""
        if self._state is not ConnectionState.CONNECTED or self._client is None:
            raise NotConnectedError("Store not connected. Call connect() first.")
        return self._client

    async def disconnect(self) -> None:
        """Close the client and reset to ``DISCONNECTED``.

        Safe to call when never connected. Intended for process shutdown, not
        for individual consumers.
        """
        if self._inflight is not None:
            # Let a pending attempt settle so its client is not leaked
            try:
                await asyncio.shield(self._inflight)
            except StoreConnectionError:
                pass
        client = self._client
        self._client = None
        self._db = None
        self._inflight = None
        self._state = ConnectionState.DISCONNECTED
        if client is None:
            logger.debug("store.disconnect no-op: not connected")
            return
        await self._close_quietly(client)
        logger.info("store.disconnected", extra={"database": self._database_name})

    @staticmethod
    async def _close_quietly(client: Any) -> None:
        try:
            await client.close()
        except (PyMongoError, OSError) as exc:
            logger.error("store.close.failed", extra={"error": str(exc)})

    async def __aenter__(self) -> "SharedConnectionManager":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()
