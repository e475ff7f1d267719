"""Run/session recorder.

Records the lifecycle of a batch of independent named operations (a "run")
and the outcome of each unit into two collections on the shared store
connection. Recording is best-effort observability: every storage failure is
logged and swallowed so it can never abort the run being observed.
"""

from __future__ import annotations

import inspect
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from ..domain.models import (
    RunSession,
    RunTally,
    SessionStatus,
    UnitLogRecord,
    UnitOutcome,
    UnitResult,
    UnitStatus,
    utcnow,
)
from ..errors import NotConnectedError
from ..utils.correlation import reset_session_id, set_session_id
from .connection import SharedConnectionManager

logger = logging.getLogger(__name__)

T = TypeVar("T")

UNIT_LOGS_COLLECTION = "unit_logs"
RUN_SESSIONS_COLLECTION = "run_sessions"

# Errors treated as "storage unavailable" by the best-effort paths
_STORAGE_ERRORS = (PyMongoError, NotConnectedError, OSError)

# Ended session ids remembered to flag late unit records
_ENDED_SESSIONS_KEPT = 256


def new_session_id(prefix: Optional[str] = None) -> str:
    """Return ``[<prefix>-]session-<epoch ms>-<random>``."""
    base = f"session-{int(time.time() * 1000)}-{secrets.token_hex(3)}"
    return f"{prefix}-{base}" if prefix else base


class SessionRecorder:
    """Best-effort recorder for runs and their units.

    Parameters
    ----------
    connection: SharedConnectionManager
        Shared store connection. The recorder only borrows it.
    session_prefix: Optional[str]
        Optional label prepended to generated session ids (e.g., a bot name).
    """

    def __init__(
        self,
        connection: SharedConnectionManager,
        session_prefix: Optional[str] = None,
    ) -> None:
        self._connection = connection
        self._session_prefix = session_prefix
        self._available = False
        self._current_session_id: Optional[str] = None
        self._tallies: dict[str, RunTally] = {}
        self._ended: dict[str, None] = {}

    @property
    def current_session_id(self) -> Optional[str]:
        """Id of the session opened by :meth:`start_session` and not yet ended."""
        return self._current_session_id

    @property
    def available(self) -> bool:
        """Whether :meth:`prepare` succeeded and records are being written."""
        return self._available

    async def prepare(self) -> bool:
        """Create indexes and enable recording.

        Returns False (and leaves recording disabled) when the store is not
        reachable; the caller's run continues unrecorded.
        """
        try:
            db = self._connection.get_handle()
            units = db[UNIT_LOGS_COLLECTION]
            sessions = db[RUN_SESSIONS_COLLECTION]
            await units.create_index([("started_at", DESCENDING)])
            await units.create_index([("session_id", ASCENDING)])
            await units.create_index([("unit_name", ASCENDING)])
            await sessions.create_index([("session_id", ASCENDING)], unique=True)
            await sessions.create_index([("started_at", DESCENDING)])
        except _STORAGE_ERRORS as exc:
            self._available = False
            logger.error("recorder.prepare.failed", extra={"error": str(exc)})
            return False
        self._available = True
        logger.info("recorder.ready")
        return True

    def tally(self, session_id: str) -> RunTally:
        """Unit outcome counts for ``session_id`` (empty once it has ended)."""
        return self._tallies.get(session_id, RunTally()).model_copy()

    async def start_session(self, total_units: int) -> str:
        """Open a Running session and return its id (never raises)."""
        session = RunSession(
            session_id=new_session_id(self._session_prefix),
            started_at=utcnow(),
            total_units=total_units,
        )
        self._tallies[session.session_id] = RunTally()
        self._current_session_id = session.session_id
        await self._write(
            "recorder.session.start_failed",
            session.session_id,
            lambda db: db[RUN_SESSIONS_COLLECTION].insert_one(
                session.model_dump(mode="python")
            ),
        )
        logger.info(
            "recorder.session.started",
            extra={"session_id": session.session_id, "total_units": total_units},
        )
        return session.session_id

    async def record_unit(
        self, session_id: str, unit_name: str, outcome: UnitOutcome
    ) -> None:
        """Append one unit record (never raises)."""
        record = UnitLogRecord(
            session_id=session_id,
            unit_name=unit_name,
            status=outcome.status,
            started_at=outcome.started_at,
            duration_ms=outcome.duration_ms,
            error_message=outcome.error_message,
            details=outcome.details,
        )
        if session_id in self._ended:
            # Still appended, but the session's final counts no longer match
            logger.warning(
                "recorder.unit.after_end",
                extra={"session_id": session_id, "unit": unit_name},
            )
        else:
            tally = self._tallies.setdefault(session_id, RunTally())
            if outcome.status is UnitStatus.SUCCESS:
                tally.succeeded += 1
            elif outcome.status is UnitStatus.FAILED:
                tally.failed += 1
            else:
                tally.skipped += 1
        await self._write(
            "recorder.unit.record_failed",
            session_id,
            lambda db: db[UNIT_LOGS_COLLECTION].insert_one(
                record.model_dump(mode="python")
            ),
        )
        logger.info(
            "recorder.unit.recorded",
            extra={
                "session_id": session_id,
                "unit": unit_name,
                "status": outcome.status.value,
                "duration_ms": outcome.duration_ms,
            },
        )

    async def record_skip(
        self, session_id: str, unit_name: str, reason: Optional[str] = None
    ) -> None:
        """Record a unit that was deliberately not run."""
        await self.record_unit(
            session_id,
            unit_name,
            UnitOutcome(status=UnitStatus.SKIPPED, details=reason),
        )

    async def end_session(
        self, session_id: str, succeeded: int, failed: int, skipped: int = 0
    ) -> SessionStatus:
        """Finalize a session with its counts (never raises).

        Status is ``failed`` when any unit failed, ``completed`` otherwise.
        """
        status = SessionStatus.FAILED if failed > 0 else SessionStatus.COMPLETED
        recorded = self._tallies.pop(session_id, RunTally())
        self._ended[session_id] = None
        if len(self._ended) > _ENDED_SESSIONS_KEPT:
            del self._ended[next(iter(self._ended))]
        if self._current_session_id == session_id:
            self._current_session_id = None
        if recorded.total != succeeded + failed + skipped:
            logger.warning(
                "recorder.session.count_mismatch",
                extra={
                    "session_id": session_id,
                    "reported": succeeded + failed + skipped,
                    "recorded": recorded.total,
                },
            )
        update = {
            "$set": {
                "ended_at": utcnow(),
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "status": status.value,
            }
        }
        await self._write(
            "recorder.session.end_failed",
            session_id,
            lambda db: db[RUN_SESSIONS_COLLECTION].update_one(
                {"session_id": session_id}, update
            ),
        )
        logger.info(
            "recorder.session.ended",
            extra={
                "session_id": session_id,
                "status": status.value,
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
            },
        )
        return status

    async def execute_and_record(
        self,
        unit_name: str,
        operation: Callable[[], Union[T, Awaitable[T]]],
        *,
        session_id: Optional[str] = None,
        reraise: bool = False,
    ) -> UnitResult:
        """Run ``operation``, time it, record the outcome.

        Parameters
        ----------
        unit_name: str
            Name recorded for the unit.
        operation: Callable
            Zero-argument sync or async callable.
        session_id: Optional[str]
            Session the unit belongs to; defaults to the current session.
        reraise: bool
            Re-raise the operation's exception after recording it. Off by
            default so one failing unit never aborts the batch.

        Raises
        ------
        ValueError
            If no session id is given and no session has been started.
        """
        session_id = session_id or self._current_session_id
        if session_id is None:
            raise ValueError("No session started; call start_session() first")
        started_at = utcnow()
        t0 = time.perf_counter()
        token = set_session_id(session_id)
        try:
            result = operation()
            if inspect.isawaitable(result):
                await result
        except Exception as exc:  # pylint: disable=broad-except
            duration_ms = round((time.perf_counter() - t0) * 1000.0, 3)
            message = str(exc) or type(exc).__name__
            await self.record_unit(
                session_id,
                unit_name,
                UnitOutcome(
                    status=UnitStatus.FAILED,
                    started_at=started_at,
                    duration_ms=duration_ms,
                    error_message=message,
                ),
            )
            if reraise:
                raise
            return UnitResult(succeeded=False, duration_ms=duration_ms, error=message)
        finally:
            reset_session_id(token)
        duration_ms = round((time.perf_counter() - t0) * 1000.0, 3)
        await self.record_unit(
            session_id,
            unit_name,
            UnitOutcome(
                status=UnitStatus.SUCCESS,
                started_at=started_at,
                duration_ms=duration_ms,
            ),
        )
        return UnitResult(succeeded=True, duration_ms=duration_ms)

    async def _write(
        self,
        event: str,
        session_id: str,
        op: Callable[[Any], Awaitable[Any]],
    ) -> None:
        if not self._available:
            return
        try:
            await op(self._connection.get_handle())
        except _STORAGE_ERRORS as exc:
            logger.error(event, extra={"session_id": session_id, "error": str(exc)})
