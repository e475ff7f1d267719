"""Canonical data model for samples and recorded runs.

These Pydantic models are the shapes exchanged between the fetch operation,
the storage port, the polling fetcher and the session recorder. Samples are
frozen: once captured they are only ever appended to storage.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Quote(BaseModel):
    """Raw observation returned by a fetch operation.

    Attributes
    ----------
    subject: str
        What was observed (e.g., the coin pair "BTCUSDT").
    value: float
        Observed numeric value.
    observed_at: Optional[datetime]
        When the source observed the value, if it says so.
    """

    subject: str
    value: float
    observed_at: Optional[datetime] = None


class Sample(BaseModel):
    """Single immutable observation captured by the polling fetcher.

    Attributes
    ----------
    subject: str
        What was observed.
    value: float
        Observed numeric value.
    observed_at: datetime
        Observation timestamp (UTC).
    captured_at: datetime
        When the fetcher captured the observation (UTC).
    """

    model_config = ConfigDict(frozen=True)

    subject: str
    value: float
    observed_at: datetime
    captured_at: datetime

    @classmethod
    def from_quote(
        cls, quote: Quote, captured_at: Optional[datetime] = None
    ) -> "Sample":
        """Stamp a quote with its capture time."""
        captured = captured_at or utcnow()
        return cls(
            subject=quote.subject,
            value=quote.value,
            observed_at=quote.observed_at or captured,
            captured_at=captured,
        )


class SessionStatus(str, Enum):
    """Lifecycle status of a recorded run."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class UnitStatus(str, Enum):
    """Outcome of one named unit within a run."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunSession(BaseModel):
    """One execution of a batch of independent named operations."""

    model_config = ConfigDict(use_enum_values=True)

    session_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    total_units: int = Field(0, ge=0)
    succeeded: int = Field(0, ge=0)
    failed: int = Field(0, ge=0)
    skipped: int = Field(0, ge=0)
    status: SessionStatus = SessionStatus.RUNNING


class UnitOutcome(BaseModel):
    """What happened when a unit ran; input to ``record_unit``."""

    status: UnitStatus
    started_at: datetime = Field(default_factory=utcnow)
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None
    details: Optional[str] = None


class UnitLogRecord(BaseModel):
    """Append-only record of a unit's outcome, linked to its session."""

    model_config = ConfigDict(use_enum_values=True)

    session_id: str
    unit_name: str
    status: UnitStatus
    started_at: datetime
    duration_ms: Optional[float] = None
    error_message: Optional[str] = None
    details: Optional[str] = None


class UnitResult(BaseModel):
    """Value returned by ``SessionRecorder.execute_and_record``."""

    succeeded: bool
    duration_ms: float
    error: Optional[str] = None


class RunTally(BaseModel):
    """Counts of unit outcomes recorded for a session."""

    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.skipped
