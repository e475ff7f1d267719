"""Session correlation ID utilities for structured logging.

Provides the current run/session identifier via a ContextVar so that
adapter and recorder log records emitted while a recorded unit executes
carry the same ``session_id`` without threading it through every call.
"""

from __future__ import annotations

from contextvars import ContextVar, Token

_session_id_var: ContextVar[str] = ContextVar("session_id", default="")


def set_session_id(session_id: str) -> Token[str]:
    """Set the current session correlation id; return a token for reset."""

    return _session_id_var.set(session_id)


def reset_session_id(token: Token[str]) -> None:
    """Restore the session id that was current before ``set_session_id``."""

    _session_id_var.reset(token)


def get_session_id() -> str:
    """Return the current session correlation id, or empty string."""

    return _session_id_var.get()
