"""Typed exceptions for the run ledger.

Every error carries a stable ``code`` (safe to switch on in clients) and a
human readable ``detail``.  The web layer maps each family to an HTTP status
via ``http_status``.
"""

from __future__ import annotations

# ---- codes -------------------------------------------------------------------

DISTANCE_VIOLATION = "DISTANCE_VIOLATION"
DURATION_VIOLATION = "DURATION_VIOLATION"
PACE_VIOLATION = "PACE_VIOLATION"

SESSION_ALREADY_ACTIVE = "SessionAlreadyActive"
INVALID_TRANSITION = "InvalidTransition"
SESSION_NOT_FOUND = "SessionNotFound"

PERSISTENCE_FAILURE = "PersistenceFailure"


class RunLedgerError(RuntimeError):
    """Base class for all errors surfaced by runledger."""

    http_status = 500

    def __init__(self, code: str, detail: str) -> None:
        super().__init__(f"{code}: {detail}")
        self.code = code
        self.detail = detail

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.detail}


class ValidationError(RunLedgerError):
    """A finished session failed anti-cheat validation; nothing was written."""

    http_status = 400


class StateError(RunLedgerError):
    """A session lifecycle call arrived in the wrong state."""

    http_status = 409

    def __init__(self, code: str, detail: str, session_id: str | None = None) -> None:
        super().__init__(code, detail)
        self.session_id = session_id


class SessionNotFound(StateError):
    http_status = 404

    def __init__(self, session_id: str) -> None:
        super().__init__(SESSION_NOT_FOUND, f"no live session with id {session_id}", session_id)


class PersistenceError(RunLedgerError):
    """A ledger write failed; the whole finish transaction was rolled back.

    ``step`` names the pipeline step that failed so callers can report it.
    Retrying with the same session id is safe.
    """

    http_status = 500

    def __init__(self, step: str, detail: str) -> None:
        super().__init__(PERSISTENCE_FAILURE, f"{step}: {detail}")
        self.step = step

    def to_dict(self) -> dict:
        return {**super().to_dict(), "step": self.step}
