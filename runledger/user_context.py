"""Owner identity context for log records.

The web layer calls ``set_owner_id()`` in a ``before_request`` hook with the
id taken from the ``X-Owner-Id`` header, so every log line emitted while
handling that request can be attributed.  The CLI sets it from ``--owner``.
"""

from contextvars import ContextVar

_current_owner_id: ContextVar[str] = ContextVar("current_owner_id", default="-")


def get_owner_id() -> str:
    """Return the current owner id ("-" when none is set)."""
    return _current_owner_id.get()


def set_owner_id(owner_id: str) -> None:
    """Set the current owner id for this execution context."""
    _current_owner_id.set(owner_id)
