"""Exception taxonomy for the council orchestration client.

Per-member failures are never raised; they are recorded as error entries on
the session. Only the conditions below cross component boundaries.
"""
from __future__ import annotations


class CouncilClientError(Exception):
    """Base class for all client errors."""


class ValidationError(CouncilClientError):
    """Raised when a request is rejected before anything is sent."""


class TransportError(CouncilClientError):
    """The backend could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class EventDecodeError(CouncilClientError):
    """A stream frame could not be decoded into an orchestration event."""


class SessionFrozenError(CouncilClientError):
    """A terminal (complete/failed) or rehydrated session was mutated."""


class SessionNotFoundError(CouncilClientError):
    """History has no session for the requested trace id."""

    def __init__(self, trace_id: str):
        super().__init__(f"Session not found: {trace_id}")
        self.trace_id = trace_id


class HistoryTransportError(CouncilClientError):
    """History could not be fetched (connection failure, 5xx, bad body)."""


class StreamUnavailableError(TransportError):
    """The stream failed before delivering any event; the fallback applies."""
