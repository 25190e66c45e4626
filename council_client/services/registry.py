from __future__ import annotations

from typing import Iterator

from council_client.models.session import OrchestrationSession


class SessionRegistry:
    """Sessions by trace id.

    A live session is registered under its local id until the backend assigns
    a trace id; ``register`` is called again at that point and the entry is
    re-keyed.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, OrchestrationSession] = {}

    def register(self, session: OrchestrationSession) -> None:
        if session.trace_id and session.local_id in self._sessions:
            if self._sessions[session.local_id] is session:
                del self._sessions[session.local_id]
        self._sessions[session.key] = session

    def get(self, trace_id: str) -> OrchestrationSession | None:
        return self._sessions.get(trace_id)

    def active(self) -> list[OrchestrationSession]:
        return [s for s in self._sessions.values() if not s.is_terminal]

    def __contains__(self, trace_id: object) -> bool:
        return trace_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[OrchestrationSession]:
        return iter(list(self._sessions.values()))
