"""In-memory registry of live sessions."""

from typing import Callable, Iterator

from relay.realtime.session import Session


class ConnectionRegistry:
    """
    Authoritative map of session id → Session.

    A pure data structure: it never touches counters and never sends.
    Callers (the hub) own the bookkeeping around register/remove.
    """

    def __init__(self) -> None:
        self._sessions: dict[int, Session] = {}

    def register(self, session: Session) -> None:
        if session.id in self._sessions:
            raise ValueError(f"session id {session.id} already registered")
        self._sessions[session.id] = session

    def remove(self, session_id: int) -> Session | None:
        """Drop a session, cancelling its auth timer first.  Idempotent."""
        session = self._sessions.get(session_id)
        if session is None:
            return None
        session.cancel_deadline()
        del self._sessions[session_id]
        return session

    def find(self, session_id: int) -> Session | None:
        return self._sessions.get(session_id)

    def authenticated(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.authenticated]

    def for_each_authenticated(self, fn: Callable[[Session], None]) -> None:
        # Snapshot first: fn may close (and so remove) sessions.
        for session in self.authenticated():
            fn(session)

    def sessions_for(self, username: str) -> list[Session]:
        return [
            s for s in self._sessions.values()
            if s.authenticated and s.username == username
        ]

    def count_by_username(self, username: str) -> int:
        return len(self.sessions_for(username))

    def count_authenticated(self) -> int:
        return sum(1 for s in self._sessions.values() if s.authenticated)

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
