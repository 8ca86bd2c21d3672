"""
Per-connection state.

A ``Session`` is created when a socket is accepted and dropped when it
closes.  Everything that becomes meaningful at login (username, roles,
filters) is assigned together in ``Session.authenticate`` so no caller
can observe a half-authenticated session.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Iterable, Protocol


def now_ms() -> int:
    return int(time.time() * 1000)


class Transport(Protocol):
    """What the hub needs from a socket.  Sends never block."""

    @property
    def is_open(self) -> bool: ...

    def send(self, payload: str) -> None: ...

    def ping(self) -> None: ...

    def close(self, code: int, reason: str) -> None: ...


@dataclass(frozen=True)
class SourceFilter:
    """
    Subscription predicate over a broadcast's ``source`` tag.

    - receive_all: every broadcast matches.
    - sources: lowercase tags; an empty tuple means receive nothing.
    """

    receive_all: bool = False
    sources: tuple[str, ...] = ()

    @classmethod
    def all(cls) -> "SourceFilter":
        return cls(receive_all=True)

    @classmethod
    def nothing(cls) -> "SourceFilter":
        return cls()

    @classmethod
    def of(cls, tags: Iterable[str]) -> "SourceFilter":
        cleaned = (t.strip().lower() for t in tags)
        return cls(sources=tuple(dict.fromkeys(t for t in cleaned if t)))

    @property
    def receives_nothing(self) -> bool:
        return not self.receive_all and not self.sources

    def matches(self, source_key: str) -> bool:
        if self.receive_all:
            return True
        return source_key in self.sources

    def to_list(self) -> list[str]:
        return ["*"] if self.receive_all else list(self.sources)


RECEIVE_ALL = SourceFilter.all()


@dataclass(eq=False)
class Session:
    id: int
    transport: Transport
    remote_ip: str | None = None
    connected_at: float = field(default_factory=time.time)
    authenticated: bool = False
    username: str | None = None
    is_broadcaster: bool = False
    is_admin: bool = False
    source_filters: SourceFilter = RECEIVE_ALL
    messages_received: int = 0
    auth_deadline: asyncio.TimerHandle | None = None

    def cancel_deadline(self) -> None:
        if self.auth_deadline is not None:
            self.auth_deadline.cancel()
            self.auth_deadline = None

    def authenticate(
        self,
        username: str,
        *,
        is_broadcaster: bool,
        is_admin: bool,
        source_filters: SourceFilter,
    ) -> None:
        if self.authenticated:
            raise RuntimeError(f"session {self.id} is already authenticated")
        self.cancel_deadline()
        self.username = username
        self.is_broadcaster = is_broadcaster
        self.is_admin = is_admin
        self.source_filters = source_filters
        self.authenticated = True

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def __repr__(self) -> str:
        who = self.username if self.authenticated else "anonymous"
        return f"<Session {self.id} {who}>"
