"""
Relay hub — owner of all live relay state.

The hub owns the connection registry, the rate limiter, the lifetime
counters and the recent-broadcast ring.  Every mutation of that state
happens in synchronous code between awaits on the event loop, so each
resumed step is atomic with respect to every other connection.

Entry points (called by the WebSocket controller):
    connect(transport, remote_ip)   → Session
    handle_frame(session_id, text)
    disconnect(session_id, reason)
    start() / shutdown()
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Coroutine, Iterable, assert_never

from relay.core.config import Settings
from relay.core.errors import (
    GOING_AWAY,
    POLICY_VIOLATION,
    AuthError,
    ProtocolError,
    RateLimitError,
    RelayError,
)
from relay.models.connection_event import EventType
from relay.rbac.guards import require_authenticated
from relay.realtime import auth, broadcast, stats
from relay.realtime.admin import AdminControlPlane
from relay.realtime.commands import (
    AdminCommand,
    BroadcastCommand,
    Command,
    LoginCommand,
    StatsCommand,
    UnknownCommand,
    parse_frame,
)
from relay.realtime.rate_limiter import SlidingWindowRateLimiter
from relay.realtime.registry import ConnectionRegistry
from relay.realtime.scheduler import PeriodicTask
from relay.realtime.session import Session, Transport, now_ms
from relay.schemas import (
    ErrorMessage,
    InfoMessage,
    RecentBroadcast,
    StatsEnvelope,
    StatusUpdate,
    WireModel,
)
from relay.services.event_service import EventStore
from relay.services.whitelist_service import WhitelistStore

logger = logging.getLogger(__name__)

WELCOME = (
    "Connected. Authenticate with: login <username> [source1, source2] "
    "or login <username> [*]"
)


@dataclass
class RelayCounters:
    total_connections: int = 0
    total_disconnections: int = 0
    total_broadcasts: int = 0
    total_messages_delivered: int = 0
    total_auth_failures: int = 0
    peak_authenticated: int = 0
    started_at: float = field(default_factory=time.time)
    started_monotonic: float = field(default_factory=time.monotonic)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self.started_monotonic


class RelayHub:
    def __init__(
        self,
        settings: Settings,
        whitelist: WhitelistStore,
        events: EventStore,
    ):
        self.settings = settings
        self.whitelist = whitelist
        self.events = events
        self.registry = ConnectionRegistry()
        self.rate_limiter = SlidingWindowRateLimiter(
            settings.RATE_LIMIT_MESSAGES, settings.RATE_LIMIT_WINDOW_SECONDS,
        )
        self.counters = RelayCounters()
        self.recent_broadcasts: deque[RecentBroadcast] = deque(
            maxlen=settings.RECENT_BROADCASTS_LIMIT,
        )
        self.admin = AdminControlPlane(self)
        self._ids = itertools.count(1)
        self._broadcast_ids = itertools.count(1)
        self._background: set[asyncio.Task] = set()
        self._periodic: list[PeriodicTask] = []

    # ── Lifecycle ────────────────────────────────────────────────────
    def start(self) -> None:
        """Start heartbeat, rate-limiter sweep and event-retention purge."""
        retention = timedelta(days=self.settings.EVENT_RETENTION_DAYS)

        async def purge_events() -> None:
            await self.events.purge_older_than(retention)

        self._periodic = [
            PeriodicTask("heartbeat", self.settings.HEARTBEAT_INTERVAL_SECONDS, self.send_heartbeats),
            PeriodicTask("rate-limit-sweep", self.settings.RATE_LIMIT_SWEEP_SECONDS, self.rate_limiter.sweep),
            PeriodicTask("event-purge", self.settings.EVENT_PURGE_INTERVAL_SECONDS, purge_events),
        ]
        for task in self._periodic:
            task.start()
        logger.info("Relay hub started.")

    async def shutdown(self) -> None:
        logger.info("Relay hub shutting down (%d open connections).", len(self.registry))
        for session in self.registry:
            self.close_session(session, GOING_AWAY, "Server shutting down")
        for task in self._periodic:
            await task.stop()
        self._periodic = []
        await self.drain_background()

    async def drain_background(self) -> None:
        """Wait for fire-and-forget store writes (event log) to settle."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _spawn(self, coro: Coroutine) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ── Connections ─────────────────────────────────────────────────
    def connect(self, transport: Transport, remote_ip: str | None = None) -> Session:
        session = Session(id=next(self._ids), transport=transport, remote_ip=remote_ip)
        session.auth_deadline = asyncio.get_running_loop().call_later(
            self.settings.AUTH_TIMEOUT_SECONDS, self._expire_auth, session.id,
        )
        self.registry.register(session)
        self.counters.total_connections += 1
        logger.info("Client connected: session=%s ip=%s", session.id, remote_ip)
        self.send(session, InfoMessage(message=WELCOME))
        return session

    def _expire_auth(self, session_id: int) -> None:
        session = self.registry.find(session_id)
        if session is None or session.authenticated:
            return
        session.auth_deadline = None  # already fired
        self.counters.total_auth_failures += 1
        logger.warning("Authentication timeout: session=%s", session.id)
        timeout = self.settings.AUTH_TIMEOUT_SECONDS
        self.send(session, ErrorMessage(
            message=f'Authentication timeout. Send "login <username>" within {timeout:g} seconds.',
        ))
        self.close_session(session, POLICY_VIOLATION, "Authentication timeout")

    def close_session(self, session: Session, code: int, reason: str) -> None:
        """Close the transport and drop the session in one step."""
        session.transport.close(code, reason)
        self._drop(session.id, reason)

    def disconnect(self, session_id: int, reason: str = "Client disconnected") -> None:
        """Transport reported closure.  No-op if the session is already gone."""
        self._drop(session_id, reason)

    def _drop(self, session_id: int, reason: str) -> None:
        session = self.registry.remove(session_id)
        if session is None:
            return
        self.rate_limiter.reset(session_id)
        self.counters.total_disconnections += 1
        logger.info(
            "Client disconnected: session=%s user=%s reason=%s",
            session.id, session.username, reason,
        )
        if session.authenticated:
            self._spawn(self.events.log_event(
                session.username, session.remote_ip, EventType.DISCONNECT, reason,
            ))

    # ── Outbound ────────────────────────────────────────────────────
    def send(self, session: Session, envelope: WireModel) -> None:
        if session.transport.is_open:
            session.transport.send(envelope.to_wire())

    def send_heartbeats(self) -> int:
        probed = 0
        for session in self.registry:
            if session.transport.is_open:
                session.transport.ping()
                probed += 1
        return probed

    def fan_out(self, source_key: str, payload: str) -> int:
        """Deliver one serialized broadcast to every matching receiver."""
        recipients = 0
        for session in self.registry.authenticated():
            if not session.transport.is_open:
                continue
            if not session.source_filters.matches(source_key):
                continue
            session.transport.send(payload)
            session.messages_received += 1
            recipients += 1
        return recipients

    def record_broadcast(self, *, title: str, source: str, sender: str, recipients: int) -> RecentBroadcast:
        self.counters.total_broadcasts += 1
        self.counters.total_messages_delivered += recipients
        record = RecentBroadcast(
            id=next(self._broadcast_ids),
            title=title,
            source=source,
            sender=sender,
            recipient_count=recipients,
            timestamp=now_ms(),
        )
        self.recent_broadcasts.appendleft(record)
        return record

    def note_authenticated(self) -> None:
        current = self.registry.count_authenticated()
        if current > self.counters.peak_authenticated:
            self.counters.peak_authenticated = current

    def push_role_update(
        self,
        username: str,
        *,
        is_broadcaster: bool | None = None,
        is_admin: bool | None = None,
    ) -> int:
        """Apply a role change to every live session of ``username``."""
        sessions = self.registry.sessions_for(username)
        for session in sessions:
            if is_broadcaster is not None:
                session.is_broadcaster = is_broadcaster
            if is_admin is not None:
                session.is_admin = is_admin
            self.send(session, StatusUpdate(
                is_broadcaster=session.is_broadcaster,
                is_admin=session.is_admin,
                message=_describe_roles(session),
            ))
        if sessions:
            logger.info("Pushed role update to %d session(s) of %s", len(sessions), username)
        return len(sessions)

    def evict(self, sessions: Iterable[Session], notice: str, reason: str) -> list[Session]:
        evicted = []
        for session in sessions:
            if session.id not in self.registry:
                continue
            self.send(session, ErrorMessage(message=notice))
            self.close_session(session, POLICY_VIOLATION, reason)
            evicted.append(session)
        return evicted

    # ── Inbound ─────────────────────────────────────────────────────
    async def handle_frame(self, session_id: int, frame: str) -> None:
        session = self.registry.find(session_id)
        if session is None:
            return
        try:
            if len(frame.encode("utf-8")) > self.settings.MAX_MESSAGE_SIZE:
                logger.warning("Message too large: session=%s", session.id)
                raise ProtocolError("Message too large")
            if not self.rate_limiter.try_acquire(session.id):
                logger.warning("Rate limit exceeded: session=%s user=%s", session.id, session.username)
                raise RateLimitError("Rate limit exceeded. Please slow down.")
            await self._dispatch(session, parse_frame(frame))
        except RelayError as exc:
            self._report(session, exc)

    async def _dispatch(self, session: Session, command: Command) -> None:
        if isinstance(command, LoginCommand):
            await auth.login(self, session, command)
            return
        require_authenticated(session)
        if isinstance(command, StatsCommand):
            self.send(session, StatsEnvelope(data=stats.build_snapshot(self)))
        elif isinstance(command, AdminCommand):
            await self.admin.execute(session, command)
        elif isinstance(command, BroadcastCommand):
            broadcast.dispatch(self, session, command)
        elif isinstance(command, UnknownCommand):
            raise ProtocolError(
                "Unknown command. Available: broadcast <json>, stats, admin <command>"
            )
        else:
            assert_never(command)

    def _report(self, session: Session, exc: RelayError) -> None:
        if session.id not in self.registry:
            return
        if isinstance(exc, AuthError) and exc.counts_as_failure:
            self.counters.total_auth_failures += 1
            if exc.username:
                self._spawn(self.events.log_event(
                    exc.username, session.remote_ip, EventType.AUTH_FAIL, exc.message,
                ))
        self.send(session, ErrorMessage(message=exc.message))
        if exc.close_code is not None:
            self.close_session(session, exc.close_code, exc.message)


def _describe_roles(session: Session) -> str:
    roles = [
        name for name, held in (("broadcaster", session.is_broadcaster), ("admin", session.is_admin))
        if held
    ]
    return f"Roles updated: {', '.join(roles) if roles else 'receiver'}"
