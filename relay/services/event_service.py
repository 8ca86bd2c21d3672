"""
Event service — best-effort connection history.

Handles:
- Appending connect / disconnect / auth_fail / kicked / banned events
- Per-user history and aggregate summary (admin ``user_detail``)
- Hourly counts and the recent-events feed (admin ``connection_stats``)
- Retention purge

Event history is advisory: ``EventStore`` logs and swallows every
database failure, returning empty results, so a broken history table
never blocks a login or a broadcast.
"""

import logging
import re
from collections import Counter
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.models.connection_event import ConnectionEvent, EventType
from relay.schemas import ConnectionEventOut, ConnectionSummary, HourlyCount

logger = logging.getLogger(__name__)

MIN_HOURS_BACK = 1
MAX_HOURS_BACK = 168
DEFAULT_HOURS_BACK = 24

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


def clamp_hours_back(raw: object) -> int:
    """
    Parse an hours-back argument and clamp it to [1, 168].

    Only the leading integer counts (``"3.5"`` → 3, ``"12h"`` → 12);
    no leading integer, or zero, means the 24-hour default.
    """
    match = _LEADING_INT.match(str(raw))
    if match is None:
        return DEFAULT_HOURS_BACK
    hours = int(match.group(1))
    if hours == 0:
        return DEFAULT_HOURS_BACK
    return max(MIN_HOURS_BACK, min(MAX_HOURS_BACK, hours))


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_out(event: ConnectionEvent) -> ConnectionEventOut:
    return ConnectionEventOut(
        id=event.id,
        username=event.username,
        ip=event.ip,
        event_type=event.event_type.value,
        reason=event.disconnect_reason,
        created_at=_as_utc(event.created_at),
    )


# ── Query helpers ───────────────────────────────────────────────────

async def add_event(
    username: str,
    ip: str | None,
    event_type: EventType,
    db: AsyncSession,
    reason: str | None = None,
) -> ConnectionEvent:
    event = ConnectionEvent(
        username=username,
        ip=ip[:45] if ip else None,
        event_type=event_type,
        disconnect_reason=reason[:100] if reason else None,
    )
    db.add(event)
    await db.flush()
    return event


async def get_history(
    username: str,
    db: AsyncSession,
    limit: int = 50,
) -> list[ConnectionEvent]:
    stmt = (
        select(ConnectionEvent)
        .where(ConnectionEvent.username == username)
        .order_by(ConnectionEvent.created_at.desc(), ConnectionEvent.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_recent(db: AsyncSession, limit: int = 20) -> list[ConnectionEvent]:
    stmt = (
        select(ConnectionEvent)
        .order_by(ConnectionEvent.created_at.desc(), ConnectionEvent.id.desc())
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _count_of(event_type: EventType):
    return func.coalesce(
        func.sum(case((ConnectionEvent.event_type == event_type, 1), else_=0)), 0,
    )


async def get_summary(username: str, db: AsyncSession) -> ConnectionSummary:
    stmt = select(
        _count_of(EventType.CONNECT),
        _count_of(EventType.DISCONNECT),
        _count_of(EventType.AUTH_FAIL),
        _count_of(EventType.KICKED),
        func.min(ConnectionEvent.created_at),
        func.max(ConnectionEvent.created_at),
    ).where(ConnectionEvent.username == username)
    row = (await db.execute(stmt)).one()
    connects, disconnects, auth_failures, kicked, first_seen, last_seen = row
    return ConnectionSummary(
        total_connections=int(connects),
        total_disconnections=int(disconnects),
        auth_failures=int(auth_failures),
        times_kicked=int(kicked),
        first_seen=_as_utc(first_seen) if first_seen else None,
        last_seen=_as_utc(last_seen) if last_seen else None,
    )


async def get_hourly_counts(
    db: AsyncSession,
    hours_back: int,
    *,
    now: datetime | None = None,
) -> list[HourlyCount]:
    """
    Event counts grouped by (hour, event_type), oldest hour first.

    Bucketing happens here rather than with ``date_trunc`` so the same
    query runs on PostgreSQL and SQLite.
    """
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=hours_back)
    stmt = select(ConnectionEvent.created_at, ConnectionEvent.event_type).where(
        ConnectionEvent.created_at > since,
    )
    rows = (await db.execute(stmt)).all()

    buckets: Counter[tuple[datetime, str]] = Counter()
    for created_at, event_type in rows:
        hour = _as_utc(created_at).replace(minute=0, second=0, microsecond=0)
        buckets[(hour, event_type.value)] += 1

    return [
        HourlyCount(hour=hour, event_type=event_type, count=count)
        for (hour, event_type), count in sorted(buckets.items())
    ]


async def delete_older_than(db: AsyncSession, cutoff: datetime) -> int:
    stmt = delete(ConnectionEvent).where(ConnectionEvent.created_at < cutoff)
    result = await db.execute(stmt)
    await db.flush()
    return result.rowcount or 0


# ── Store ───────────────────────────────────────────────────────────

class EventStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_event(
        self,
        username: str,
        ip: str | None,
        event_type: EventType,
        reason: str | None = None,
    ) -> None:
        try:
            async with self._session_factory() as db:
                await add_event(username, ip, event_type, db, reason=reason)
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to log %s event for %s", event_type.value, username)

    async def history(self, username: str, limit: int = 50) -> list[ConnectionEventOut]:
        try:
            async with self._session_factory() as db:
                return [_to_out(e) for e in await get_history(username, db, limit)]
        except SQLAlchemyError:
            logger.exception("Failed to load connection history for %s", username)
            return []

    async def summary(self, username: str) -> ConnectionSummary:
        try:
            async with self._session_factory() as db:
                return await get_summary(username, db)
        except SQLAlchemyError:
            logger.exception("Failed to load connection summary for %s", username)
            return ConnectionSummary()

    async def recent_events(self, limit: int = 20) -> list[ConnectionEventOut]:
        try:
            async with self._session_factory() as db:
                return [_to_out(e) for e in await get_recent(db, limit)]
        except SQLAlchemyError:
            logger.exception("Failed to load recent connection events")
            return []

    async def hourly_stats(self, hours_back: int = DEFAULT_HOURS_BACK) -> list[HourlyCount]:
        hours_back = clamp_hours_back(hours_back)
        try:
            async with self._session_factory() as db:
                return await get_hourly_counts(db, hours_back)
        except SQLAlchemyError:
            logger.exception("Failed to load hourly connection stats")
            return []

    async def purge_older_than(self, age: timedelta) -> int:
        cutoff = datetime.now(timezone.utc) - age
        try:
            async with self._session_factory() as db:
                deleted = await delete_older_than(db, cutoff)
                await db.commit()
        except SQLAlchemyError:
            logger.exception("Failed to purge old connection events")
            return 0
        if deleted:
            logger.info("Purged %d connection events older than %s", deleted, age)
        return deleted
