"""
Tests for the SQLAlchemy-backed whitelist and event stores.

Runs against a throwaway SQLite file per test (``aiosqlite`` driver);
the schema comes straight from the models.
"""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from relay.core.database import build_engine, build_session_factory, create_schema
from relay.models.connection_event import ConnectionEvent, EventType
from relay.services.event_service import (
    EventStore,
    clamp_hours_back,
    get_hourly_counts,
)
from relay.services.whitelist_service import WhitelistStore, seed_whitelist


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'relay.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def whitelist(session_factory):
    return WhitelistStore(session_factory)


@pytest.fixture
def events(session_factory):
    return EventStore(session_factory)


@pytest_asyncio.fixture
async def broken_factory(tmp_path):
    """A database with no tables: every query fails."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    yield build_session_factory(engine)
    await engine.dispose()


# =============================================================================
# Whitelist
# =============================================================================


class TestWhitelistStore:
    @pytest.mark.asyncio
    async def test_ping(self, whitelist):
        await whitelist.ping()

    @pytest.mark.asyncio
    async def test_unknown_user_has_no_access(self, whitelist):
        assert await whitelist.is_whitelisted("ghost") is False
        assert await whitelist.is_broadcaster("ghost") is False
        assert await whitelist.is_admin("ghost") is False

    @pytest.mark.asyncio
    async def test_add_and_remove_user(self, whitelist):
        await whitelist.add_user("alice")
        assert await whitelist.is_whitelisted("alice")
        assert await whitelist.is_broadcaster("alice") is False

        assert await whitelist.remove_user("alice") is True
        assert await whitelist.is_whitelisted("alice") is False

        await whitelist.add_user("alice")
        assert await whitelist.is_whitelisted("alice")

    @pytest.mark.asyncio
    async def test_add_user_twice_is_idempotent(self, whitelist):
        await whitelist.add_user("alice")
        await whitelist.add_user("alice")
        assert [u.username for u in await whitelist.list_users()] == ["alice"]

    @pytest.mark.asyncio
    async def test_remove_unknown_user(self, whitelist):
        assert await whitelist.remove_user("ghost") is False
        assert await whitelist.remove_broadcaster("ghost") is False

    @pytest.mark.asyncio
    async def test_broadcaster_role(self, whitelist):
        await whitelist.add_broadcaster("carol")
        assert await whitelist.is_whitelisted("carol")
        assert await whitelist.is_broadcaster("carol")

        await whitelist.add_user("carol")
        assert await whitelist.is_broadcaster("carol"), "re-adding must not drop the role"

        await whitelist.remove_broadcaster("carol")
        assert await whitelist.is_broadcaster("carol") is False
        assert await whitelist.is_whitelisted("carol")

    @pytest.mark.asyncio
    async def test_admin_implies_broadcaster(self, whitelist):
        await whitelist.add_admin("root")
        assert await whitelist.is_admin("root")
        assert await whitelist.is_broadcaster("root")

    @pytest.mark.asyncio
    async def test_deactivated_user_loses_roles(self, whitelist):
        await whitelist.add_admin("root")
        await whitelist.remove_user("root")
        assert await whitelist.is_admin("root") is False

    @pytest.mark.asyncio
    async def test_listings_skip_inactive(self, whitelist):
        await whitelist.add_user("alice")
        await whitelist.add_broadcaster("carol")
        await whitelist.add_user("bob")
        await whitelist.remove_user("bob")

        assert {u.username for u in await whitelist.list_users()} == {"alice", "carol"}
        broadcasters = await whitelist.list_broadcasters()
        assert [u.username for u in broadcasters] == ["carol"]
        assert broadcasters[0].is_broadcaster

    @pytest.mark.asyncio
    async def test_seed_is_idempotent(self, whitelist):
        for _ in range(2):
            await seed_whitelist(whitelist, admins=["root"], users=["alice", "bob"])

        assert len(await whitelist.list_users()) == 3
        assert await whitelist.is_admin("root")

    @pytest.mark.asyncio
    async def test_lookup_failure_denies_access(self, broken_factory):
        store = WhitelistStore(broken_factory)
        assert await store.is_whitelisted("alice") is False


# =============================================================================
# Events
# =============================================================================


class TestEventStore:
    @pytest.mark.asyncio
    async def test_history_is_newest_first(self, events):
        await events.log_event("alice", "10.0.0.1", EventType.CONNECT)
        await events.log_event("alice", "10.0.0.1", EventType.DISCONNECT, "Client disconnected")
        await events.log_event("bob", None, EventType.AUTH_FAIL, "not whitelisted")

        history = await events.history("alice")

        assert [e.event_type for e in history] == ["disconnect", "connect"]
        assert history[0].reason == "Client disconnected"
        assert history[0].ip == "10.0.0.1"
        assert history[0].created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_history_limit(self, events):
        for _ in range(5):
            await events.log_event("alice", None, EventType.CONNECT)
        assert len(await events.history("alice", limit=3)) == 3

    @pytest.mark.asyncio
    async def test_long_reason_is_truncated(self, events):
        await events.log_event("alice", None, EventType.KICKED, "x" * 300)
        (event,) = await events.history("alice")
        assert len(event.reason) == 100

    @pytest.mark.asyncio
    async def test_summary(self, events):
        for event_type in (
            EventType.CONNECT, EventType.CONNECT, EventType.DISCONNECT,
            EventType.AUTH_FAIL, EventType.KICKED,
        ):
            await events.log_event("alice", None, event_type)

        summary = await events.summary("alice")

        assert summary.total_connections == 2
        assert summary.total_disconnections == 1
        assert summary.auth_failures == 1
        assert summary.times_kicked == 1
        assert summary.first_seen <= summary.last_seen

    @pytest.mark.asyncio
    async def test_summary_for_unknown_user(self, events):
        summary = await events.summary("ghost")
        assert summary.total_connections == 0
        assert summary.first_seen is None

    @pytest.mark.asyncio
    async def test_recent_events_across_users(self, events):
        await events.log_event("alice", None, EventType.CONNECT)
        await events.log_event("bob", None, EventType.CONNECT)

        recent = await events.recent_events(limit=1)

        assert [e.username for e in recent] == ["bob"]

    @pytest.mark.asyncio
    async def test_hourly_counts(self, session_factory):
        now = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)
        rows = [
            (now - timedelta(minutes=10), EventType.CONNECT),
            (now - timedelta(minutes=20), EventType.CONNECT),
            (now - timedelta(minutes=25), EventType.AUTH_FAIL),
            (now - timedelta(hours=1, minutes=5), EventType.CONNECT),
            (now - timedelta(hours=30), EventType.CONNECT),
        ]
        async with session_factory() as db:
            db.add_all(
                ConnectionEvent(username="alice", event_type=event_type, created_at=created_at)
                for created_at, event_type in rows
            )
            await db.commit()

            counts = await get_hourly_counts(db, 24, now=now)

        assert [(c.hour.hour, c.event_type, c.count) for c in counts] == [
            (11, "connect", 1),
            (12, "auth_fail", 1),
            (12, "connect", 2),
        ]

    @pytest.mark.asyncio
    async def test_purge_older_than(self, events, session_factory):
        async with session_factory() as db:
            db.add(ConnectionEvent(
                username="alice",
                event_type=EventType.CONNECT,
                created_at=datetime.now(timezone.utc) - timedelta(days=8),
            ))
            await db.commit()
        await events.log_event("alice", None, EventType.DISCONNECT)

        assert await events.purge_older_than(timedelta(days=7)) == 1
        assert [e.event_type for e in await events.history("alice")] == ["disconnect"]

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, broken_factory):
        store = EventStore(broken_factory)

        await store.log_event("alice", None, EventType.CONNECT)

        assert await store.history("alice") == []
        assert await store.recent_events() == []
        assert await store.hourly_stats(24) == []
        assert (await store.summary("alice")).total_connections == 0
        assert await store.purge_older_than(timedelta(days=7)) == 0


@pytest.mark.parametrize(
    "raw,expected",
    [("24", 24), ("0", 24), ("-5", 1), ("500", 168), ("abc", 24), (None, 24), (72, 72),
     ("3.5", 3), (" 12h", 12), ("-0", 24), ("+200", 168)],
)
def test_clamp_hours_back(raw, expected):
    assert clamp_hours_back(raw) == expected
