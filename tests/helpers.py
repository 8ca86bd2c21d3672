"""
In-memory stand-ins for the relay's collaborators.

The hub only needs objects with the same method names as
``WhitelistStore``, ``EventStore`` and a socket transport, so the tests
drive it with these fakes instead of a database and a real socket.
"""

import asyncio
import json
from datetime import datetime, timezone

from relay.core.config import Settings
from relay.schemas import ConnectionSummary, WhitelistEntryOut


def make_settings(**overrides) -> Settings:
    values = {"ADMIN_PASSWORD": "secret"}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeTransport:
    def __init__(self):
        self.frames: list[dict] = []
        self.pings = 0
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def send(self, payload: str) -> None:
        self.frames.append(json.loads(payload))

    def ping(self) -> None:
        self.pings += 1

    def close(self, code: int, reason: str) -> None:
        if not self._open:
            return
        self._open = False
        self.close_code = code
        self.close_reason = reason

    def of_type(self, frame_type: str) -> list[dict]:
        return [f for f in self.frames if f["type"] == frame_type]

    @property
    def last(self) -> dict:
        return self.frames[-1]


class FakeWhitelistStore:
    """Dict-backed whitelist.  Lookups yield once, like a real round trip."""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.fail_mutations = False

    def allow(self, username: str, *, broadcaster: bool = False, admin: bool = False) -> None:
        self.users[username] = {
            "active": True,
            "broadcaster": broadcaster,
            "admin": admin,
            "created_at": datetime.now(timezone.utc),
        }

    async def ping(self) -> None:
        return None

    async def _lookup(self, username: str) -> dict | None:
        await asyncio.sleep(0)
        entry = self.users.get(username)
        return entry if entry and entry["active"] else None

    async def is_whitelisted(self, username: str) -> bool:
        return await self._lookup(username) is not None

    async def is_broadcaster(self, username: str) -> bool:
        entry = await self._lookup(username)
        return bool(entry and entry["broadcaster"])

    async def is_admin(self, username: str) -> bool:
        entry = await self._lookup(username)
        return bool(entry and entry["admin"])

    def _check(self) -> None:
        if self.fail_mutations:
            raise RuntimeError("database is locked")

    async def _upsert(self, username: str, **roles) -> None:
        self._check()
        entry = self.users.get(username)
        if entry is None:
            self.allow(username, **roles)
            return
        entry["active"] = True
        entry.update(roles)

    async def add_user(self, username: str) -> None:
        await self._upsert(username)

    async def add_broadcaster(self, username: str) -> None:
        await self._upsert(username, broadcaster=True)

    async def add_admin(self, username: str) -> None:
        await self._upsert(username, broadcaster=True, admin=True)

    async def remove_user(self, username: str) -> bool:
        self._check()
        entry = self.users.get(username)
        if entry is None:
            return False
        entry["active"] = False
        return True

    async def remove_broadcaster(self, username: str) -> bool:
        self._check()
        entry = self.users.get(username)
        if entry is None:
            return False
        entry["broadcaster"] = False
        return True

    def _entries(self, *, broadcasters_only: bool = False) -> list[WhitelistEntryOut]:
        return [
            WhitelistEntryOut(
                username=name,
                is_broadcaster=entry["broadcaster"],
                is_admin=entry["admin"],
                created_at=entry["created_at"],
            )
            for name, entry in self.users.items()
            if entry["active"] and (entry["broadcaster"] or not broadcasters_only)
        ]

    async def list_users(self) -> list[WhitelistEntryOut]:
        return self._entries()

    async def list_broadcasters(self) -> list[WhitelistEntryOut]:
        return self._entries(broadcasters_only=True)


class FakeEventStore:
    def __init__(self):
        self.events: list[tuple] = []
        self.hours_requested: list[int] = []
        self.purges: list = []

    async def log_event(self, username, ip, event_type, reason=None) -> None:
        self.events.append((username, ip, event_type, reason))

    def of_type(self, event_type) -> list[tuple]:
        return [e for e in self.events if e[2] == event_type]

    async def history(self, username, limit=50):
        return []

    async def summary(self, username):
        connects = sum(1 for e in self.events if e[0] == username and e[2].value == "connect")
        return ConnectionSummary(total_connections=connects)

    async def recent_events(self, limit=20):
        return []

    async def hourly_stats(self, hours_back=24):
        self.hours_requested.append(hours_back)
        return []

    async def purge_older_than(self, age):
        self.purges.append(age)
        return 0


async def connect_client(hub, username=None, filters=None, ip="127.0.0.1"):
    """Open a fake connection and, if ``username`` is given, log it in."""
    transport = FakeTransport()
    session = hub.connect(transport, ip)
    if username is not None:
        frame = f"login {username}"
        if filters is not None:
            frame += f" [{filters}]"
        await hub.handle_frame(session.id, frame)
    return session, transport
