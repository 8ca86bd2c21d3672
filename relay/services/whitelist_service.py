"""
Whitelist service — who may log in, and with which roles.

Two layers:
- Module-level query helpers that take an ``AsyncSession`` (same shape
  as every other service) and never commit.
- ``WhitelistStore``, the collaborator the relay hub talks to.  It owns
  a session factory, opens one unit of work per call and commits.

Lookup contract: ``is_*`` never raise.  A store failure is logged and
reported as ``False`` so a database hiccup denies access instead of
crashing the connection handler.  Mutations DO raise — the admin control
plane surfaces the reason to the admin.
"""

import logging

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from relay.models.user import WhitelistUser
from relay.schemas import WhitelistEntryOut

logger = logging.getLogger(__name__)


# ── Query helpers ───────────────────────────────────────────────────

async def get_user_by_username(
    username: str,
    db: AsyncSession,
) -> WhitelistUser | None:
    stmt = select(WhitelistUser).where(WhitelistUser.username == username)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_user(
    username: str,
    db: AsyncSession,
) -> WhitelistUser | None:
    stmt = select(WhitelistUser).where(
        WhitelistUser.username == username,
        WhitelistUser.is_active == True,  # noqa: E712
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def upsert_user(
    username: str,
    db: AsyncSession,
    *,
    is_broadcaster: bool | None = None,
    is_admin: bool | None = None,
) -> WhitelistUser:
    """
    Create the entry or reactivate an existing one.

    Role flags are only touched when passed explicitly, so re-adding an
    existing broadcaster as a plain user keeps their broadcaster bit.
    """
    user = await get_user_by_username(username, db)
    if user is None:
        user = WhitelistUser(
            username=username,
            is_active=True,
            is_broadcaster=bool(is_broadcaster),
            is_admin=bool(is_admin),
        )
        db.add(user)
    else:
        user.is_active = True
        if is_broadcaster is not None:
            user.is_broadcaster = is_broadcaster
        if is_admin is not None:
            user.is_admin = is_admin
    await db.flush()
    return user


async def list_active_users(
    db: AsyncSession,
    *,
    broadcasters_only: bool = False,
) -> list[WhitelistUser]:
    stmt = select(WhitelistUser).where(WhitelistUser.is_active == True)  # noqa: E712
    if broadcasters_only:
        stmt = stmt.where(WhitelistUser.is_broadcaster == True)  # noqa: E712
    stmt = stmt.order_by(WhitelistUser.created_at.desc(), WhitelistUser.username)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def _to_entry(user: WhitelistUser) -> WhitelistEntryOut:
    return WhitelistEntryOut.model_validate(user)


# ── Store ───────────────────────────────────────────────────────────

class WhitelistStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def ping(self) -> None:
        """Raise if the backing database is unreachable."""
        async with self._session_factory() as db:
            await db.execute(text("SELECT 1"))

    # ── Lookups (never raise) ───────────────────────────────────────
    async def _lookup(self, username: str) -> WhitelistUser | None:
        try:
            async with self._session_factory() as db:
                return await get_active_user(username, db)
        except SQLAlchemyError:
            logger.exception("Whitelist lookup failed for %s", username)
            return None

    async def is_whitelisted(self, username: str) -> bool:
        return await self._lookup(username) is not None

    async def is_broadcaster(self, username: str) -> bool:
        user = await self._lookup(username)
        return bool(user and user.is_broadcaster)

    async def is_admin(self, username: str) -> bool:
        user = await self._lookup(username)
        return bool(user and user.is_admin)

    # ── Mutations (raise on store failure) ──────────────────────────
    async def add_user(self, username: str) -> None:
        async with self._session_factory() as db:
            await upsert_user(username, db)
            await db.commit()
        logger.info("Whitelisted %s", username)

    async def add_broadcaster(self, username: str) -> None:
        async with self._session_factory() as db:
            await upsert_user(username, db, is_broadcaster=True)
            await db.commit()
        logger.info("Granted broadcaster to %s", username)

    async def add_admin(self, username: str) -> None:
        async with self._session_factory() as db:
            await upsert_user(username, db, is_broadcaster=True, is_admin=True)
            await db.commit()
        logger.info("Granted admin to %s", username)

    async def remove_user(self, username: str) -> bool:
        """Soft-deactivate.  Returns False when the username is unknown."""
        async with self._session_factory() as db:
            user = await get_user_by_username(username, db)
            if user is None:
                return False
            user.is_active = False
            await db.commit()
        logger.info("Deactivated %s", username)
        return True

    async def remove_broadcaster(self, username: str) -> bool:
        async with self._session_factory() as db:
            user = await get_user_by_username(username, db)
            if user is None:
                return False
            user.is_broadcaster = False
            await db.commit()
        logger.info("Revoked broadcaster from %s", username)
        return True

    async def list_users(self) -> list[WhitelistEntryOut]:
        async with self._session_factory() as db:
            users = await list_active_users(db)
            return [_to_entry(u) for u in users]

    async def list_broadcasters(self) -> list[WhitelistEntryOut]:
        async with self._session_factory() as db:
            users = await list_active_users(db, broadcasters_only=True)
            return [_to_entry(u) for u in users]


async def seed_whitelist(
    store: WhitelistStore,
    *,
    admins: list[str],
    users: list[str],
) -> None:
    """Idempotent bootstrap of the whitelist from configuration."""
    for username in admins:
        await store.add_admin(username)
    for username in users:
        await store.add_user(username)
    logger.info("Whitelist seed complete (%d admins, %d users).", len(admins), len(users))
