"""
Async engine & session factory.

The engine is created once per application (see ``relay.main``) and
handed to the stores, so tests can point the whole stack at a
throwaway database without touching module globals.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from relay.models import Base


def build_engine(database_url: str, *, echo: bool = False) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table directly.

    Production schemas are managed by Alembic; this is for tests and
    throwaway local databases.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
