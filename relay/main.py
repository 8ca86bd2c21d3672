"""
FastAPI application factory.

Assembles the app, registers the relay socket, and wires up lifecycle
events.  Database schema is managed by Alembic — NOT create_all.
"""

import logging

from fastapi import FastAPI

from relay.controllers.relay_controller import router as relay_router
from relay.core.config import Settings, settings
from relay.core.database import build_engine, build_session_factory
from relay.core.errors import StartupError
from relay.realtime.hub import RelayHub
from relay.services.event_service import EventStore
from relay.services.whitelist_service import WhitelistStore, seed_whitelist

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(config: Settings = settings) -> FastAPI:
    app = FastAPI(
        title=config.APP_NAME,
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    engine = build_engine(config.DATABASE_URL)
    session_factory = build_session_factory(engine)
    whitelist = WhitelistStore(session_factory)
    events = EventStore(session_factory)

    app.state.engine = engine
    app.state.hub = RelayHub(config, whitelist, events)

    # ── Register routers ─────────────────────────────────────────────
    app.include_router(relay_router)

    # ── Startup / Shutdown ───────────────────────────────────────────
    @app.on_event("startup")
    async def on_startup() -> None:
        """Verify the store, optionally seed the whitelist, start timers.

        NOTE: Database schema is managed by Alembic migrations.
        Run `alembic upgrade head` before starting the app.
        """
        try:
            await whitelist.ping()
        except Exception as exc:
            logger.error("Failed to connect to database: %s", exc)
            raise StartupError(f"Database unreachable: {exc}") from exc
        logger.info("Database connected.")

        if config.SEED_ON_START:
            await seed_whitelist(whitelist, admins=config.SEED_ADMINS, users=config.SEED_USERS)

        app.state.hub.start()
        logger.info("Relay listening on %s:%s", config.HOST, config.PORT)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await app.state.hub.shutdown()
        await engine.dispose()
        logger.info("Database engine disposed.")

    # ── Health check ─────────────────────────────────────────────────
    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
