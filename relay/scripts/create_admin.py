"""
One-time bootstrap script — whitelists the first admin.

Usage:
    python -m relay.scripts.create_admin

You only need this ONCE. After the first admin exists, every other
user is whitelisted from a relay session with ``admin add_user``.
"""

import asyncio

from relay.core.config import settings
from relay.core.database import build_engine, build_session_factory
from relay.realtime.validators import validate_username
from relay.services.whitelist_service import WhitelistStore, get_user_by_username


async def create_admin() -> None:
    engine = build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)
    store = WhitelistStore(session_factory)

    # ── Collect input ────────────────────────────────────────────────
    print("\n🔧  Broadcast Relay — First Admin Setup\n")
    raw = input("  Admin username: ")

    try:
        username = validate_username(raw)
    except ValueError as exc:
        print(f"\n❌  {exc}.")
        await engine.dispose()
        return

    # ── Check for existing admin ─────────────────────────────────────
    async with session_factory() as session:
        existing = await get_user_by_username(username, session)

    if existing is not None and existing.is_active and existing.is_admin:
        print(f"\n❌  '{username}' is already an admin.")
        await engine.dispose()
        return

    await store.add_admin(username)

    print("\n✅  Admin whitelisted successfully!")
    print(f"    Username: {username}")
    print("    Roles:    broadcaster, admin")
    if not settings.ADMIN_PASSWORD:
        print("\n   ⚠️  ADMIN_PASSWORD is not set; admin commands will not ask for one.")
    print(f"\n   Connect and send: login {username}\n")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_admin())
