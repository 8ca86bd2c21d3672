"""
Login — the Connected → Authenticated transition.

Checks, in order:
  1. username format          → error, connection kept
  2. whitelisted and active   → error, policy-violation close, auth_fail
  3. under the per-user cap   → error, policy-violation close, auth_fail
  4. role flags from the store

Every store call happens BEFORE the cap check.  The cap check and the
state change then run as one synchronous step, so two logins for the
same username racing through their lookups cannot both squeeze under
the cap.
"""

import logging
from typing import TYPE_CHECKING

from relay.core.errors import POLICY_VIOLATION, AuthError
from relay.models.connection_event import EventType
from relay.realtime.commands import LoginCommand
from relay.realtime.session import Session
from relay.realtime.validators import validate_username
from relay.schemas import AuthSuccess

if TYPE_CHECKING:
    from relay.realtime.hub import RelayHub

logger = logging.getLogger(__name__)


def _welcome(username: str, filters: list[str]) -> str:
    shown = ", ".join(filters) if filters else "none"
    return f"Welcome, {username}! Filters: {shown}"


async def login(hub: "RelayHub", session: Session, command: LoginCommand) -> None:
    if session.authenticated:
        raise AuthError("Already authenticated")

    try:
        username = validate_username(command.username)
    except ValueError as exc:
        logger.warning("Authentication failed: session=%s reason=%s", session.id, exc)
        raise AuthError(f"Invalid username: {exc}") from None

    whitelisted = await hub.whitelist.is_whitelisted(username)
    if not whitelisted:
        logger.warning("Authentication failed: session=%s user=%s not whitelisted", session.id, username)
        raise AuthError(
            "Access denied. Username not whitelisted.",
            close_code=POLICY_VIOLATION,
            username=username,
            counts_as_failure=True,
        )

    is_broadcaster = await hub.whitelist.is_broadcaster(username)
    is_admin = await hub.whitelist.is_admin(username)

    # ── No awaits from here until the state change ───────────────────
    if hub.registry.find(session.id) is not session:
        logger.info("Session %s closed during login; dropping result", session.id)
        return
    if session.authenticated:
        raise AuthError("Already authenticated")

    cap = hub.settings.MAX_CONNECTIONS_PER_USER
    if hub.registry.count_by_username(username) >= cap:
        logger.warning("Authentication failed: session=%s user=%s at connection cap", session.id, username)
        raise AuthError(
            f"Max connections reached ({cap}) for {username}.",
            close_code=POLICY_VIOLATION,
            username=username,
            counts_as_failure=True,
        )

    session.authenticate(
        username,
        is_broadcaster=is_broadcaster,
        is_admin=is_admin,
        source_filters=command.filters,
    )
    hub.note_authenticated()
    filters = session.source_filters.to_list()
    logger.info(
        "Authentication successful: session=%s user=%s broadcaster=%s admin=%s filters=%s",
        session.id, username, is_broadcaster, is_admin, filters,
    )
    hub.send(session, AuthSuccess(
        username=username,
        is_broadcaster=is_broadcaster,
        is_admin=is_admin,
        source_filters=filters,
        message=_welcome(username, filters),
    ))
    await hub.events.log_event(username, session.remote_ip, EventType.CONNECT)
