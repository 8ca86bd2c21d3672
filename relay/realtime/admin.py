"""
Admin control plane.

``admin <verb> <password> <target>`` from an authenticated admin session.
Verbs mutate the whitelist store and, where the change concerns someone
already connected, the live sessions as well (role pushes, kicks).

Order of checks:
    admin role → admin password → known verb → target present → run

Any exception raised by the store while a verb runs is reported to the
admin as ``Admin command failed: <reason>``; it never reaches the hub.
"""

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from relay.core.errors import AdminCommandError, RelayError
from relay.models.connection_event import EventType
from relay.rbac.guards import check_admin_password, require_admin
from relay.realtime.commands import AdminCommand, AdminVerb
from relay.realtime.session import Session
from relay.schemas import AdminResponse, ConnectionStats, UserDetail
from relay.services.event_service import DEFAULT_HOURS_BACK, clamp_hours_back

if TYPE_CHECKING:
    from relay.realtime.hub import RelayHub

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
RECENT_EVENTS_LIMIT = 20
USAGE = "Usage: admin <command> <password> <username>"

Handler = Callable[[Session, str | None], Awaitable[None]]


def split_admin_args(
    args: tuple[str, ...],
    password_configured: bool,
) -> tuple[str | None, str | None]:
    """
    Resolve ``(password, target)`` from the words after the verb.

    With a configured secret the first word is always the password.
    Without one the password slot is optional: a single word is the
    target, two words are ``<ignored password> <target>``.
    """
    if password_configured or len(args) >= 2:
        password = args[0] if args else None
        target = args[1] if len(args) > 1 else None
        return password, target
    return None, (args[0] if args else None)


class AdminControlPlane:
    def __init__(self, hub: "RelayHub"):
        self._hub = hub
        self._handlers: dict[AdminVerb, Handler] = {
            AdminVerb.ADD_USER: self._add_user,
            AdminVerb.REMOVE_USER: self._remove_user,
            AdminVerb.ADD_BROADCASTER: self._add_broadcaster,
            AdminVerb.REMOVE_BROADCASTER: self._remove_broadcaster,
            AdminVerb.ADD_ADMIN: self._add_admin,
            AdminVerb.KICK: self._kick,
            AdminVerb.BAN: self._ban,
            AdminVerb.USER_DETAIL: self._user_detail,
            AdminVerb.CONNECTION_STATS: self._connection_stats,
            AdminVerb.LIST_USERS: self._list_users,
            AdminVerb.LIST_BROADCASTERS: self._list_broadcasters,
        }
        missing = set(AdminVerb) - set(self._handlers)
        if missing:
            raise RuntimeError(f"admin verbs without a handler: {sorted(v.value for v in missing)}")

    async def execute(self, session: Session, command: AdminCommand) -> None:
        require_admin(session)
        secret = self._hub.settings.ADMIN_PASSWORD
        password, target = split_admin_args(command.args, bool(secret))
        check_admin_password(session, password, secret)

        if command.verb is None:
            raise AdminCommandError(f"Unknown admin command: {command.raw_verb}")
        if command.verb.needs_target and not target:
            raise AdminCommandError(USAGE)

        logger.info(
            "Admin %s: %s %s", session.username, command.verb.value, target or "",
        )
        try:
            await self._handlers[command.verb](session, target)
        except RelayError:
            raise
        except Exception as exc:
            logger.exception("Admin command %s failed", command.verb.value)
            raise AdminCommandError(f"Admin command failed: {exc}") from exc

    def _respond(
        self,
        session: Session,
        verb: AdminVerb,
        target: str | None,
        message: str,
        **extra,
    ) -> None:
        self._hub.send(session, AdminResponse(
            command=verb.value, target=target, message=message, **extra,
        ))

    # ── Whitelist ───────────────────────────────────────────────────
    async def _add_user(self, session: Session, target: str | None) -> None:
        await self._hub.whitelist.add_user(target)
        self._respond(session, AdminVerb.ADD_USER, target, f"User {target} added to whitelist")

    async def _remove_user(self, session: Session, target: str | None) -> None:
        removed = await self._hub.whitelist.remove_user(target)
        message = (
            f"User {target} removed from whitelist" if removed
            else f"User {target} is not on the whitelist"
        )
        self._respond(session, AdminVerb.REMOVE_USER, target, message)

    async def _list_users(self, session: Session, target: str | None) -> None:
        users = await self._hub.whitelist.list_users()
        self._respond(
            session, AdminVerb.LIST_USERS, None, f"{len(users)} active users", users=users,
        )

    async def _list_broadcasters(self, session: Session, target: str | None) -> None:
        users = await self._hub.whitelist.list_broadcasters()
        self._respond(
            session, AdminVerb.LIST_BROADCASTERS, None, f"{len(users)} active broadcasters", users=users,
        )

    # ── Roles (pushed live) ─────────────────────────────────────────
    async def _add_broadcaster(self, session: Session, target: str | None) -> None:
        await self._hub.whitelist.add_broadcaster(target)
        updated = self._hub.push_role_update(target, is_broadcaster=True)
        self._respond(
            session, AdminVerb.ADD_BROADCASTER, target,
            f"{target} granted broadcaster permissions ({updated} live sessions updated)",
        )

    async def _remove_broadcaster(self, session: Session, target: str | None) -> None:
        await self._hub.whitelist.remove_broadcaster(target)
        updated = self._hub.push_role_update(target, is_broadcaster=False)
        self._respond(
            session, AdminVerb.REMOVE_BROADCASTER, target,
            f"{target} removed from broadcasters ({updated} live sessions updated)",
        )

    async def _add_admin(self, session: Session, target: str | None) -> None:
        await self._hub.whitelist.add_admin(target)
        updated = self._hub.push_role_update(target, is_broadcaster=True, is_admin=True)
        self._respond(
            session, AdminVerb.ADD_ADMIN, target,
            f"{target} granted admin permissions ({updated} live sessions updated)",
        )

    # ── Live sessions ───────────────────────────────────────────────
    async def _evict_and_log(
        self,
        admin: Session,
        target: str,
        event_type: EventType,
        notice: str,
    ) -> int:
        # Close everything first (synchronously), then write history.
        evicted = self._hub.evict(
            self._hub.registry.sessions_for(target), notice, reason=event_type.value,
        )
        for victim in evicted:
            await self._hub.events.log_event(
                target, victim.remote_ip, event_type, f"by {admin.username}",
            )
        return len(evicted)

    async def _kick(self, session: Session, target: str | None) -> None:
        if not self._hub.registry.sessions_for(target):
            raise AdminCommandError(f"User {target} is not connected")
        kicked = await self._evict_and_log(
            session, target, EventType.KICKED, "You have been kicked by an admin.",
        )
        self._respond(session, AdminVerb.KICK, target, f"Kicked {kicked} session(s) of {target}")

    async def _ban(self, session: Session, target: str | None) -> None:
        await self._hub.whitelist.remove_user(target)
        banned = await self._evict_and_log(
            session, target, EventType.BANNED, "You have been banned.",
        )
        self._respond(
            session, AdminVerb.BAN, target,
            f"User {target} banned ({banned} session(s) disconnected)",
        )

    # ── History ─────────────────────────────────────────────────────
    async def _user_detail(self, session: Session, target: str | None) -> None:
        summary = await self._hub.events.summary(target)
        history = await self._hub.events.history(target, HISTORY_LIMIT)
        self._hub.send(session, UserDetail(
            username=target,
            active_connections=self._hub.registry.count_by_username(target),
            summary=summary,
            history=history,
        ))

    async def _connection_stats(self, session: Session, target: str | None) -> None:
        hours = clamp_hours_back(target) if target else DEFAULT_HOURS_BACK
        hourly = await self._hub.events.hourly_stats(hours)
        recent = await self._hub.events.recent_events(RECENT_EVENTS_LIMIT)
        self._hub.send(session, ConnectionStats(
            hours_back=hours, hourly=hourly, recent_events=recent,
        ))
