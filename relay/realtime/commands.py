"""
Frame → command parsing.

``parse_frame`` is the single parse step for inbound text.  It never
raises and never looks at session state: whether a command is allowed
(authenticated? broadcaster? admin?) is decided by the hub afterwards.

Accepted forms:
    login <username> [filters]
    stats
    admin <verb> [<password>] [<target>]
    broadcast <json>
    <bare JSON value>            (implicit broadcast)
"""

import enum
import json
import re
from dataclasses import dataclass
from typing import Union

from relay.realtime.session import RECEIVE_ALL, SourceFilter

_LOGIN_WITH_FILTERS = re.compile(r"^(\S+)\s*\[([^\]]*)\]$")


class AdminVerb(str, enum.Enum):
    ADD_USER = "add_user"
    REMOVE_USER = "remove_user"
    ADD_BROADCASTER = "add_broadcaster"
    REMOVE_BROADCASTER = "remove_broadcaster"
    ADD_ADMIN = "add_admin"
    KICK = "kick"
    BAN = "ban"
    USER_DETAIL = "user_detail"
    CONNECTION_STATS = "connection_stats"
    LIST_USERS = "list_users"
    LIST_BROADCASTERS = "list_broadcasters"

    @property
    def needs_target(self) -> bool:
        return self not in _OPTIONAL_TARGET


_OPTIONAL_TARGET = frozenset({
    AdminVerb.CONNECTION_STATS,
    AdminVerb.LIST_USERS,
    AdminVerb.LIST_BROADCASTERS,
})


@dataclass(frozen=True)
class LoginCommand:
    username: str
    filters: SourceFilter = RECEIVE_ALL


@dataclass(frozen=True)
class StatsCommand:
    pass


@dataclass(frozen=True)
class AdminCommand:
    verb: AdminVerb | None  # None → unrecognised ``raw_verb``
    raw_verb: str
    args: tuple[str, ...] = ()


@dataclass(frozen=True)
class BroadcastCommand:
    body: str  # JSON text, decoded by the dispatcher


@dataclass(frozen=True)
class UnknownCommand:
    text: str


Command = Union[LoginCommand, StatsCommand, AdminCommand, BroadcastCommand, UnknownCommand]


def parse_filters(raw: str) -> SourceFilter:
    raw = raw.strip()
    if raw == "":
        return SourceFilter.nothing()
    if raw == "*":
        return SourceFilter.all()
    return SourceFilter.of(raw.split(","))


def parse_login(content: str) -> LoginCommand:
    """
    ``name``           → receive all
    ``name []``        → receive nothing
    ``name [*]``       → receive all
    ``name [a, B, ]``  → {a, b}
    """
    content = content.strip()
    match = _LOGIN_WITH_FILTERS.match(content)
    if match is None:
        return LoginCommand(username=content, filters=RECEIVE_ALL)
    return LoginCommand(username=match.group(1), filters=parse_filters(match.group(2)))


def parse_admin(content: str) -> AdminCommand:
    parts = content.split()
    raw_verb = parts[0] if parts else ""
    try:
        verb: AdminVerb | None = AdminVerb(raw_verb)
    except ValueError:
        verb = None
    return AdminCommand(verb=verb, raw_verb=raw_verb, args=tuple(parts[1:]))


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except (ValueError, RecursionError):
        return False
    return True


def parse_frame(text: str) -> Command:
    text = text.strip()
    if text.startswith("login "):
        return parse_login(text[len("login "):])
    if text == "stats":
        return StatsCommand()
    if text.startswith("admin "):
        return parse_admin(text[len("admin "):])
    if text.startswith("broadcast "):
        return BroadcastCommand(body=text[len("broadcast "):].strip())
    if _is_json(text):
        return BroadcastCommand(body=text)
    return UnknownCommand(text=text)
