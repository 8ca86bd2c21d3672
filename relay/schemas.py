"""
Pydantic schemas for the wire protocol and store read models.

Kept in a single file for now — split per-domain when it grows.
Every server→client frame is one envelope model with a literal ``type``;
JSON keys are camelCase on the wire (``isBroadcaster``, ``sourceFilters``).
"""

from datetime import datetime
from typing import Literal

from pydantic import (
    AnyUrl,
    BaseModel,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

SANITIZED_FIELD_MAX_LENGTH = 1000

_ABSOLUTE_URL = TypeAdapter(AnyUrl)


class WireModel(BaseModel):
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
    }

    def to_wire(self) -> str:
        return self.model_dump_json(by_alias=True)


# ── Broadcast request ───────────────────────────────────────────────
class BroadcastRequest(BaseModel):
    """Inbound notice.  Field order is the order errors are reported in."""

    title: str
    url: str
    icon: str
    source: str
    image: str

    @field_validator("title", "url", "icon", "source", "image")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise PydanticCustomError("empty_field", "cannot be empty")
        return value

    @model_validator(mode="after")
    def _url_is_absolute(self) -> "BroadcastRequest":
        # Runs only once every field is present and non-empty.
        try:
            _ABSOLUTE_URL.validate_python(self.url.strip())
        except ValidationError:
            raise PydanticCustomError("invalid_url", "Invalid URL format") from None
        return self


def sanitize(value: str) -> str:
    return value.strip()[:SANITIZED_FIELD_MAX_LENGTH]


# ── Store read models ───────────────────────────────────────────────
class WhitelistEntryOut(WireModel):
    username: str
    is_broadcaster: bool
    is_admin: bool
    created_at: datetime


class ConnectionEventOut(WireModel):
    id: int
    username: str
    ip: str | None = None
    event_type: str
    reason: str | None = None
    created_at: datetime


class ConnectionSummary(WireModel):
    total_connections: int = 0
    total_disconnections: int = 0
    auth_failures: int = 0
    times_kicked: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None


class HourlyCount(WireModel):
    hour: datetime
    event_type: str
    count: int


# ── Envelopes ───────────────────────────────────────────────────────
class InfoMessage(WireModel):
    type: Literal["info"] = "info"
    message: str


class ErrorMessage(WireModel):
    type: Literal["error"] = "error"
    message: str


class PingMessage(WireModel):
    type: Literal["ping"] = "ping"
    timestamp: int


class AuthSuccess(WireModel):
    type: Literal["auth_success"] = "auth_success"
    username: str
    is_broadcaster: bool
    is_admin: bool
    source_filters: list[str]
    message: str


class BroadcastData(WireModel):
    title: str
    url: str
    icon: str
    source: str
    image: str

    @classmethod
    def from_request(cls, request: BroadcastRequest) -> "BroadcastData":
        return cls(
            title=sanitize(request.title),
            url=sanitize(request.url),
            icon=sanitize(request.icon),
            source=sanitize(request.source),
            image=sanitize(request.image),
        )


class BroadcastEnvelope(WireModel):
    type: Literal["broadcast"] = "broadcast"
    data: BroadcastData
    timestamp: int


class BroadcastSent(WireModel):
    type: Literal["broadcast_sent"] = "broadcast_sent"
    recipients: int
    message: str


class AdminResponse(WireModel):
    type: Literal["admin_response"] = "admin_response"
    command: str
    target: str | None = None
    message: str
    users: list[WhitelistEntryOut] | None = None


class StatusUpdate(WireModel):
    type: Literal["status_update"] = "status_update"
    is_broadcaster: bool
    is_admin: bool
    message: str


class UserDetail(WireModel):
    type: Literal["user_detail"] = "user_detail"
    username: str
    active_connections: int
    summary: ConnectionSummary
    history: list[ConnectionEventOut]


class ConnectionStats(WireModel):
    type: Literal["connection_stats"] = "connection_stats"
    hours_back: int
    hourly: list[HourlyCount]
    recent_events: list[ConnectionEventOut]


# ── Stats ───────────────────────────────────────────────────────────
class RecentBroadcast(WireModel):
    id: int
    title: str
    source: str
    sender: str
    recipient_count: int
    timestamp: int


class ConnectedUser(WireModel):
    username: str
    is_broadcaster: bool
    is_admin: bool
    source_filters: list[str]
    ip: str | None = None
    connected_for: int
    messages_received: int


class StatsSnapshot(WireModel):
    current_connections: int
    authenticated_users: int
    broadcasters: int
    admins: int
    total_connections: int
    total_disconnections: int
    total_broadcasts: int
    total_messages_delivered: int
    total_auth_failures: int
    peak_connections: int
    uptime: float
    server_started_at: int
    connections_by_user: dict[str, int]
    recent_broadcasts: list[RecentBroadcast]
    connected_users: list[ConnectedUser]


class StatsEnvelope(WireModel):
    type: Literal["stats"] = "stats"
    data: StatsSnapshot
