"""
Connection event model — append-only history of session outcomes.

Rows are written best-effort by the relay and purged after the
retention window (see ``event_service.purge_older_than``).
"""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from relay.models.base import Base, utcnow
from relay.models.user import USERNAME_MAX_LENGTH


class EventType(str, enum.Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    AUTH_FAIL = "auth_fail"
    KICKED = "kicked"
    BANNED = "banned"


class ConnectionEvent(Base):
    __tablename__ = "connection_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String(USERNAME_MAX_LENGTH), nullable=False, index=True,
    )
    ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    event_type: Mapped[EventType] = mapped_column(
        Enum(
            EventType,
            name="connection_event_type",
            values_callable=lambda enum_cls: [e.value for e in enum_cls],
        ),
        nullable=False,
        index=True,
    )
    disconnect_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_connection_events_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ConnectionEvent {self.username} {self.event_type.value}>"
