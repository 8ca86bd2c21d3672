"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from relay.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from relay.models.connection_event import ConnectionEvent, EventType
from relay.models.user import WhitelistUser

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "WhitelistUser",
    "ConnectionEvent",
    "EventType",
]
