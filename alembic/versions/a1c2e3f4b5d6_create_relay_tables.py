"""create whitelist_users and connection_events tables

Revision ID: a1c2e3f4b5d6
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a1c2e3f4b5d6"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

EVENT_TYPES = ("connect", "disconnect", "auth_fail", "kicked", "banned")


def upgrade() -> None:
    """Create the whitelist and the connection history tables."""
    op.create_table(
        "whitelist_users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column(
            "is_active",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column(
            "is_broadcaster",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "is_admin",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_whitelist_users_username", "whitelist_users", ["username"], unique=True,
    )

    op.create_table(
        "connection_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column(
            "event_type",
            sa.Enum(*EVENT_TYPES, name="connection_event_type"),
            nullable=False,
        ),
        sa.Column("disconnect_reason", sa.String(length=100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_connection_events_username", "connection_events", ["username"])
    op.create_index("ix_connection_events_event_type", "connection_events", ["event_type"])
    op.create_index("ix_connection_events_created_at", "connection_events", ["created_at"])


def downgrade() -> None:
    """Drop both relay tables."""
    op.drop_index("ix_connection_events_created_at", table_name="connection_events")
    op.drop_index("ix_connection_events_event_type", table_name="connection_events")
    op.drop_index("ix_connection_events_username", table_name="connection_events")
    op.drop_table("connection_events")
    sa.Enum(name="connection_event_type").drop(op.get_bind(), checkfirst=True)

    op.drop_index("ix_whitelist_users_username", table_name="whitelist_users")
    op.drop_table("whitelist_users")
