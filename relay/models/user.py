"""
Whitelist user model.

Design decisions:
- A row is never deleted.  "Removing" a user flips ``is_active`` so the
  username keeps its history and can be reactivated by ``add_user``.
- Roles are two plain booleans: the relay has exactly two privileges
  (broadcast, administer) and no plans for more.
"""

from sqlalchemy import Boolean, String, false, true
from sqlalchemy.orm import Mapped, mapped_column

from relay.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

USERNAME_MAX_LENGTH = 50


class WhitelistUser(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "whitelist_users"

    username: Mapped[str] = mapped_column(
        String(USERNAME_MAX_LENGTH), unique=True, index=True, nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=true(), nullable=False,
    )
    is_broadcaster: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False,
    )
    is_admin: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=false(), nullable=False,
    )

    def __repr__(self) -> str:
        return f"<WhitelistUser {self.username} active={self.is_active}>"
