"""
Role guards — the relay's permission enforcement.

Each guard takes the live ``Session`` and raises a ``RelayError`` the
hub reports back to the caller.  Roles are read from the session, which
holds the snapshot taken at login plus any live update pushed by the
admin control plane; guards never hit the store.

Usage in a handler:
    require_broadcaster(session)
    ...  # session is authenticated and may broadcast
"""

import hmac
import logging

from relay.core.errors import AuthError, PermissionDenied
from relay.realtime.session import Session

logger = logging.getLogger("rbac")


def require_authenticated(session: Session) -> None:
    if not session.authenticated:
        raise AuthError("Not authenticated. Use: login <username>")


def require_broadcaster(session: Session) -> None:
    require_authenticated(session)
    if not session.is_broadcaster:
        logger.warning("Broadcast denied for %s (session %s)", session.username, session.id)
        raise PermissionDenied("Permission denied. Only broadcasters can send messages.")


def require_admin(session: Session) -> None:
    require_authenticated(session)
    if not session.is_admin:
        logger.warning("Admin command denied for %s (session %s)", session.username, session.id)
        raise PermissionDenied("Permission denied. Admin access required.")


def check_admin_password(
    session: Session,
    supplied: str | None,
    configured: str | None,
) -> None:
    """Second factor for admin verbs.  No configured secret → no check."""
    if not configured:
        return
    if supplied is None or not hmac.compare_digest(
        supplied.encode("utf-8"), configured.encode("utf-8"),
    ):
        logger.warning("Bad admin password from %s (session %s)", session.username, session.id)
        raise PermissionDenied("Invalid admin password.")
