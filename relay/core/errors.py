"""
Relay error taxonomy.

Every per-frame failure is a ``RelayError``.  The hub catches it, turns
``message`` into an ``error`` envelope for the offending connection and,
when ``close_code`` is set, closes that connection afterwards.  Nothing
raised while handling a frame is allowed to take the process down.
"""

# WebSocket close codes (RFC 6455 §7.4.1)
POLICY_VIOLATION = 1008
GOING_AWAY = 1001
INTERNAL_ERROR = 1011


class RelayError(Exception):
    """Base class — carries the user-facing message and optional close code."""

    close_code: int | None = None

    def __init__(self, message: str, *, close_code: int | None = None):
        super().__init__(message)
        self.message = message
        if close_code is not None:
            self.close_code = close_code


class ProtocolError(RelayError):
    """Oversized frame or unparseable payload.  Connection stays open."""


class AuthError(RelayError):
    """Login failure.  Whitelist / cap / timeout failures also close."""

    def __init__(
        self,
        message: str,
        *,
        close_code: int | None = None,
        username: str | None = None,
        counts_as_failure: bool = False,
    ):
        super().__init__(message, close_code=close_code)
        self.username = username
        self.counts_as_failure = counts_as_failure


class PermissionDenied(RelayError):
    """Missing broadcaster/admin role or wrong admin password."""


class ValidationError(RelayError):
    """Broadcast payload rejected; message names the first offending field."""


class RateLimitError(RelayError):
    """Sliding-window limit exceeded; the frame is dropped."""


class AdminCommandError(RelayError):
    """Store failure (or bad usage) while running an admin verb."""


class StartupError(RelayError):
    """Fatal: the store could not be reached before serving."""
