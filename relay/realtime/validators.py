"""
Field-level validation for logins and broadcasts.

Broadcast payloads are validated by the ``BroadcastRequest`` pydantic
model; this module turns the first pydantic error into the one-line
reason the broadcaster sees.
"""

import json
import re
from typing import Any

import pydantic

from relay.core.errors import ProtocolError, ValidationError
from relay.models.user import USERNAME_MAX_LENGTH
from relay.schemas import BroadcastRequest

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")


def validate_username(raw: object) -> str:
    """Return the trimmed username or raise ``ValueError`` with the reason."""
    if not isinstance(raw, str):
        raise ValueError("Username must be a string")
    username = raw.strip()
    if not username:
        raise ValueError("Username cannot be empty")
    if len(username) > USERNAME_MAX_LENGTH:
        raise ValueError(f"Username too long (max {USERNAME_MAX_LENGTH} characters)")
    if not USERNAME_PATTERN.match(username):
        raise ValueError(
            "Username can only contain letters, numbers, underscores, and hyphens"
        )
    return username


def _describe(error: dict[str, Any]) -> str:
    loc = error.get("loc") or ()
    field = str(loc[0]) if loc else ""
    kind = error.get("type")
    if kind == "missing":
        return f"Missing required field: {field}"
    if kind == "string_type":
        return f"Field '{field}' must be a string"
    if kind == "empty_field":
        return f"Field '{field}' cannot be empty"
    if kind == "invalid_url":
        return "Invalid URL format"
    if field:
        return f"Field '{field}': {error.get('msg')}"
    return str(error.get("msg"))


def validate_broadcast(payload: Any) -> BroadcastRequest:
    if not isinstance(payload, dict):
        raise ValidationError("Invalid broadcast: Message must be an object")
    try:
        return BroadcastRequest.model_validate(payload)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        raise ValidationError(f"Invalid broadcast: {_describe(first)}") from None


def decode_broadcast(body: str) -> BroadcastRequest:
    """JSON text → validated request."""
    try:
        payload = json.loads(body)
    except (ValueError, RecursionError):
        raise ProtocolError("Invalid JSON format") from None
    return validate_broadcast(payload)
