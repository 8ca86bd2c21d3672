"""Broadcast dispatch: validate a notice once, fan it out to matching receivers."""

import logging
from typing import TYPE_CHECKING

from relay.rbac.guards import require_broadcaster
from relay.realtime.commands import BroadcastCommand
from relay.realtime.session import Session, now_ms
from relay.realtime.validators import decode_broadcast
from relay.schemas import BroadcastData, BroadcastEnvelope, BroadcastSent

if TYPE_CHECKING:
    from relay.realtime.hub import RelayHub

logger = logging.getLogger(__name__)


def dispatch(hub: "RelayHub", session: Session, command: BroadcastCommand) -> int:
    """
    Deliver one notice to every authenticated receiver whose filters
    match its source, then confirm the recipient count to the sender.

    Validation happens before anything is sent, so a rejected notice
    reaches nobody.
    """
    require_broadcaster(session)
    request = decode_broadcast(command.body)

    data = BroadcastData.from_request(request)
    payload = BroadcastEnvelope(data=data, timestamp=now_ms()).to_wire()
    recipients = hub.fan_out(data.source.lower(), payload)

    hub.record_broadcast(
        title=data.title,
        source=data.source,
        sender=session.username,
        recipients=recipients,
    )
    logger.info("Broadcast sent: user=%s source=%s recipients=%d", session.username, data.source, recipients)
    hub.send(session, BroadcastSent(
        recipients=recipients,
        message=f"Broadcast sent to {recipients} clients",
    ))
    return recipients
