"""
Relay controller — the WebSocket endpoint.

Controllers are THIN: this one accepts the socket, wraps it in a
transport, and feeds every text frame to the hub.  All protocol logic
lives in ``relay.realtime``.
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from relay.core.errors import INTERNAL_ERROR
from relay.realtime.hub import RelayHub
from relay.realtime.transport import WebSocketTransport, resolve_remote_ip

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Relay"])


def _frame_text(message: dict) -> str | None:
    text = message.get("text")
    if text is not None:
        return text
    data = message.get("bytes")
    if data is not None:
        return data.decode("utf-8", errors="replace")
    return None


@router.websocket("/")
async def relay_socket(websocket: WebSocket):
    hub: RelayHub = websocket.app.state.hub
    await websocket.accept()

    peer_host = websocket.client.host if websocket.client else None
    remote_ip = resolve_remote_ip(websocket.headers.get("x-forwarded-for"), peer_host)

    transport = WebSocketTransport(websocket, queue_size=hub.settings.OUTBOUND_QUEUE_SIZE)
    transport.start()
    session = hub.connect(transport, remote_ip)
    reason = "Client disconnected"
    try:
        while transport.is_open:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = _frame_text(message)
            if text is None:
                continue
            await hub.handle_frame(session.id, text)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Connection handler failed: session=%s", session.id)
        reason = "Server error"
        transport.close(INTERNAL_ERROR, reason)
    finally:
        hub.disconnect(session.id, reason)
        await transport.finish()
