"""
WebSocket transport — Starlette socket behind the hub's ``Transport``.

Sends are fire-and-forget: ``send`` only enqueues onto a bounded
per-connection queue, and a writer task drains it onto the socket.  A
slow receiver therefore never blocks a broadcast to anyone else.  When
its queue is full, new frames for that receiver are dropped and logged.
The bound is a memory guard; delivery is best-effort either way.

``close`` is queued behind pending frames so a final error notice goes
out before the close frame.
"""

import asyncio
import contextlib
import ipaddress
import logging

from starlette.websockets import WebSocket, WebSocketState

from relay.realtime.session import now_ms
from relay.schemas import PingMessage

logger = logging.getLogger(__name__)

# RFC 6455 caps the close reason at 123 bytes.
MAX_CLOSE_REASON_BYTES = 123


class _Close:
    def __init__(self, code: int, reason: str):
        self.code = code
        self.reason = reason.encode("utf-8")[:MAX_CLOSE_REASON_BYTES].decode("utf-8", "ignore")


def normalize_ip(value: str | None) -> str | None:
    """Strip IPv4-mapped IPv6 notation (``::ffff:1.2.3.4`` → ``1.2.3.4``)."""
    if not value:
        return None
    value = value.strip()
    try:
        addr = ipaddress.ip_address(value)
    except ValueError:
        if value.lower().startswith("::ffff:"):
            return value[7:]
        return value
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return str(addr.ipv4_mapped)
    return str(addr)


def resolve_remote_ip(forwarded_for: str | None, peer_host: str | None) -> str | None:
    """First hop of ``X-Forwarded-For`` if present, else the socket peer."""
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return normalize_ip(first_hop)
    return normalize_ip(peer_host)


class WebSocketTransport:
    def __init__(self, websocket: WebSocket, *, queue_size: int = 256):
        self._websocket = websocket
        self._queue: asyncio.Queue[str | _Close] = asyncio.Queue(maxsize=queue_size)
        self._open = True
        self._writer: asyncio.Task | None = None
        self.dropped = 0

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        self._writer = asyncio.get_running_loop().create_task(self._drain())

    def send(self, payload: str) -> None:
        if not self._open:
            return
        try:
            self._queue.put_nowait(payload)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Outbound queue full; dropped frame (%d dropped so far)", self.dropped)

    def ping(self) -> None:
        self.send(PingMessage(timestamp=now_ms()).to_wire())

    def close(self, code: int, reason: str) -> None:
        if not self._open:
            return
        self._open = False
        item = _Close(code, reason)
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            # Backlog is moot once we're closing; keep only the close.
            while not self._queue.empty():
                self._queue.get_nowait()
            self._queue.put_nowait(item)

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            if isinstance(item, _Close):
                if self._websocket.application_state == WebSocketState.CONNECTED:
                    try:
                        await self._websocket.close(code=item.code, reason=item.reason)
                    except Exception as exc:
                        logger.info("Close failed (peer already gone): %s", exc)
                return
            try:
                await self._websocket.send_text(item)
            except Exception as exc:
                # Peer is gone; the receive loop will report the disconnect.
                logger.info("Send failed, stopping writer: %s", exc)
                self._open = False
                return

    async def finish(self, timeout: float = 5.0) -> None:
        """
        Stop the writer.  A closing transport gets ``timeout`` seconds to
        flush its final frames and the close; otherwise pending frames
        are discarded.
        """
        if self._writer is None:
            return
        if self._open:
            self._open = False
            self._writer.cancel()
        else:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(asyncio.shield(self._writer), timeout)
            self._writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._writer
        self._writer = None
