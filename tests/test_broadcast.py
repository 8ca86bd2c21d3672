"""Tests for broadcast validation, filtered fan-out and bookkeeping."""

import json

import pytest

from tests.helpers import connect_client

NOTICE = {
    "title": "T",
    "url": "https://x.test/a",
    "icon": "https://x.test/i.png",
    "source": "News",
    "image": "https://x.test/img.png",
}


def frame(**overrides) -> str:
    payload = dict(NOTICE)
    payload.update(overrides)
    return "broadcast " + json.dumps(payload)


class TestFanOut:
    @pytest.mark.asyncio
    async def test_only_matching_receivers_get_the_notice(self, hub):
        sender, sender_t = await connect_client(hub, "carol", filters="")
        _, news_t = await connect_client(hub, "alice", filters="news")
        _, none_t = await connect_client(hub, "bob", filters="")

        await hub.handle_frame(sender.id, frame())

        assert sender_t.last == {
            "type": "broadcast_sent", "recipients": 1, "message": "Broadcast sent to 1 clients",
        }
        delivered = news_t.of_type("broadcast")
        assert len(delivered) == 1
        assert delivered[0]["data"] == NOTICE
        assert isinstance(delivered[0]["timestamp"], int)
        assert none_t.of_type("broadcast") == []

    @pytest.mark.asyncio
    async def test_source_match_is_case_insensitive(self, hub):
        sender, _ = await connect_client(hub, "carol", filters="")
        _, receiver = await connect_client(hub, "alice", filters="NEWS")

        await hub.handle_frame(sender.id, frame(source="nEwS"))

        assert len(receiver.of_type("broadcast")) == 1

    @pytest.mark.asyncio
    async def test_receive_all_includes_the_sender(self, hub):
        sender, sender_t = await connect_client(hub, "carol")
        _, other = await connect_client(hub, "alice", filters="sports")

        await hub.handle_frame(sender.id, frame())

        assert len(sender_t.of_type("broadcast")) == 1
        assert other.of_type("broadcast") == []
        assert sender_t.last["recipients"] == 1

    @pytest.mark.asyncio
    async def test_unauthenticated_sockets_never_receive(self, hub):
        sender, _ = await connect_client(hub, "carol", filters="")
        _, anonymous = await connect_client(hub)

        await hub.handle_frame(sender.id, frame())

        assert anonymous.of_type("broadcast") == []

    @pytest.mark.asyncio
    async def test_bare_json_frame_is_broadcast(self, hub):
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, json.dumps(NOTICE))

        assert sender_t.last["type"] == "broadcast_sent"

    @pytest.mark.asyncio
    async def test_fields_are_sanitized(self, hub):
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, frame(title="   padded   "))

        assert sender_t.of_type("broadcast")[0]["data"]["title"] == "padded"


class TestRejection:
    @pytest.mark.asyncio
    async def test_receiver_cannot_broadcast(self, hub):
        session, transport = await connect_client(hub, "alice")

        await hub.handle_frame(session.id, frame())

        assert transport.last == {
            "type": "error", "message": "Permission denied. Only broadcasters can send messages.",
        }
        assert hub.counters.total_broadcasts == 0

    @pytest.mark.asyncio
    async def test_missing_field_reaches_nobody(self, hub):
        sender, sender_t = await connect_client(hub, "carol")
        _, receiver = await connect_client(hub, "alice")
        payload = dict(NOTICE)
        del payload["image"]

        await hub.handle_frame(sender.id, "broadcast " + json.dumps(payload))

        assert sender_t.last == {
            "type": "error", "message": "Invalid broadcast: Missing required field: image",
        }
        assert receiver.of_type("broadcast") == []
        assert hub.counters.total_broadcasts == 0

    @pytest.mark.asyncio
    async def test_malformed_url_reaches_nobody(self, hub):
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, frame(url="not a url"))

        assert sender_t.last["message"] == "Invalid broadcast: Invalid URL format"
        assert sender_t.of_type("broadcast") == []

    @pytest.mark.asyncio
    async def test_invalid_json(self, hub):
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, "broadcast {oops")

        assert sender_t.last == {"type": "error", "message": "Invalid JSON format"}
        assert sender_t.is_open

    @pytest.mark.asyncio
    async def test_deeply_nested_json_keeps_connection(self, hub):
        """Nesting deep enough to exhaust the decoder is just unparseable JSON."""
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, "broadcast " + "[" * 50000)

        assert sender_t.last == {"type": "error", "message": "Invalid JSON format"}
        assert sender_t.is_open

    @pytest.mark.asyncio
    async def test_deeply_nested_bare_frame_is_unknown(self, hub):
        session, transport = await connect_client(hub, "alice")

        await hub.handle_frame(session.id, "[" * 50000)

        assert transport.last["message"].startswith("Unknown command.")
        assert transport.is_open

    @pytest.mark.asyncio
    async def test_illegal_host_reaches_nobody(self, hub):
        sender, sender_t = await connect_client(hub, "carol")

        await hub.handle_frame(sender.id, frame(url="https://exa mple.com/a"))

        assert sender_t.last == {"type": "error", "message": "Invalid broadcast: Invalid URL format"}
        assert sender_t.of_type("broadcast") == []


class TestBookkeeping:
    @pytest.mark.asyncio
    async def test_counters_and_per_session_deliveries(self, hub):
        sender, _ = await connect_client(hub, "carol", filters="")
        receiver, _ = await connect_client(hub, "alice")
        await connect_client(hub, "bob")

        await hub.handle_frame(sender.id, frame())
        await hub.handle_frame(sender.id, frame())

        assert hub.counters.total_broadcasts == 2
        assert hub.counters.total_messages_delivered == 4
        assert receiver.messages_received == 2

    @pytest.mark.asyncio
    async def test_recent_ring_keeps_newest_twenty(self, hub):
        sender, _ = await connect_client(hub, "carol", filters="")

        for i in range(25):
            await hub.handle_frame(sender.id, frame(title=f"n{i}"))

        recent = list(hub.recent_broadcasts)
        assert len(recent) == 20
        assert recent[0].title == "n24"
        assert recent[-1].title == "n5"
        assert recent[0].sender == "carol"
        assert recent[0].recipient_count == 0

    @pytest.mark.asyncio
    async def test_closed_receiver_is_skipped(self, hub):
        sender, sender_t = await connect_client(hub, "carol", filters="")
        _, receiver = await connect_client(hub, "alice")
        receiver.close(1000, "gone")

        await hub.handle_frame(sender.id, frame())

        assert sender_t.last["recipients"] == 0


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_hundred_and_first_frame_is_dropped(self, hub):
        session, transport = await connect_client(hub, "carol", filters="")

        for _ in range(99):
            await hub.handle_frame(session.id, frame())
        assert transport.last["type"] == "broadcast_sent"

        await hub.handle_frame(session.id, frame())

        assert transport.last == {"type": "error", "message": "Rate limit exceeded. Please slow down."}
        assert hub.counters.total_broadcasts == 99
        assert transport.is_open

    @pytest.mark.asyncio
    async def test_oversized_frame_is_refused(self, hub):
        session, transport = await connect_client(hub, "carol")

        await hub.handle_frame(session.id, "x" * (hub.settings.MAX_MESSAGE_SIZE + 1))

        assert transport.last == {"type": "error", "message": "Message too large"}
        assert transport.is_open
