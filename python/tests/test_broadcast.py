"""
Tests for the change broadcaster and the SSE framing built on it.
"""

import asyncio
import json

import pytest

from filexplorer.broadcast import (
    ENTRY_ADDED,
    TAG_REMOVED,
    ChangeBroadcaster,
    entry_message,
    tag_message,
)
from filexplorer.http_routes import format_sse, sse_event_stream


class TestMessages:
    def test_entry_message(self):
        assert entry_message(ENTRY_ADDED, "src/a.txt") == {"type": "entry-added", "path": "src/a.txt"}

    def test_tag_message(self):
        assert tag_message(TAG_REMOVED, "src", "team", "core") == {
            "type": "tag-removed",
            "path": "src",
            "tag": {"key": "team", "value": "core"},
        }


class TestChangeBroadcaster:
    @pytest.mark.asyncio
    async def test_every_subscriber_receives(self):
        broadcaster = ChangeBroadcaster()
        _, q1 = broadcaster.subscribe()
        _, q2 = broadcaster.subscribe()

        delivered = broadcaster.publish({"type": "entry-added", "path": "x"})

        assert delivered == 2
        assert q1.get_nowait() == q2.get_nowait() == {"type": "entry-added", "path": "x"}

    @pytest.mark.asyncio
    async def test_full_queue_skips_only_that_subscriber(self):
        broadcaster = ChangeBroadcaster(queue_size=1)
        slow_id, slow = broadcaster.subscribe()
        _, fast = broadcaster.subscribe()

        broadcaster.publish({"n": 1})
        fast.get_nowait()
        delivered = broadcaster.publish({"n": 2})

        assert delivered == 1
        assert slow.get_nowait() == {"n": 1}
        assert fast.get_nowait() == {"n": 2}
        assert broadcaster.subscriber_count == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        broadcaster = ChangeBroadcaster()
        subscriber_id, queue = broadcaster.subscribe()
        broadcaster.unsubscribe(subscriber_id)
        broadcaster.unsubscribe(subscriber_id)

        assert broadcaster.publish({"type": "x"}) == 0
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_close_sends_final_message(self):
        broadcaster = ChangeBroadcaster()
        _, queue = broadcaster.subscribe()
        broadcaster.close({"type": "shutdown"})
        assert queue.get_nowait() == {"type": "shutdown"}
        assert broadcaster.subscriber_count == 0


class TestEventStream:
    def test_format_sse(self):
        assert format_sse({"type": "x"}) == 'data: {"type": "x"}\n\n'

    @pytest.mark.asyncio
    async def test_connected_then_messages(self):
        broadcaster = ChangeBroadcaster()
        stream = sse_event_stream(broadcaster)

        first = await stream.__anext__()
        assert json.loads(first[len("data: "):])["type"] == "connected"
        assert broadcaster.subscriber_count == 1

        broadcaster.publish(entry_message(ENTRY_ADDED, "src/a.txt"))
        frame = await stream.__anext__()
        assert frame == 'data: {"type": "entry-added", "path": "src/a.txt"}\n\n'

        await stream.aclose()
        assert broadcaster.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_client_id_is_the_subscriber_id(self):
        broadcaster = ChangeBroadcaster()
        known_id, _ = broadcaster.subscribe()
        stream = sse_event_stream(broadcaster)

        first = await stream.__anext__()
        client_id = json.loads(first[len("data: "):])["clientId"]
        assert client_id != known_id

        broadcaster.unsubscribe(client_id)
        assert broadcaster.subscriber_count == 1
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_closed_before_first_frame_leaves_no_subscriber(self):
        broadcaster = ChangeBroadcaster()
        stream = sse_event_stream(broadcaster)

        await stream.aclose()

        assert broadcaster.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_keepalive_comment_when_idle(self):
        broadcaster = ChangeBroadcaster()
        stream = sse_event_stream(broadcaster, keepalive=0.01)

        await stream.__anext__()
        assert await asyncio.wait_for(stream.__anext__(), timeout=1) == ": keepalive\n\n"
        await stream.aclose()
