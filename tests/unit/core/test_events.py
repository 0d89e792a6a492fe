"""Unit tests for the event broadcaster."""

import asyncio

import pytest

from missionforce.core.domain.events import EventBroadcaster, EventType


class TestEventBroadcaster:
    def test_subscribe_and_unsubscribe(self):
        events = EventBroadcaster()
        seen = []
        unsubscribe = events.subscribe(seen.append)

        events.publish(EventType.MISSION_CREATED, {"id": "m"})
        unsubscribe()
        events.publish(EventType.MISSION_FAILED, {"id": "m"})

        assert [e.type for e in seen] == [EventType.MISSION_CREATED]
        assert seen[0].payload == {"id": "m"}

    def test_failing_subscriber_does_not_break_publish(self):
        events = EventBroadcaster()
        seen = []

        def broken(_event):
            raise RuntimeError("subscriber bug")

        events.subscribe(broken)
        events.subscribe(seen.append)

        events.publish(EventType.AGENT_STARTED)

        assert len(seen) == 1

    def test_to_message(self):
        event = EventBroadcaster().publish(EventType.CODEX_EXIT, {"exit_code": 0})
        message = event.to_message()
        assert message["type"] == "codex:exit"
        assert message["payload"] == {"exit_code": 0}
        assert message["at"] == event.timestamp

    @pytest.mark.asyncio
    async def test_stream_receives_events_after_open(self):
        events = EventBroadcaster()
        stream = events.stream()
        next_event = asyncio.ensure_future(stream.__anext__())
        await asyncio.sleep(0)

        events.publish(EventType.MISSION_PLANNING, {"id": "m"})
        event = await asyncio.wait_for(next_event, timeout=1)

        assert event.type == EventType.MISSION_PLANNING
        await stream.aclose()
