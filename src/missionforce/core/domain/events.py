"""
Domain Events for Mission Execution

Lifecycle and protocol events published while missions run. Events are
append-only facts; consumers (WebSocket clients, CLI progress display,
tests) subscribe to an EventBroadcaster and must not assume any ordering
across missions.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from missionforce.core.domain.models import utc_now

logger = structlog.get_logger()


class EventType(str, Enum):
    """Named events forwarded to subscribers."""

    MISSION_CREATED = "mission:created"
    MISSION_PLANNING = "mission:planning"
    MISSION_PLANNED = "mission:planned"
    MISSION_EXECUTING = "mission:executing"
    MISSION_COMPLETED = "mission:completed"
    MISSION_FAILED = "mission:failed"
    AGENT_STARTED = "agent:started"
    AGENT_FINISHED = "agent:finished"
    CODEX_SPAWN = "codex:spawn"
    CODEX_EVENT = "codex:event"
    CODEX_STDERR = "codex:stderr"
    CODEX_TIMEOUT = "codex:timeout"
    CODEX_PARSE_ERROR = "codex:parse_error"
    CODEX_EXIT = "codex:exit"


@dataclass
class MissionEvent:
    """
    A single published event.

    Attributes:
        type: Event name
        payload: JSON-serialisable event data
        timestamp: When the event was published
    """

    type: EventType
    payload: dict[str, Any]
    timestamp: str = field(default_factory=utc_now)

    def to_message(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload, "at": self.timestamp}


Subscriber = Callable[[MissionEvent], None]


class EventBroadcaster:
    """
    Fan-out of mission events to synchronous callbacks and async streams.

    Publishing never blocks and never raises: a failing subscriber is
    logged and skipped so observability cannot break mission execution.
    """

    def __init__(self, stream_buffer: int = 1000):
        self._subscribers: list[Subscriber] = []
        self._queues: set[asyncio.Queue[MissionEvent]] = set()
        self._stream_buffer = stream_buffer
        self.logger = logger.bind(component="event_broadcaster")

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event_type: EventType, payload: dict[str, Any] | None = None) -> MissionEvent:
        event = MissionEvent(type=event_type, payload=payload or {})
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                self.logger.warning(
                    "subscriber_failed",
                    event_type=event_type.value,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                self.logger.warning("stream_queue_full", event_type=event_type.value)
        return event

    async def stream(self) -> AsyncIterator[MissionEvent]:
        """Yield every event published after the stream was opened."""
        queue: asyncio.Queue[MissionEvent] = asyncio.Queue(maxsize=self._stream_buffer)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)
