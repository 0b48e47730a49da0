"""
Event bus for session notifications.

The bus is the message-passing seam between the session core and whatever
real-time channel carries events to other clients. Two ways to consume:

- listeners: synchronous callbacks, called in publish order
- subscriptions: per-subscriber asyncio queues, consumed with `async for`

Example:
    bus = EventBus()
    bus.add_listener(CodeChanged, lambda e: channel.send(e))

    subscription = bus.subscribe(TerminalCommandIssued)
    async for event in subscription:
        print(event.command)
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """Base class for all events."""
    pass


@dataclass
class ParticipantJoined(Event):
    participant_id: str
    name: str


@dataclass
class ParticipantLeft(Event):
    participant_id: str


@dataclass
class PermissionChanged(Event):
    participant_id: str
    can_edit: bool


@dataclass
class CodeChanged(Event):
    """A file's content changed (local or remote edit)."""
    file_id: str
    content: str
    actor_id: Optional[str] = None


@dataclass
class FileSaved(Event):
    file_id: str
    name: str
    actor_id: Optional[str] = None


@dataclass
class TerminalCommandIssued(Event):
    command: str
    terminal_id: str
    actor_id: Optional[str] = None


@dataclass
class HandRaised(Event):
    participant_id: str
    raised: bool


@dataclass
class StreamReady(Event):
    """The combined stream was exposed to viewers."""
    stream_id: str
    has_video: bool
    has_audio: bool


@dataclass
class StreamEnded(Event):
    stream_id: Optional[str] = None


@dataclass
class DegradedAudio(Event):
    """A combined stream carries video but no audio."""
    stream_id: str


@dataclass
class SourceLost(Event):
    """A capture device ended its tracks during the session."""
    kind: str


class EventBus:
    """
    Async event bus.

    Each subscriber gets its own queue. Publishing never blocks: if a
    subscriber's queue is full the event is dropped for that subscriber.
    """

    def __init__(self, buffer_size: int = 100):
        """
        Initialize event bus.

        Args:
            buffer_size: Max queued events per subscriber
        """
        self.buffer_size = buffer_size
        self._subscribers: Dict[Type[Event], List[asyncio.Queue]] = {}
        self._listeners: Dict[Type[Event], List[Callable[[Any], None]]] = {}

    def add_listener(self, event_type: Type[Event], callback: Callable[[Any], None]) -> None:
        """Call `callback(event)` synchronously for every event of this type."""
        self._listeners.setdefault(event_type, []).append(callback)

    def remove_listener(self, event_type: Type[Event], callback: Callable[[Any], None]) -> None:
        listeners = self._listeners.get(event_type, [])
        if callback in listeners:
            listeners.remove(callback)

    def subscribe(self, event_type: Type[Event]) -> 'EventSubscription':
        """
        Subscribe to specific event type.

        Returns:
            EventSubscription async iterator
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.buffer_size)
        self._subscribers.setdefault(event_type, []).append(queue)
        return EventSubscription(queue, self, event_type)

    def publish(self, event: Event) -> None:
        """
        Deliver an event to listeners and subscribers of its exact type.

        A failing listener is logged and does not stop delivery to the others.
        """
        event_type = type(event)

        for callback in list(self._listeners.get(event_type, [])):
            try:
                callback(event)
            except Exception:
                logger.exception("Listener for %s failed", event_type.__name__)

        for queue in self._subscribers.get(event_type, []):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Dropping %s for a slow subscriber", event_type.__name__)

    def unsubscribe(self, queue: asyncio.Queue, event_type: Type[Event]) -> None:
        if event_type in self._subscribers and queue in self._subscribers[event_type]:
            self._subscribers[event_type].remove(queue)

    def clear(self) -> None:
        """Drop all listeners and subscribers."""
        self._subscribers.clear()
        self._listeners.clear()


class EventSubscription:
    """
    Async iterator for event subscription.

    Allows using `async for` to receive events.
    """

    def __init__(self, queue: asyncio.Queue, bus: EventBus, event_type: Type[Event]):
        self.queue = queue
        self.bus = bus
        self.event_type = event_type
        self._active = True

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._active:
            raise StopAsyncIteration
        return await self.queue.get()

    def get_nowait(self) -> Optional[Event]:
        """Next queued event, or None if the queue is empty."""
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def unsubscribe(self):
        """Unsubscribe from events."""
        self._active = False
        self.bus.unsubscribe(self.queue, self.event_type)
