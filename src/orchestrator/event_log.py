"""
Append-only event log with a single replaceable live sink.

Everything runs on one event loop and neither `append` nor `attach` awaits,
so replay-then-live cannot interleave: an attached sink sees every event
exactly once, in append order.
"""
import asyncio
from typing import Optional

from pipeline.events import SessionEvent


_CLOSED = object()


class EventSink:
    """Live output channel for one progress subscriber."""

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def send(self, event: SessionEvent) -> None:
        if not self.closed:
            self._queue.put_nowait(event)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    async def get(self) -> Optional[SessionEvent]:
        """Next event, or None once the sink has been closed."""
        item = await self._queue.get()
        if item is _CLOSED:
            return None
        return item

    def pending(self) -> int:
        return self._queue.qsize()


class EventLog:
    def __init__(self):
        self._events: list[SessionEvent] = []
        self._sink: Optional[EventSink] = None

    def __len__(self) -> int:
        return len(self._events)

    @property
    def history(self) -> tuple:
        return tuple(self._events)

    @property
    def sink(self) -> Optional[EventSink]:
        return self._sink

    def append(self, event: SessionEvent) -> None:
        self._events.append(event)
        if self._sink is not None:
            self._sink.send(event)

    def attach(self, sink: EventSink) -> None:
        """Replay history into `sink`, then make it the live sink."""
        previous = self._sink
        if previous is sink:
            return
        if previous is not None:
            previous.close()
        for event in self._events:
            sink.send(event)
        self._sink = sink

    def detach(self, sink: Optional[EventSink] = None) -> None:
        """Drop the live sink (only if it is still `sink`, when given). History stays."""
        if sink is None or sink is self._sink:
            self._sink = None
