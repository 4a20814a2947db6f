"""
SSE adapter for session progress.

Turns a session's event log into a text/event-stream body: full history
first, then live events, with heartbeat comments while idle.
"""
import asyncio
from typing import AsyncGenerator

from config import Config
from orchestrator.event_log import EventSink
from orchestrator.session import SessionRegistry
from pipeline.events import encode_sse


SSE_CONTENT_TYPE = "text/event-stream"

HEARTBEAT = ": heartbeat\n\n"


async def stream_session_events(
    registry: SessionRegistry,
    session_id: str,
    heartbeat_interval: float = Config.HEARTBEAT_INTERVAL,
) -> AsyncGenerator[str, None]:
    """
    Stream a session's events as SSE messages.

    Unknown session ids are not an error: the session is created on demand
    and the stream simply waits for events.

    Args:
        registry: Session registry owning the session
        session_id: Session to follow
        heartbeat_interval: Seconds of silence before a keep-alive comment

    Yields:
        SSE-formatted events (and heartbeat comments)
    """
    sink = EventSink()
    session = registry.attach(session_id, sink)
    print(f"📡 [SSE] {session_id[:8]} subscribed, replaying {sink.pending()} events", flush=True)

    try:
        while True:
            try:
                event = await asyncio.wait_for(sink.get(), timeout=heartbeat_interval)
            except asyncio.TimeoutError:
                # Keep proxies from closing an idle stream
                yield HEARTBEAT
                continue

            if event is None:
                # Replaced by a newer subscriber, or the session expired
                break

            if Config.DEBUG:
                print(f"  🔊 [SSE] {session_id[:8]} {event.type}", flush=True)
            yield encode_sse(event)
    finally:
        registry.disconnect(session, sink)
