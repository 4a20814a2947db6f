"""
SSE adapter: replay, heartbeats, live events, disconnect.
"""
import asyncio
import json

import pytest

from backend.adapter import HEARTBEAT, stream_session_events
from orchestrator.session import SessionRegistry
from pipeline.events import ErrorEvent, ProgressEvent


def _parse(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip().split("\n")
    return event_line[len("event: "):], json.loads(data_line[len("data: "):])


def test_replay_then_heartbeat_then_live():
    async def scenario():
        registry = SessionRegistry()
        session = registry.create("s1")
        session.log.append(ProgressEvent(zip_id="a.zip", progress=50, uploaded=1, total_files=2))

        stream = stream_session_events(registry, "s1", heartbeat_interval=0.02)
        replayed = await stream.__anext__()
        idle = await stream.__anext__()
        session.log.append(ErrorEvent(message="bucket gone", zip_id="b.zip"))
        live = await stream.__anext__()
        await stream.aclose()
        subscribed = session.log.sink is not None
        await registry.close()
        return replayed, idle, live, subscribed

    replayed, idle, live, subscribed = asyncio.run(scenario())

    assert _parse(replayed) == ("progress", {
        "zipId": "a.zip", "progress": 50, "uploaded": 1, "failed": 0, "totalFiles": 2,
    })
    assert idle == HEARTBEAT
    assert _parse(live) == ("error", {"message": "bucket gone", "zipId": "b.zip"})
    assert subscribed is False


def test_unknown_session_is_created_and_waits():
    async def scenario():
        registry = SessionRegistry()
        stream = stream_session_events(registry, "fresh", heartbeat_interval=0.01)
        first = await stream.__anext__()
        session = registry.get("fresh")
        await stream.aclose()
        await registry.close()
        return first, session

    first, session = asyncio.run(scenario())
    assert first == HEARTBEAT
    assert session is not None
    assert len(session.log) == 0


def test_newer_subscriber_ends_older_stream():
    async def scenario():
        registry = SessionRegistry()
        registry.create("s2").log.append(ProgressEvent(zip_id="a.zip"))

        old = stream_session_events(registry, "s2", heartbeat_interval=1)
        await old.__anext__()
        new = stream_session_events(registry, "s2", heartbeat_interval=1)
        replay = await new.__anext__()

        with pytest.raises(StopAsyncIteration):
            await old.__anext__()

        still_live = registry.get("s2").log.sink is not None
        await new.aclose()
        await registry.close()
        return replay, still_live

    replay, still_live = asyncio.run(scenario())
    assert replay.startswith("event: progress\n")
    assert still_live
