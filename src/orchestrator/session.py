"""
Session registry: who is processing what, and who is watching.

A session pairs one processing run with its event log. Sessions outlive
subscriber disconnects so a client can reconnect and replay; they are removed
by expiry timers owned by the registry.
"""
import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from config import Config
from .event_log import EventLog, EventSink


@dataclass
class Session:
    """
    One processing context.

    Attributes:
        id: Opaque session token
        log: Append-only event history (owned exclusively by this session)
        active_runs: Processing runs currently in progress for this session
        created_at / last_activity: time.monotonic() timestamps
    """
    id: str
    log: EventLog = field(default_factory=EventLog)
    active_runs: int = 0
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)

    @property
    def running(self) -> bool:
        return self.active_runs > 0

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def get_summary(self) -> dict:
        """Get session summary for display."""
        return {
            "session_id": self.id,
            "events": len(self.log),
            "running": self.running,
            "subscribed": self.log.sink is not None,
            "age_s": round(time.monotonic() - self.created_at, 1),
        }


class SessionRegistry:
    """
    Process-wide session map, injected wherever sessions are needed.

    Expiry is advisory cleanup: a timer that fires while any of the session's
    runs is still in progress waits another period instead of removing it, and
    subscriber activity pushes the deadline back.
    """

    def __init__(
        self,
        retention: float = Config.SESSION_RETENTION_SECONDS,
        idle_ttl: float = Config.SESSION_IDLE_TTL_SECONDS,
    ):
        self.retention = retention
        self.idle_ttl = idle_ttl
        self._sessions: dict[str, Session] = {}
        self._expiry: dict[str, asyncio.Task] = {}

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    # ─────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────

    def create(self, session_id: Optional[str] = None) -> Session:
        """Allocate a session (an existing id is returned as-is)."""
        session_id = session_id or uuid.uuid4().hex
        existing = self._sessions.get(session_id)
        if existing is not None:
            return existing

        session = Session(id=session_id)
        self._sessions[session_id] = session
        self.expire(session_id, self.idle_ttl)
        print(f"🆕 [SESSION] {session_id[:8]} created", flush=True)
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def ensure(self, session_id: str) -> Session:
        return self.get(session_id) or self.create(session_id)

    def expire(self, session_id: str, after: float) -> None:
        """(Re)schedule removal once the session has been idle for `after` seconds."""
        if session_id not in self._sessions:
            return
        self._cancel_expiry(session_id)
        self._expiry[session_id] = asyncio.get_running_loop().create_task(
            self._expire_later(session_id, after)
        )

    def start_run(self, session_id: str) -> Session:
        session = self.ensure(session_id)
        session.active_runs += 1
        session.touch()
        self.expire(session_id, self.idle_ttl)
        return session

    def finish_run(self, session_id: str) -> None:
        session = self.get(session_id)
        if session is None:
            return
        session.active_runs = max(0, session.active_runs - 1)
        session.touch()
        if not session.running:
            self.expire(session_id, self.retention)

    # ─────────────────────────────────────────────────────────
    # Subscribers
    # ─────────────────────────────────────────────────────────

    def attach(self, session_id: str, sink: EventSink) -> Session:
        """Attach a live sink, replaying the session's history into it."""
        session = self.ensure(session_id)
        session.log.attach(sink)
        session.touch()
        return session

    def disconnect(self, session: Session, sink: EventSink) -> None:
        """Subscriber went away: detach its sink, keep the session."""
        session.log.detach(sink)
        session.touch()
        print(f"🔌 [SESSION] {session.id[:8]} subscriber disconnected", flush=True)

    # ─────────────────────────────────────────────────────────
    # Expiry
    # ─────────────────────────────────────────────────────────

    async def _expire_later(self, session_id: str, after: float) -> None:
        # `after` counts from the session's last activity, not from scheduling
        delay = after
        while True:
            await asyncio.sleep(delay)
            session = self._sessions.get(session_id)
            if session is None:
                return
            if session.running:
                delay = after
                continue
            remaining = session.last_activity + after - time.monotonic()
            if remaining <= 0:
                break
            delay = remaining

        if self._expiry.get(session_id) is asyncio.current_task():
            del self._expiry[session_id]
        self._remove(session_id)

    def _cancel_expiry(self, session_id: str) -> None:
        task = self._expiry.pop(session_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _remove(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        sink = session.log.sink
        if sink is not None:
            sink.close()
            session.log.detach(sink)
        print(f"🧹 [SESSION] {session_id[:8]} expired ({len(session.log)} events)", flush=True)

    async def close(self) -> None:
        """Cancel every pending expiry (application shutdown)."""
        tasks = list(self._expiry.values())
        self._expiry.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
