from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from services.readings import ReadingStore, SensorField, SensorSnapshot

LIVE_UPDATE_EVENT = "mqtt_update"

logger = logging.getLogger("horta.hub.live")


@dataclass(frozen=True, slots=True)
class EventMessage:
    type: str
    data: dict[str, Any]
    id: str

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.type, "data": self.data}

    def to_sse(self) -> bytes:
        payload = json.dumps(self.data, separators=(",", ":"))
        return f"id: {self.id}\nevent: {self.type}\ndata: {payload}\n\n".encode("utf-8")


class LiveSession:
    """One connected live client; owned by the hub while registered."""

    def __init__(self, hub: BroadcastHub, queue: asyncio.Queue[EventMessage]) -> None:
        self._hub = hub
        self._queue = queue
        self._closed = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def get(self) -> EventMessage:
        return await self._queue.get()

    def offer(self, message: EventMessage) -> None:
        # A full queue only ever holds stale snapshots; keep the newest one.
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(message)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._hub.unregister(self)


class BroadcastHub:
    """Fan-out of sensor snapshots to every connected live client.

    Snapshots only leave the hub through ``register`` (the current state, to the new
    session alone) and ``apply_reading`` (a store update, to every session). Both run
    under one lock so a session never sees an older snapshot after a newer one.
    """

    def __init__(self, store: ReadingStore, *, session_queue_size: int = 32) -> None:
        self._store = store
        self._session_queue_size = max(1, session_queue_size)
        self._sessions: set[LiveSession] = set()
        self._lock = asyncio.Lock()
        self._counter = 0

    @property
    def store(self) -> ReadingStore:
        return self._store

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def register(self) -> LiveSession:
        queue: asyncio.Queue[EventMessage] = asyncio.Queue(self._session_queue_size)
        session = LiveSession(self, queue)
        async with self._lock:
            snapshot = await self._store.get()
            session.offer(self._build_message(snapshot))
            self._sessions.add(session)
        logger.info("Live client connected (%d active)", len(self._sessions))
        return session

    def unregister(self, session: LiveSession) -> None:
        # Fan-out never suspends while iterating, so removal needs no lock.
        if session not in self._sessions:
            return
        self._sessions.discard(session)
        logger.info("Live client disconnected (%d active)", len(self._sessions))

    async def apply_reading(
        self,
        sensor: SensorField,
        value: float,
        timestamp: Optional[datetime] = None,
    ) -> SensorSnapshot:
        async with self._lock:
            snapshot = await self._store.update(sensor, value, timestamp)
            message = self._build_message(snapshot)
            for session in self._sessions:
                session.offer(message)
        return snapshot

    def _build_message(self, snapshot: SensorSnapshot) -> EventMessage:
        self._counter += 1
        return EventMessage(type=LIVE_UPDATE_EVENT, data=snapshot.to_payload(), id=str(self._counter))


__all__ = ["BroadcastHub", "EventMessage", "LiveSession", "LIVE_UPDATE_EVENT"]
