from __future__ import annotations

import asyncio
import contextlib
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from asyncio_mqtt import Client, MqttError

from services.broadcast import BroadcastHub
from services.readings import _isoformat

from .ingest import SensorIngest, SensorTopics

logger = logging.getLogger("horta.hub.mqtt")

INITIAL_BACKOFF_SECONDS = 1.0


class MqttNotConnectedError(RuntimeError):
    """Raised when an operation needs the broker connection while it is down."""


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


@dataclass
class ConnectionHistory:
    connected_at: Optional[datetime] = None
    disconnected_at: Optional[datetime] = None
    reason: Optional[str] = None
    attempts: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "last_connect_time": _isoformat(self.connected_at) if self.connected_at else None,
            "last_disconnect_time": _isoformat(self.disconnected_at) if self.disconnected_at else None,
            "last_disconnect_reason": self.reason,
            "reconnect_attempts": self.attempts,
        }


class MqttManager:
    """Owns the broker connection and the sensor ingest running on it.

    Moves between DISCONNECTED, CONNECTING and SUBSCRIBED. Every loss of the
    transport goes back to DISCONNECTED and schedules a reconnect with exponential
    backoff; each new connection gets its own ``SensorIngest``.
    """

    def __init__(
        self,
        host: str,
        port: int,
        hub: BroadcastHub,
        topics: SensorTopics,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: Optional[str] = None,
        tls: bool = False,
        max_backoff: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.hub = hub
        self.topics = topics
        self.client_id = client_id
        self.max_backoff = max(max_backoff, INITIAL_BACKOFF_SECONDS)
        self._client_options: dict[str, Any] = {}
        if username:
            self._client_options.update(username=username, password=password)
        if tls:
            self._client_options["tls_context"] = ssl.create_default_context()
        self._state = ConnectionState.DISCONNECTED
        self._history = ConnectionHistory()
        self._client: Optional[Client] = None
        self._ingest: Optional[SensorIngest] = None
        self._lock = asyncio.Lock()
        self._running = False
        self._reconnect_task: Optional[asyncio.Task[None]] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._state is not ConnectionState.DISCONNECTED

    @property
    def reconnecting(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def get_client(self) -> Client:
        if not self.is_connected:
            raise MqttNotConnectedError("MQTT client is not connected")
        assert self._client is not None
        return self._client

    async def publish(self, topic: str, payload: str, *, qos: int = 0, retain: bool = False) -> None:
        await self.get_client().publish(topic, payload, qos=qos, retain=retain)

    async def connect(self) -> None:
        self._running = True
        async with self._lock:
            await self._open()

    async def disconnect(self) -> None:
        self._running = False
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        async with self._lock:
            self._history.reason = self._history.reason or "shutdown"
            await self._close()

    async def notify_disconnect(self, source: str, exc: BaseException | None = None) -> None:
        if not self._running:
            return
        self._state = ConnectionState.DISCONNECTED
        self._history.reason = f"{source}: {exc}" if exc else source
        self._history.disconnected_at = datetime.now(timezone.utc)
        logger.warning("MQTT connection lost (%s)", self._history.reason)
        if not self.reconnecting:
            self._history.attempts = 0
            self._reconnect_task = asyncio.create_task(self._reconnect_loop(), name="mqtt-reconnect")

    async def _mark_subscribed(self) -> None:
        if self._state is ConnectionState.CONNECTING:
            self._state = ConnectionState.SUBSCRIBED

    async def _open(self) -> None:
        self._state = ConnectionState.CONNECTING
        client = Client(self.host, port=self.port, client_id=self.client_id, **self._client_options)
        try:
            await client.connect()
        except MqttError:
            self._state = ConnectionState.DISCONNECTED
            raise
        self._client = client
        self._history.connected_at = datetime.now(timezone.utc)
        self._history.reason = None
        logger.info("MQTT connected to %s:%s", self.host, self.port)
        self._ingest = SensorIngest(
            client,
            self.hub,
            self.topics,
            on_disconnect=self.notify_disconnect,
            on_subscribed=self._mark_subscribed,
        )
        await self._ingest.start()

    async def _close(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        ingest, self._ingest = self._ingest, None
        if ingest is not None:
            await ingest.stop()
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except MqttError as exc:
            logger.debug("Clean MQTT disconnect failed, forcing: %s", exc)
            await client.force_disconnect()
        self._history.disconnected_at = datetime.now(timezone.utc)
        logger.info("MQTT disconnected from %s:%s", self.host, self.port)

    async def _reconnect_loop(self) -> None:
        delay = INITIAL_BACKOFF_SECONDS
        try:
            while self._running:
                async with self._lock:
                    await self._close()
                await asyncio.sleep(delay)
                async with self._lock:
                    if not self._running:
                        return
                    self._history.attempts += 1
                    try:
                        await self._open()
                    except MqttError as exc:
                        logger.warning(
                            "MQTT reconnect attempt %d failed, next in %.0fs: %s",
                            self._history.attempts,
                            min(delay * 2, self.max_backoff),
                            exc,
                        )
                    else:
                        logger.info("MQTT reconnected after %d attempt(s)", self._history.attempts)
                        return
                delay = min(delay * 2, self.max_backoff)
        finally:
            if self._reconnect_task is asyncio.current_task():
                self._reconnect_task = None

    def status_snapshot(self) -> dict[str, Any]:
        return {
            "connected": self.is_connected,
            "state": self._state.value,
            "reconnecting": self.reconnecting,
            "host": self.host,
            "port": self.port,
            "client_id": self.client_id,
            "topics": self.topics.subscriptions,
            **self._history.as_dict(),
        }


_manager: Optional[MqttManager] = None


def get_mqtt_manager() -> Optional[MqttManager]:
    return _manager


async def startup(settings: Any, hub: BroadcastHub) -> MqttManager:
    """Create the process-wide manager and try the first connection.

    An unreachable broker is logged and left to the reconnect loop so the HTTP
    app keeps serving.
    """
    global _manager
    _manager = MqttManager(
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        hub=hub,
        topics=SensorTopics.from_settings(settings),
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        client_id=settings.mqtt_client_id,
        tls=settings.mqtt_tls,
        max_backoff=settings.mqtt_reconnect_max_seconds,
    )
    try:
        await _manager.connect()
    except MqttError as exc:
        logger.error("MQTT failed to connect to %s:%s: %s", settings.mqtt_host, settings.mqtt_port, exc)
        await _manager.notify_disconnect("startup", exc)
    return _manager


async def shutdown() -> None:
    global _manager
    manager, _manager = _manager, None
    if manager is not None:
        await manager.disconnect()


__all__ = [
    "ConnectionState",
    "MqttManager",
    "MqttNotConnectedError",
    "get_mqtt_manager",
    "shutdown",
    "startup",
]
