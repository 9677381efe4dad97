from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from asyncio_mqtt import Client, Message, MqttCodeError, MqttError

from services.broadcast import BroadcastHub
from services.readings import SensorField

LOGGER_NAME = "horta.hub.mqtt.ingest"
SENSOR_TOPIC_FMT = "{prefix}/{device_id}/{reading}"
COMMAND_TOPIC_FMT = "{prefix}/{device_id}/{command}"
IRRIGATION_COMMAND = "regar"

# Last topic level published by the ESP32 for each sensor.
SENSOR_TOPIC_NAMES: dict[SensorField, str] = {
    SensorField.TEMPERATURE: "temperatura",
    SensorField.AIR_HUMIDITY: "umidade_ar",
    SensorField.SOIL_HUMIDITY: "umidade_solo",
}


class ReadingParseError(ValueError):
    """Raised when a sensor payload is not a finite decimal number."""


@dataclass(frozen=True)
class SensorTopics:
    """Fixed mapping between the device's sensor topics and snapshot fields."""

    prefix: str
    device_id: str

    @classmethod
    def from_settings(cls, settings: Any) -> SensorTopics:
        return cls(prefix=settings.mqtt_topic_prefix, device_id=settings.mqtt_device_id)

    def topic_for(self, sensor: SensorField) -> str:
        return SENSOR_TOPIC_FMT.format(
            prefix=self.prefix,
            device_id=self.device_id,
            reading=SENSOR_TOPIC_NAMES[sensor],
        )

    @property
    def subscriptions(self) -> list[str]:
        return [self.topic_for(sensor) for sensor in SensorField]

    def resolve(self, topic: Any) -> Optional[SensorField]:
        value = str(topic)
        for sensor in SensorField:
            if self.topic_for(sensor) == value:
                return sensor
        return None

    def command_topic(self, command: str = IRRIGATION_COMMAND) -> str:
        return COMMAND_TOPIC_FMT.format(prefix=self.prefix, device_id=self.device_id, command=command)


def parse_reading(raw_payload: bytes | str) -> float:
    if isinstance(raw_payload, bytes):
        try:
            text = raw_payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ReadingParseError("payload is not valid UTF-8") from exc
    else:
        text = raw_payload

    stripped = text.strip()
    if not stripped:
        raise ReadingParseError("payload is empty")
    try:
        value = float(stripped)
    except ValueError as exc:
        raise ReadingParseError(f"payload {stripped!r} is not a number") from exc
    if not math.isfinite(value):
        raise ReadingParseError(f"payload {stripped!r} is not a finite number")
    return value


class SensorIngest:
    """Feeds sensor readings published by the garden device into the broadcast hub."""

    def __init__(
        self,
        client: Client,
        hub: BroadcastHub,
        topics: SensorTopics,
        *,
        logger: Optional[logging.Logger] = None,
        on_disconnect: Optional[Callable[[str, BaseException | None], Awaitable[None]]] = None,
        on_subscribed: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> None:
        self._client = client
        self._hub = hub
        self._topics = topics
        self._logger = logger or logging.getLogger(LOGGER_NAME)
        self._task: Optional[asyncio.Task[None]] = None
        self._started = False
        self._on_disconnect = on_disconnect
        self._on_subscribed = on_subscribed

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self._logger.info("Starting sensor ingest for %s", ", ".join(self._topics.subscriptions))
        self._task = asyncio.create_task(self._consume(), name="mqtt-sensor-ingest")

    async def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        task, self._task = self._task, None
        if task is None:
            return
        if task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as exc:  # pragma: no cover - defensive logging
            self._logger.warning("Sensor ingest task terminated with error: %s", exc)
        self._logger.info("Sensor ingest stopped")

    async def _consume(self) -> None:
        subscriptions = [(topic, 0) for topic in self._topics.subscriptions]
        while self._started:
            try:
                async with self._client.messages() as messages:
                    try:
                        await self._client.subscribe(subscriptions)
                    except MqttError as exc:
                        # Retried only through the connection manager's reconnect policy.
                        self._logger.error("Failed to subscribe to sensor topics: %s", exc)
                        await self._notify_disconnect("subscribe", exc)
                        return
                    self._logger.info("Subscribed to %s", ", ".join(self._topics.subscriptions))
                    if self._on_subscribed is not None:
                        await self._on_subscribed()
                    async for message in messages:
                        await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - unexpected failures logged for observability
                if self._is_not_connected_error(exc):
                    await self._notify_disconnect("sensor ingest", exc)
                    return
                self._logger.warning("MQTT sensor ingest loop interrupted: %s", exc)
                await asyncio.sleep(1.0)

        self._logger.debug("Sensor ingest task exiting")

    async def handle_message(self, message: Message) -> None:
        sensor = self._topics.resolve(message.topic)
        if sensor is None:
            self._logger.debug("Ignoring message on unmapped topic %s", message.topic)
            return

        try:
            value = parse_reading(message.payload)
        except ReadingParseError as exc:
            self._logger.warning("Dropping %s reading from %s: %s", sensor.value, message.topic, exc)
            return

        snapshot = await self._hub.apply_reading(sensor, value, datetime.now(timezone.utc))
        self._logger.info("%s=%s (%s)", sensor.value, value, snapshot.to_payload()["timestamp"])

    async def _notify_disconnect(self, context: str, exc: BaseException | None) -> None:
        if not self._started:
            return
        self._logger.warning("MQTT %s detected disconnect: %s", context, exc)
        self._started = False
        if self._on_disconnect is not None:
            try:
                await self._on_disconnect(context, exc)
            except Exception as callback_exc:  # pragma: no cover - defensive logging
                self._logger.debug("Disconnect callback failed: %s", callback_exc)

    @staticmethod
    def _is_not_connected_error(exc: Exception) -> bool:
        if isinstance(exc, MqttCodeError):
            rc = exc.rc
            if isinstance(rc, int) and rc in {4, 7}:
                return True
        if isinstance(exc, MqttError):
            return "Disconnected" in str(exc)
        return False


__all__ = [
    "IRRIGATION_COMMAND",
    "ReadingParseError",
    "SENSOR_TOPIC_NAMES",
    "SensorIngest",
    "SensorTopics",
    "parse_reading",
]
