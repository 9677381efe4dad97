from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from asyncio_mqtt import MqttError

from mqtt.client import MqttManager, MqttNotConnectedError, get_mqtt_manager
from mqtt.ingest import IRRIGATION_COMMAND, SensorTopics

LOGGER_NAME = "horta.hub.commands"
IRRIGATION_PAYLOAD = "1"


class CommandServiceError(RuntimeError):
    """Raised when a command cannot be sent because the broker is unavailable."""


@dataclass(slots=True)
class CommandResult:
    command: str
    topic: str
    payload: str
    sent_at: datetime


class CommandPublisher:
    """Sends device commands over the shared broker connection without waiting for a reply."""

    def __init__(
        self,
        topics: SensorTopics,
        *,
        manager_provider: Callable[[], Optional[MqttManager]] = get_mqtt_manager,
    ) -> None:
        self._topics = topics
        self._manager_provider = manager_provider
        self._logger = logging.getLogger(LOGGER_NAME)

    async def publish(self, command: str, payload: str = IRRIGATION_PAYLOAD) -> CommandResult:
        if not command:
            raise ValueError("command is required")

        manager = self._manager_provider()
        if manager is None:
            raise CommandServiceError("MQTT manager is not running")

        topic = self._topics.command_topic(command)
        try:
            await manager.publish(topic, payload, qos=0, retain=False)
        except MqttNotConnectedError as exc:
            raise CommandServiceError(str(exc)) from exc
        except MqttError as exc:
            raise CommandServiceError(f"Failed to publish {command} command to {topic}") from exc

        self._logger.info("Published %s command to %s", command, topic)
        return CommandResult(command=command, topic=topic, payload=payload, sent_at=datetime.now(timezone.utc))

    async def water_plant(self) -> CommandResult:
        return await self.publish(IRRIGATION_COMMAND, IRRIGATION_PAYLOAD)


__all__ = ["CommandPublisher", "CommandResult", "CommandServiceError", "IRRIGATION_PAYLOAD"]
