from __future__ import annotations

import asyncio
import dataclasses
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def _ensure_utc(timestamp: Optional[datetime] = None) -> datetime:
    """Normalize timestamps so everything is stored in UTC."""
    if timestamp is None:
        return datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def _isoformat(timestamp: datetime) -> str:
    """Serialize timestamps with millisecond precision and trailing Z."""
    iso = timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    if iso.endswith("+00:00"):
        return iso[:-6] + "Z"
    return iso


class SensorField(str, Enum):
    TEMPERATURE = "temperature"
    AIR_HUMIDITY = "air_humidity"
    SOIL_HUMIDITY = "soil_humidity"


@dataclass(slots=True)
class SensorSnapshot:
    """Latest known value of every garden sensor."""

    temperature: Optional[float] = None
    air_humidity: Optional[float] = None
    soil_humidity: Optional[float] = None
    captured_at: Optional[datetime] = None

    @property
    def has_data(self) -> bool:
        return self.captured_at is not None

    def to_payload(self) -> dict[str, object]:
        return {
            "temperatura": self.temperature,
            "umidade_ar": self.air_humidity,
            "umidade_solo": self.soil_humidity,
            "timestamp": _isoformat(self.captured_at) if self.captured_at is not None else None,
        }


class ReadingStore:
    """Holds the single live sensor snapshot; fields are updated one at a time."""

    def __init__(self) -> None:
        self._snapshot = SensorSnapshot()
        self._lock = asyncio.Lock()

    async def get(self) -> SensorSnapshot:
        async with self._lock:
            return dataclasses.replace(self._snapshot)

    async def update(
        self,
        field: SensorField,
        value: float,
        timestamp: Optional[datetime] = None,
    ) -> SensorSnapshot:
        field = SensorField(field)
        captured_at = _ensure_utc(timestamp)
        async with self._lock:
            setattr(self._snapshot, field.value, value)
            self._snapshot.captured_at = captured_at
            return dataclasses.replace(self._snapshot)

    async def clear(self) -> None:
        async with self._lock:
            self._snapshot.temperature = None
            self._snapshot.air_humidity = None
            self._snapshot.soil_humidity = None
            self._snapshot.captured_at = None


__all__ = ["ReadingStore", "SensorField", "SensorSnapshot"]
