from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from services.commands import CommandPublisher, CommandServiceError
from services.readings import ReadingStore

from .dependencies import get_command_publisher, get_reading_store

logger = logging.getLogger("horta.hub.telemetry")

router = APIRouter(tags=["telemetry"])


class SensorSnapshotModel(BaseModel):
    temperatura: float | None = None
    umidade_ar: float | None = None
    umidade_solo: float | None = None
    timestamp: str | None = None


class IrrigationResponse(BaseModel):
    message: str
    topic: str


@router.get("/mqtt-data", response_model=SensorSnapshotModel)
async def get_latest_readings(store: ReadingStore = Depends(get_reading_store)) -> SensorSnapshotModel:
    snapshot = await store.get()
    if not snapshot.has_data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No MQTT data received yet.")
    return SensorSnapshotModel(**snapshot.to_payload())


@router.post("/water-plant", response_model=IrrigationResponse)
async def water_plant(publisher: CommandPublisher = Depends(get_command_publisher)) -> IrrigationResponse:
    try:
        result = await publisher.water_plant()
    except CommandServiceError as exc:
        logger.warning("Irrigation command failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not trigger irrigation: MQTT broker unavailable.",
        ) from exc
    return IrrigationResponse(message="Irrigation triggered.", topic=result.topic)


__all__ = ["router"]
