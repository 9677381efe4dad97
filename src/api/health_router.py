from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Request

from config import settings
from mqtt.client import get_mqtt_manager
from services.broadcast import BroadcastHub

from .dependencies import get_broadcast_hub

router = APIRouter(prefix="/health", tags=["health"])


def _uptime_seconds(request: Request) -> Optional[float]:
    started_at: Optional[datetime] = getattr(request.app.state, "started_at", None)
    if started_at is None:
        return None
    return round((datetime.now(timezone.utc) - started_at).total_seconds(), 1)


def _mqtt_status() -> Dict[str, object]:
    if not settings.mqtt_enabled:
        return {"enabled": False, "status": "disabled", "connection": None}

    manager = get_mqtt_manager()
    if manager is None:
        return {
            "enabled": True,
            "status": "critical",
            "connection": {
                "connected": False,
                "reconnecting": False,
                "host": settings.mqtt_host,
                "port": settings.mqtt_port,
                "client_id": settings.mqtt_client_id,
                "last_disconnect_reason": "manager_unavailable",
            },
        }
    connection = manager.status_snapshot()
    return {
        "enabled": True,
        "status": "ok" if connection.get("connected") else "critical",
        "connection": connection,
    }


@router.get("")
async def health(request: Request, hub: BroadcastHub = Depends(get_broadcast_hub)) -> Dict[str, object]:
    snapshot = await hub.store.get()
    return {
        "status": "ok",
        "version": settings.app_version,
        "uptime_seconds": _uptime_seconds(request),
        "mqtt": _mqtt_status(),
        "live_sessions": hub.session_count,
        "last_reading": snapshot.to_payload()["timestamp"],
    }


@router.get("/mqtt")
async def health_mqtt() -> Dict[str, object]:
    return _mqtt_status()
