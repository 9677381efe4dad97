from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

import anyio
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from services.broadcast import BroadcastHub, LiveSession

from .dependencies import get_broadcast_hub

logger = logging.getLogger("horta.hub.live")

router = APIRouter(tags=["live"])

KEEPALIVE_SECONDS = 20.0


@router.websocket("/ws")
async def live_socket(websocket: WebSocket, hub: BroadcastHub = Depends(get_broadcast_hub)) -> None:
    await websocket.accept()
    session = await hub.register()
    sender = asyncio.create_task(_forward_updates(websocket, session), name="live-ws-sender")
    watcher = asyncio.create_task(_wait_for_disconnect(websocket), name="live-ws-watcher")
    try:
        done, _ = await asyncio.wait({sender, watcher}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                logger.debug("Live socket closed after send failure: %s", exc)
    finally:
        # Deregister before the first await; the host may cancel this scope again.
        session.close()
        for task in (sender, watcher):
            task.cancel()
        with anyio.CancelScope(shield=True):
            await asyncio.gather(sender, watcher, return_exceptions=True)


async def _forward_updates(websocket: WebSocket, session: LiveSession) -> None:
    while True:
        message = await session.get()
        await websocket.send_json(message.to_dict())


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients only listen; anything they send is ignored.
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.get(
    "/events/stream",
    response_class=StreamingResponse,
    summary="Server-sent events stream of live sensor snapshots",
)
async def stream_events(hub: BroadcastHub = Depends(get_broadcast_hub)) -> StreamingResponse:
    async def _event_source() -> AsyncIterator[bytes]:
        session = await hub.register()
        try:
            while True:
                try:
                    message = await asyncio.wait_for(session.get(), timeout=KEEPALIVE_SECONDS)
                    yield message.to_sse()
                except asyncio.TimeoutError:
                    yield b": keep-alive\n\n"
        finally:
            session.close()

    headers = {
        "Cache-Control": "no-cache",
        "X-Accel-Buffering": "no",
    }
    return StreamingResponse(_event_source(), media_type="text/event-stream", headers=headers)


__all__ = ["router"]
