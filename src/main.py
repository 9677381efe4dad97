from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging, time

from config import settings
from api.router import router as api_router
from mqtt.client import startup as mqtt_startup, shutdown as mqtt_shutdown
from mqtt.ingest import SensorTopics
from services.broadcast import BroadcastHub
from services.collections import CollectionStore
from services.commands import CommandPublisher
from services.readings import ReadingStore

logger = logging.getLogger("horta.hub")
if not logger.handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version)

    # One reading store and hub per app, shared by the MQTT ingest and the HTTP/live handlers.
    topics = SensorTopics.from_settings(settings)
    app.state.reading_store = ReadingStore()
    app.state.broadcast_hub = BroadcastHub(app.state.reading_store, session_queue_size=settings.live_queue_size)
    app.state.command_publisher = CommandPublisher(topics)
    app.state.collection_store = CollectionStore(settings.data_dir)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.get("/", tags=["meta"])
    async def root():
        return {"message": "Horta Hub API is running.", "name": settings.app_name, "version": settings.app_version}

    app.include_router(api_router)

    @app.on_event("startup")
    async def _startup():
        app.state.started_at = datetime.now(timezone.utc)
        if settings.mqtt_enabled:
            logger.info("MQTT enabled; connecting to %s:%s...", settings.mqtt_host, settings.mqtt_port)
            await mqtt_startup(settings, app.state.broadcast_hub)
        else:
            logger.info("MQTT disabled (set MQTT_ENABLED=true to enable).")

    @app.on_event("shutdown")
    async def _shutdown():
        await mqtt_shutdown()

    return app

app = create_app()


def run() -> None:
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
