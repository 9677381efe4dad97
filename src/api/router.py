from fastapi import APIRouter

from .auth_router import router as auth_router
from .health_router import router as health_router
from .live_router import router as live_router
from .plants_router import router as plants_router
from .tasks_router import router as tasks_router
from .telemetry_router import router as telemetry_router

# Paths stay unprefixed; the mobile app calls them at the server root.
router = APIRouter()
router.include_router(health_router)
router.include_router(telemetry_router)
router.include_router(live_router)
router.include_router(plants_router)
router.include_router(tasks_router)
router.include_router(auth_router)
