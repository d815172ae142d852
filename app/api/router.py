from fastapi import APIRouter
from app.modules.availability.router import router as availability_router
from app.modules.appointments.router import router as appointments_router
from app.modules.conflicts.router import router as conflicts_router
from app.modules.timezones.router import router as timezones_router

api_router = APIRouter()
api_router.include_router(availability_router, tags=["availability"])
api_router.include_router(appointments_router, tags=["appointments"])
api_router.include_router(conflicts_router, tags=["conflicts"])
api_router.include_router(timezones_router, tags=["timezones"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
