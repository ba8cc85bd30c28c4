from fastapi import APIRouter

from .routes_health import router as health_router
from .routes_sync import router as sync_router
from .sync_records import router as sync_records_router


# authentication is handled upstream; these routes are unauthenticated
api_v1 = APIRouter()
api_v1.include_router(health_router)
api_v1.include_router(sync_router)
api_v1.include_router(sync_records_router)
