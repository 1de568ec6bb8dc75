# Router aggregator – import each route module here and expose ``api_router``
# for convenient inclusion in the FastAPI app.

from fastapi import APIRouter

from . import (
    routes_backfill,
    routes_providers,
    routes_recordings,
    routes_sync,
)


api_router = APIRouter()
api_router.include_router(routes_sync.router, prefix="/sync", tags=["sync"])
api_router.include_router(routes_recordings.router, prefix="/recordings", tags=["recordings"])
api_router.include_router(routes_backfill.router, prefix="/plaud", tags=["transcription"])
api_router.include_router(routes_providers.router, prefix="/settings/ai/providers", tags=["providers"])
