from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..services.reconciliation import SyncResult
from ..services.sync_scheduler import SchedulerRegistry, SyncTrigger
from .deps import get_current_user_id, get_registry

router = APIRouter()
logger = logging.getLogger(__name__)


class SyncRequest(BaseModel):
    trigger: SyncTrigger = SyncTrigger.MANUAL


class SyncResultResponse(BaseModel):
    success: bool
    timestamp: datetime
    new_recordings: int = 0
    updated_recordings: int = 0
    trashed_recordings: int = 0
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            success=result.success,
            timestamp=result.timestamp,
            new_recordings=result.new_recordings,
            updated_recordings=result.updated_recordings,
            trashed_recordings=result.trashed_recordings,
            error=result.error,
        )


class SyncStatusResponse(BaseModel):
    state: str
    last_sync_time: Optional[datetime] = None
    next_sync_time: Optional[datetime] = None
    last_result: Optional[SyncResultResponse] = None


class SyncRequestResponse(BaseModel):
    trigger: SyncTrigger
    result: Optional[SyncResultResponse] = None


@router.post("", response_model=SyncRequestResponse)
async def request_sync(
    payload: SyncRequest,
    user_id: str = Depends(get_current_user_id),
    registry: SchedulerRegistry = Depends(get_registry),
) -> SyncRequestResponse:
    """Feed a trigger into the user's scheduler and wait for the sync that answers it.

    ``result`` is ``null`` when the trigger was ignored before any sync ever ran.
    """
    scheduler = registry.get(user_id)
    result = await scheduler.request_sync(payload.trigger)
    return SyncRequestResponse(
        trigger=payload.trigger,
        result=SyncResultResponse.from_result(result) if result is not None else None,
    )


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(
    user_id: str = Depends(get_current_user_id),
    registry: SchedulerRegistry = Depends(get_registry),
) -> SyncStatusResponse:
    scheduler = registry.peek(user_id)
    if scheduler is None:
        return SyncStatusResponse(state="idle")
    info = scheduler.status()
    last = info["last_result"]
    return SyncStatusResponse(
        state=info["state"],
        last_sync_time=info["last_sync_time"],
        next_sync_time=info["next_sync_time"],
        last_result=SyncResultResponse.from_result(last) if last is not None else None,
    )


@router.delete("/session")
async def end_sync_session(
    user_id: str = Depends(get_current_user_id),
    registry: SchedulerRegistry = Depends(get_registry),
) -> dict[str, bool]:
    """Stop the user's timer and cancel any sync in flight (logout / unmount)."""
    stopped = await registry.stop(user_id)
    logger.info("Sync session for user %s ended (was running: %s)", user_id, stopped)
    return {"stopped": stopped}
