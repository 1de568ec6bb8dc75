from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..services.pipeline import run_user_backfill
from ..services.transcription_jobs import TranscriptionJobManager
from .deps import get_current_user_id, get_jobs

router = APIRouter()
logger = logging.getLogger(__name__)


class BackfillErrorInfo(BaseModel):
    recordingId: Optional[int] = None
    message: str


class BackfillResponse(BaseModel):
    success: bool
    filled: int
    errors: List[BackfillErrorInfo]


@router.post("/backfill-transcriptions", response_model=BackfillResponse)
async def backfill_transcriptions(
    user_id: str = Depends(get_current_user_id),
    jobs: TranscriptionJobManager = Depends(get_jobs),
) -> BackfillResponse:
    """Transcribe every ready recording that has no transcript yet.

    Per-recording failures are reported in ``errors``; ``success`` only tells
    whether the sweep ran at all.
    """
    report = await run_user_backfill(user_id, jobs=jobs)
    logger.info("Backfill for user %s: %d filled, %d error(s)", user_id, report.filled, len(report.errors))
    data = report.to_dict()
    return BackfillResponse(success=True, filled=data["filled"], errors=data["errors"])
