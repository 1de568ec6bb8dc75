from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..models.recording import Recording
from ..models.transcription import Transcription
from ..services.pipeline import load_user
from ..services.recording_store import RecordingStore
from ..services.transcription_jobs import TranscriptionJobManager
from .deps import get_current_user_id, get_jobs, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


class TranscriptionInfo(BaseModel):
    status: str
    source: Optional[str] = None
    text: Optional[str] = None
    language: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    error_message: Optional[str] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Transcription) -> "TranscriptionInfo":
        return cls(
            status=row.status_str,
            source=row.source.value if row.source else None,
            text=row.text,
            language=row.language,
            provider=row.provider,
            model=row.model,
            error_message=row.error_message,
            completed_at=row.completed_at,
        )


class RecordingInfo(BaseModel):
    id: int
    plaud_file_id: str
    filename: str
    filetype: Optional[str] = None
    device_sn: Optional[str] = None
    filesize: int
    duration_ms: int
    start_time: Optional[int] = None
    end_time: Optional[int] = None
    version: int
    version_ms: int
    is_trash: bool
    ori_ready: bool
    transcription: Optional[TranscriptionInfo] = None

    @classmethod
    def from_row(cls, row: Recording) -> "RecordingInfo":
        return cls(
            id=row.id,
            plaud_file_id=row.plaud_file_id,
            filename=row.filename,
            filetype=row.filetype,
            device_sn=row.device_sn,
            filesize=row.filesize,
            duration_ms=row.duration_ms,
            start_time=row.start_time,
            end_time=row.end_time,
            version=row.version,
            version_ms=row.version_ms,
            is_trash=row.is_trash,
            ori_ready=row.ori_ready,
            transcription=TranscriptionInfo.from_row(row.transcription) if row.transcription else None,
        )


class ExternalTranscriptRequest(BaseModel):
    text: str = Field(..., min_length=1)
    language: Optional[str] = None


@router.get("", response_model=List[RecordingInfo])
async def list_recordings(
    include_trash: bool = False,
    user_id: str = Depends(get_current_user_id),
    store: RecordingStore = Depends(get_store),
) -> List[RecordingInfo]:
    return [RecordingInfo.from_row(r) for r in store.list_for_user(user_id, include_trash=include_trash)]


@router.get("/{recording_id}", response_model=RecordingInfo)
async def get_recording(
    recording_id: int,
    user_id: str = Depends(get_current_user_id),
    store: RecordingStore = Depends(get_store),
) -> RecordingInfo:
    recording = store.get(user_id, recording_id)
    if recording is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording not found")
    return RecordingInfo.from_row(recording)


@router.post("/{recording_id}/transcribe", response_model=TranscriptionInfo)
async def transcribe_recording(
    recording_id: int,
    force: bool = Query(False, description="Re-transcribe even when a transcript exists."),
    background: bool = Query(False, description="Hand the attempt to the worker and return immediately."),
    user_id: str = Depends(get_current_user_id),
    jobs: TranscriptionJobManager = Depends(get_jobs),
):
    """Run one transcription attempt for a recording.

    Concurrent requests for the same recording share the attempt in flight.
    """
    if jobs.store.get(user_id, recording_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording not found")

    if background:
        from ..workers.tasks import transcribe_recording_task

        task = transcribe_recording_task.delay(user_id, recording_id, force)
        logger.info("Queued transcription of recording %s as task %s", recording_id, task.id)
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content={"queued": True, "task_id": task.id, "recording_id": recording_id},
        )

    language = load_user(user_id).default_transcription_language
    transcription = await jobs.transcribe(user_id, recording_id, force=force, language=language)
    return TranscriptionInfo.from_row(transcription)


@router.put("/{recording_id}/transcription", response_model=TranscriptionInfo)
async def save_external_transcription(
    recording_id: int,
    payload: ExternalTranscriptRequest,
    user_id: str = Depends(get_current_user_id),
    store: RecordingStore = Depends(get_store),
) -> TranscriptionInfo:
    """Store a transcript produced outside the provider pipeline (e.g. in the browser)."""
    row = store.save_external_transcription(user_id, recording_id, payload.text, payload.language)
    logger.info("Stored external transcript for recording %s (%d chars)", recording_id, len(payload.text))
    return TranscriptionInfo.from_row(row)
