"""Backfill sweep: transcribe every eligible recording that lacks a transcript."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..models.transcription import TranscriptionStatus
from .recording_store import RecordingStore
from .transcription_jobs import TranscriptionJobManager

logger = logging.getLogger(__name__)


@dataclass
class BackfillError:
    recording_id: Optional[int]
    message: str


@dataclass
class BackfillReport:
    filled: int = 0
    errors: List[BackfillError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filled": self.filled,
            "errors": [{"recordingId": e.recording_id, "message": e.message} for e in self.errors],
        }


def _completed_since(row, started: datetime) -> bool:
    completed = row.completed_at
    if completed is None:
        return False
    if completed.tzinfo is not None:
        completed = completed.astimezone(timezone.utc).replace(tzinfo=None)
    return completed >= started


async def backfill_transcriptions(
    user_id: str,
    store: RecordingStore,
    jobs: TranscriptionJobManager,
    *,
    max_concurrency: int = settings.BACKFILL_CONCURRENCY,
    language: Optional[str] = None,
) -> BackfillReport:
    """Run the job manager across all of a user's untranscribed recordings.

    Never raises for item-level failures: they are collected in
    ``report.errors`` and the sweep carries on. ``filled`` counts only items
    that reached ``complete`` during this call.
    """
    report = BackfillReport()
    try:
        candidates = store.backfill_candidates(user_id)
    except SQLAlchemyError as exc:
        logger.exception("Could not select backfill candidates for user %s", user_id)
        report.errors.append(BackfillError(recording_id=None, message=f"Could not load recordings: {exc}"))
        return report

    if not candidates:
        logger.info("Backfill for user %s: nothing to do", user_id)
        return report

    logger.info("Backfill for user %s: %d recording(s) eligible", user_id, len(candidates))
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _run_one(recording_id: int) -> None:
        async with semaphore:
            started = datetime.utcnow()
            try:
                result = await jobs.transcribe(user_id, recording_id, language=language)
            except Exception as exc:
                message = getattr(exc, "detail", None) or str(exc) or exc.__class__.__name__
                logger.warning("Backfill item %s failed: %s", recording_id, message)
                report.errors.append(BackfillError(recording_id=recording_id, message=message))
                return
            # A row another caller finished before this attempt started is not ours.
            if result.status == TranscriptionStatus.COMPLETE and _completed_since(result, started):
                report.filled += 1

    await asyncio.gather(*(_run_one(r.id) for r in candidates))
    logger.info("Backfill for user %s finished: filled=%d errors=%d", user_id, report.filled, len(report.errors))
    return report
