"""Celery task definitions."""

import asyncio
import logging

from celery import Celery, Task

from plaudsync.config import settings
from plaudsync.db.base import Base
from plaudsync.db.database import engine
from plaudsync.logging_config import setup_logging as setup_app_logging
from ..services.pipeline import build_job_manager, run_user_backfill, run_user_transcription

# Ensure DB schema exists when the worker process starts.  This way we do not
# depend on the API container running first (handy during local dev)
Base.metadata.create_all(bind=engine)

# --- Logger Setup ---
setup_app_logging()
logger = logging.getLogger(__name__)


# --- Celery Application Setup ---
celery_app = Celery(
    "plaudsync",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=['plaudsync.workers.tasks'],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # Provider calls are slow; one task at a time per worker process keeps rate limits sane.
    worker_prefetch_multiplier=1,
)


class BaseTaskWithLogging(Task):
    """Base Celery Task with start/success/failure logging."""
    abstract = True

    def __call__(self, *args, **kwargs):
        logger.info(f"Task {self.name} [{self.request.id}] called with args: {args}, kwargs: {kwargs}")
        return super().__call__(*args, **kwargs)

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(f"Task {self.name} [{task_id}] failed: {exc}", exc_info=einfo)
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {self.name} [{task_id}] completed successfully. Result: {retval}")
        super().on_success(retval, task_id, args, kwargs)


# --- Single Recording Transcription Task ---
@celery_app.task(name="transcribe_recording_task", base=BaseTaskWithLogging)
def transcribe_recording_task(user_id: str, recording_id: int, force: bool = False):
    logger.info(f"Starting transcription for recording {recording_id} (user {user_id}, force={force})")
    # Every task runs in a fresh event loop, so it gets its own job manager.
    jobs = build_job_manager()
    try:
        transcription = asyncio.run(run_user_transcription(user_id, recording_id, force=force, jobs=jobs))
    except Exception as e:
        logger.error(f"Transcription task for recording {recording_id} failed: {e}", exc_info=True)
        raise
    return {
        "recording_id": recording_id,
        "status": transcription.status_str,
        "language": transcription.language,
    }


# --- Backfill Task ---
@celery_app.task(name="backfill_transcriptions_task", base=BaseTaskWithLogging)
def backfill_transcriptions_task(user_id: str):
    logger.info(f"Starting transcription backfill for user {user_id}")
    report = asyncio.run(run_user_backfill(user_id, jobs=build_job_manager()))
    result = report.to_dict()
    result["status"] = "COMPLETED" if not report.errors else "PARTIAL"
    return result


logger.info("Celery tasks defined and logging configured.")
