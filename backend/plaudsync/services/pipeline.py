"""Wiring of the sync & transcription core for the API process and the worker.

Builds per-user Plaud clients from the user row and keeps the process-wide
singletons: one job manager (so concurrent transcription requests collapse)
and one scheduler registry (so each user's syncs are single-flight).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.orm import sessionmaker

from ..db.database import SessionLocal
from ..errors import AuthError, PlaudSyncError
from ..models.transcription import Transcription
from ..models.user import User
from .backfill import BackfillReport, backfill_transcriptions
from .notifications import notify_sync_result
from .plaud_client import PlaudClient, resolve_api_base
from .providers import ProviderGateway
from .reconciliation import ReconciliationEngine, SyncResult
from .recording_store import RecordingStore
from .sync_scheduler import Listener, SchedulerRegistry, SyncConfig
from .transcription_jobs import AudioSource, PlaudAudioSource, TranscriptionJobManager

logger = logging.getLogger(__name__)


def load_user(user_id: str, session_factory: sessionmaker = SessionLocal) -> User:
    db = session_factory()
    try:
        user = db.query(User).filter(User.id == user_id).first()
    finally:
        db.close()
    if user is None:
        raise PlaudSyncError(f"User {user_id} not found", status_code=404)
    return user


def build_plaud_client(user: User) -> PlaudClient:
    if not user.plaud_bearer_token:
        raise AuthError("No Plaud account connected; add your Plaud token in Settings.")
    return PlaudClient(user.plaud_bearer_token, resolve_api_base(user.plaud_server))


def audio_source_factory(session_factory: sessionmaker = SessionLocal) -> Callable[[str], AudioSource]:
    def _factory(user_id: str) -> AudioSource:
        return PlaudAudioSource(lambda: build_plaud_client(load_user(user_id, session_factory)))
    return _factory


def build_job_manager(session_factory: sessionmaker = SessionLocal) -> TranscriptionJobManager:
    return TranscriptionJobManager(
        RecordingStore(session_factory),
        ProviderGateway(session_factory),
        audio_source_factory(session_factory),
    )


_job_manager: Optional[TranscriptionJobManager] = None


def get_job_manager() -> TranscriptionJobManager:
    global _job_manager
    if _job_manager is None:
        _job_manager = build_job_manager()
    return _job_manager


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def run_user_sync(user_id: str, session_factory: sessionmaker = SessionLocal) -> SyncResult:
    """One reconciliation run for a user; always returns a SyncResult."""
    try:
        user = load_user(user_id, session_factory)
        client = build_plaud_client(user)
    except PlaudSyncError as exc:
        logger.warning("Cannot sync user %s: %s", user_id, exc.detail)
        return SyncResult(success=False, error=exc.detail)

    async with client:
        engine = ReconciliationEngine(client, RecordingStore(session_factory))
        return await engine.run(user_id, user.plaud_device_sn)


async def run_user_backfill(
    user_id: str,
    jobs: Optional[TranscriptionJobManager] = None,
    session_factory: sessionmaker = SessionLocal,
) -> BackfillReport:
    user = load_user(user_id, session_factory)
    jobs = jobs or get_job_manager()
    return await backfill_transcriptions(
        user_id, jobs.store, jobs, language=user.default_transcription_language,
    )


async def run_user_transcription(
    user_id: str,
    recording_id: int,
    force: bool = False,
    jobs: Optional[TranscriptionJobManager] = None,
    session_factory: sessionmaker = SessionLocal,
) -> Transcription:
    user = load_user(user_id, session_factory)
    jobs = jobs or get_job_manager()
    return await jobs.transcribe(user_id, recording_id, force=force, language=user.default_transcription_language)


# ---------------------------------------------------------------------------
# Scheduling
# ---------------------------------------------------------------------------

def sync_config_for(user_id: str) -> SyncConfig:
    return SyncConfig.from_user(load_user(user_id))


def sync_listeners_for(user_id: str) -> List[Listener]:
    async def _notify(result: SyncResult) -> None:
        user = load_user(user_id)
        if user.sync_notifications:
            await notify_sync_result(user_id, result)

    async def _auto_transcribe(result: SyncResult) -> None:
        if not result.success or result.new_recordings == 0:
            return
        if not load_user(user_id).auto_transcribe:
            return
        from ..workers.tasks import backfill_transcriptions_task  # the worker module imports this one

        # delay() talks to the broker synchronously.
        await asyncio.to_thread(backfill_transcriptions_task.delay, user_id)
        logger.info("Queued auto-transcription of %d new recording(s) for user %s", result.new_recordings, user_id)

    return [_notify, _auto_transcribe]


_registry: Optional[SchedulerRegistry] = None


def get_scheduler_registry() -> SchedulerRegistry:
    global _registry
    if _registry is None:
        _registry = SchedulerRegistry(
            sync_fn_factory=lambda user_id: (lambda: run_user_sync(user_id)),
            config_loader=sync_config_for,
            listener_factory=sync_listeners_for,
        )
    return _registry
