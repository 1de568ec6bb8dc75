"""Per-recording transcription state machine.

``none -> queued -> running -> complete | failed``, with ``failed -> queued``
on retry and ``complete -> queued`` on an explicit re-transcription request.

At most one attempt per (user, recording) runs in this process; concurrent
requests for the same recording await the in-flight attempt and receive its
result. Across processes the store's conditional claim on the transcription
row decides the owner, and the other workers poll the row until it settles.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

from ..config import settings
from ..errors import ProviderError, RecordingNotFound
from ..models.recording import Recording
from ..models.transcription import Transcription, TranscriptionStatus
from ..utils.storage import RECORDINGS_DIR, recording_audio_path
from .plaud_client import PlaudClient
from .providers import ProviderGateway
from .recording_store import RecordingStore

logger = logging.getLogger(__name__)


class AudioSource(Protocol):
    async def fetch(self, recording: Recording) -> Path:
        """Return a local path holding the recording's audio."""


class PlaudAudioSource:
    """Downloads recording audio through a temporary URL and caches it on disk."""

    def __init__(self, client_factory: Callable[[], PlaudClient], root: Path = RECORDINGS_DIR) -> None:
        self._client_factory = client_factory
        self.root = root

    async def fetch(self, recording: Recording) -> Path:
        dest = recording_audio_path(recording.user_id, recording.plaud_file_id, recording.filetype, root=self.root)
        if dest.exists() and dest.stat().st_size > 0:
            logger.debug("Using cached audio for recording %s at %s", recording.id, dest)
            return dest
        async with self._client_factory() as client:
            url = await client.get_temp_download_url(recording.plaud_file_id)
            return await client.download_audio(url, dest)


JobKey = Tuple[str, int]


class TranscriptionJobManager:
    """Drives single transcription attempts through the provider gateway."""

    def __init__(
        self,
        store: RecordingStore,
        gateway: ProviderGateway,
        audio_source_factory: Callable[[str], AudioSource],
        *,
        provider_timeout: float = settings.PROVIDER_TIMEOUT,
        stale_after: float = settings.TRANSCRIPTION_STALE_AFTER,
        poll_interval: float = settings.TRANSCRIPTION_POLL_INTERVAL,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self._audio_source_factory = audio_source_factory
        self.provider_timeout = provider_timeout
        self.stale_after = stale_after
        self.poll_interval = poll_interval
        self._inflight: Dict[JobKey, "asyncio.Task[Transcription]"] = {}

    def is_running(self, user_id: str, recording_id: int) -> bool:
        task = self._inflight.get((user_id, recording_id))
        return task is not None and not task.done()

    async def transcribe(
        self,
        user_id: str,
        recording_id: int,
        *,
        force: bool = False,
        language: Optional[str] = None,
    ) -> Transcription:
        """Transcribe one recording, or join the attempt already in flight for it."""
        key = (user_id, recording_id)
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._attempt(user_id, recording_id, force=force, language=language))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.info("Recording %s already being transcribed; joining in-flight attempt", recording_id)
        # A caller going away must not cancel the attempt other callers share.
        return await asyncio.shield(task)

    def _forget(self, key: JobKey, task: "asyncio.Task[Transcription]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Transcription attempt %s ended with %r", key, task.exception())

    def cancel(self, user_id: str, recording_id: int) -> bool:
        task = self._inflight.get((user_id, recording_id))
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self, user_id: Optional[str] = None) -> int:
        cancelled = 0
        for (owner, recording_id), task in list(self._inflight.items()):
            if (user_id is None or owner == user_id) and not task.done():
                task.cancel()
                cancelled += 1
        return cancelled

    async def _attempt(
        self,
        user_id: str,
        recording_id: int,
        *,
        force: bool,
        language: Optional[str],
    ) -> Transcription:
        recording = self.store.get(user_id, recording_id)
        if recording is None:
            raise RecordingNotFound(f"Recording {recording_id} not found")

        current = self.store.get_transcription(recording_id)
        if current is not None and current.status == TranscriptionStatus.COMPLETE and not force:
            logger.info("Recording %s already transcribed; returning stored transcript", recording_id)
            return current

        # Raises NoProviderConfigured before any state change.
        provider = self.gateway.transcriber_for(user_id)

        while True:
            claimed = self.store.claim(
                user_id, recording_id,
                provider=provider.name, model=provider.model,
                force=force, stale_after=self.stale_after,
            )
            if claimed is not None:
                break
            settled = await self._wait_for_other_attempt(recording_id)
            if settled is not None:
                return settled
        logger.info("Transcribing recording %s with %s (%s)", recording_id, provider.name, provider.model)

        try:
            audio_path = await self._audio_source_factory(user_id).fetch(recording)
            output = await asyncio.wait_for(provider.transcribe(audio_path, language), timeout=self.provider_timeout)
        except asyncio.CancelledError:
            self.store.transition(user_id, recording_id, TranscriptionStatus.FAILED, error="Transcription cancelled")
            raise
        except asyncio.TimeoutError as exc:
            message = f"{provider.name} did not answer within {self.provider_timeout:.0f}s"
            self.store.transition(user_id, recording_id, TranscriptionStatus.FAILED, error=message)
            raise ProviderError(message) from exc
        except Exception as exc:
            message = getattr(exc, "detail", None) or str(exc) or exc.__class__.__name__
            logger.error("Transcription of recording %s failed: %s", recording_id, message)
            self.store.transition(user_id, recording_id, TranscriptionStatus.FAILED, error=message)
            raise

        result = self.store.transition(
            user_id, recording_id, TranscriptionStatus.COMPLETE,
            text=output.text, language=output.language,
        )
        logger.info("Recording %s transcribed (%d chars, language=%s)", recording_id, len(output.text), output.language)
        return result

    async def _wait_for_other_attempt(self, recording_id: int) -> Optional[Transcription]:
        """Poll a row another worker holds until that attempt settles.

        Returns the completed row or raises the recorded failure. Returns
        ``None`` when the row was released or went stale, so the caller can
        claim it again.
        """
        logger.info("Recording %s is being transcribed by another worker; waiting for it", recording_id)
        while True:
            row = self.store.get_transcription(recording_id)
            status = row.status if row is not None else TranscriptionStatus.NONE
            if status == TranscriptionStatus.COMPLETE:
                return row
            if status == TranscriptionStatus.FAILED:
                raise ProviderError(row.error_message or "Transcription failed")
            if status != TranscriptionStatus.RUNNING or self._is_stale(row):
                return None
            await asyncio.sleep(self.poll_interval)

    def _is_stale(self, row: Transcription) -> bool:
        updated = row.updated_at
        if updated is None:
            return True
        if updated.tzinfo is not None:
            updated = updated.astimezone(timezone.utc).replace(tzinfo=None)
        return datetime.utcnow() - updated > timedelta(seconds=self.stale_after)
