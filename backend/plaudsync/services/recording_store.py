"""Persistent store for mirrored recordings and their transcriptions.

Each public write opens its own short session and commits exactly one
recording row (or one transcription row). Reconciliation and backfill share
the store and may interleave because every write is a keyed upsert.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterator, List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..db.database import SessionLocal
from ..errors import InvalidTransition, RecordingNotFound
from ..models.plaud import PlaudRecording
from ..models.recording import Recording
from ..models.transcription import (
    Transcription,
    TranscriptionSource,
    TranscriptionStatus,
    can_transition,
)

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    TRASHED = "trashed"
    UNCHANGED = "unchanged"


def _apply_remote(row: Recording, remote: PlaudRecording) -> None:
    row.file_md5 = remote.file_md5 or None
    row.filename = remote.filename
    row.filetype = remote.filetype or None
    row.device_sn = remote.serial_number or None
    row.filesize = remote.filesize
    row.duration_ms = remote.duration
    row.start_time = remote.start_time or None
    row.end_time = remote.end_time or None
    row.version = remote.version
    row.version_ms = remote.version_ms
    row.is_trash = remote.is_trash
    row.ori_ready = remote.ori_ready
    row.is_trans = remote.is_trans
    row.is_summary = remote.is_summary


class RecordingStore:
    """Upsert-by-natural-key access to recordings and transcriptions."""

    def __init__(self, session_factory: sessionmaker = SessionLocal) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Recordings
    # ------------------------------------------------------------------

    def get(self, user_id: str, recording_id: int) -> Optional[Recording]:
        with self._session() as db:
            return (
                db.query(Recording)
                .filter(Recording.user_id == user_id, Recording.id == recording_id)
                .first()
            )

    def get_by_remote_id(self, user_id: str, plaud_file_id: str) -> Optional[Recording]:
        with self._session() as db:
            return (
                db.query(Recording)
                .filter(Recording.user_id == user_id, Recording.plaud_file_id == plaud_file_id)
                .first()
            )

    def list_for_user(self, user_id: str, include_trash: bool = False) -> List[Recording]:
        with self._session() as db:
            query = db.query(Recording).filter(Recording.user_id == user_id)
            if not include_trash:
                query = query.filter(Recording.is_trash.is_(False))
            return query.order_by(Recording.start_time.desc(), Recording.id.desc()).all()

    def count_for_user(self, user_id: str) -> int:
        with self._session() as db:
            return db.query(Recording).filter(Recording.user_id == user_id).count()

    def upsert_remote(self, user_id: str, remote: PlaudRecording) -> UpsertOutcome:
        """Merge one remote recording into the local mirror.

        * unknown id -> insert
        * strictly newer ``(version, version_ms)`` -> update in place
        * remote trashed at the same version, local not -> flag trashed
          (no purge, transcript kept)
        * anything else -> untouched, so replayed stale pages are harmless
        """
        try:
            return self._upsert_once(user_id, remote)
        except IntegrityError:
            # A concurrent writer inserted the same natural key first.
            logger.info("Concurrent insert for recording %s (user %s); merging as update", remote.id, user_id)
            return self._upsert_once(user_id, remote)

    def _upsert_once(self, user_id: str, remote: PlaudRecording) -> UpsertOutcome:
        with self._session() as db:
            row = (
                db.query(Recording)
                .filter(Recording.user_id == user_id, Recording.plaud_file_id == remote.id)
                .first()
            )
            if row is None:
                row = Recording(user_id=user_id, plaud_file_id=remote.id)
                _apply_remote(row, remote)
                db.add(row)
                db.commit()
                logger.debug("Created recording %s for user %s", remote.id, user_id)
                return UpsertOutcome.CREATED

            if remote.version_key > row.version_key:
                was_trash = row.is_trash
                _apply_remote(row, remote)
                db.commit()
                if remote.is_trash and not was_trash:
                    return UpsertOutcome.TRASHED
                return UpsertOutcome.UPDATED

            if remote.is_trash and not row.is_trash and remote.version_key >= row.version_key:
                row.is_trash = True
                db.commit()
                return UpsertOutcome.TRASHED

            if remote.version_key < row.version_key:
                logger.debug(
                    "Ignoring stale data for recording %s: remote %s < local %s",
                    remote.id, remote.version_key, row.version_key,
                )
            return UpsertOutcome.UNCHANGED

    def backfill_candidates(self, user_id: str) -> List[Recording]:
        """Audio-ready, non-trashed recordings whose transcript is missing or failed."""
        with self._session() as db:
            return (
                db.query(Recording)
                .outerjoin(Transcription, Transcription.recording_id == Recording.id)
                .filter(
                    Recording.user_id == user_id,
                    Recording.ori_ready.is_(True),
                    Recording.is_trash.is_(False),
                    or_(
                        Transcription.id.is_(None),
                        Transcription.status.in_([TranscriptionStatus.NONE, TranscriptionStatus.FAILED]),
                    ),
                )
                .order_by(Recording.start_time.desc(), Recording.id.desc())
                .all()
            )

    # ------------------------------------------------------------------
    # Transcriptions
    # ------------------------------------------------------------------

    def get_transcription(self, recording_id: int) -> Optional[Transcription]:
        with self._session() as db:
            return db.query(Transcription).filter(Transcription.recording_id == recording_id).first()

    def transition(
        self,
        user_id: str,
        recording_id: int,
        target: TranscriptionStatus,
        *,
        text: Optional[str] = None,
        language: Optional[str] = None,
        error: Optional[str] = None,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Transcription:
        """Move a recording's transcription to ``target`` in one atomic write."""
        with self._session() as db:
            row = self._transcription_row(db, user_id, recording_id)
            current = row.status or TranscriptionStatus.NONE
            if not can_transition(current, target):
                raise InvalidTransition(
                    f"Transcription of recording {recording_id} cannot go from {current.value} to {target.value}"
                )

            row.status = target
            if target == TranscriptionStatus.QUEUED:
                row.error_message = None
            elif target == TranscriptionStatus.RUNNING:
                row.provider = provider
                row.model = model
            elif target == TranscriptionStatus.COMPLETE:
                row.text = text
                row.language = language
                row.source = TranscriptionSource.SERVER
                row.error_message = None
                row.completed_at = datetime.utcnow()
            elif target == TranscriptionStatus.FAILED:
                row.error_message = (error or "Unknown error")[:2000]
            db.commit()
            logger.debug("Recording %s transcription %s -> %s", recording_id, current.value, target.value)
            return row

    def claim(
        self,
        user_id: str,
        recording_id: int,
        *,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        force: bool = False,
        stale_after: Optional[float] = None,
    ) -> Optional[Transcription]:
        """Move a transcription into ``running`` with a single conditional UPDATE.

        The row passes through ``queued`` inside the same write. Only one caller,
        in any process, can win the claim; the others get ``None``. A ``running``
        row whose ``updated_at`` is older than ``stale_after`` seconds is taken
        over. A ``complete`` row is only claimable with ``force``.
        """
        try:
            return self._claim_once(user_id, recording_id, provider, model, force, stale_after)
        except IntegrityError:
            # A concurrent claim created the transcription row first.
            return self._claim_once(user_id, recording_id, provider, model, force, stale_after)

    def _claim_once(
        self,
        user_id: str,
        recording_id: int,
        provider: Optional[str],
        model: Optional[str],
        force: bool,
        stale_after: Optional[float],
    ) -> Optional[Transcription]:
        with self._session() as db:
            row = self._transcription_row(db, user_id, recording_id)
            db.flush()
            previous = row.status or TranscriptionStatus.NONE

            claimable = [TranscriptionStatus.NONE, TranscriptionStatus.QUEUED, TranscriptionStatus.FAILED]
            if force:
                claimable.append(TranscriptionStatus.COMPLETE)
            condition = Transcription.status.in_(claimable)
            if stale_after is not None:
                stale_before = datetime.utcnow() - timedelta(seconds=stale_after)
                condition = or_(
                    condition,
                    and_(Transcription.status == TranscriptionStatus.RUNNING, Transcription.updated_at < stale_before),
                )

            claimed = (
                db.query(Transcription)
                .filter(Transcription.id == row.id, condition)
                .update(
                    {
                        Transcription.status: TranscriptionStatus.RUNNING,
                        Transcription.provider: provider,
                        Transcription.model: model,
                        Transcription.error_message: None,
                        Transcription.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            db.commit()
            if claimed != 1:
                logger.debug("Recording %s transcription is held by another attempt", recording_id)
                return None
            db.refresh(row)
            if previous == TranscriptionStatus.RUNNING:
                logger.warning("Recording %s was left running by an interrupted attempt; taking it over", recording_id)
            logger.debug("Recording %s transcription %s -> running", recording_id, previous.value)
            return row

    def save_external_transcription(
        self,
        user_id: str,
        recording_id: int,
        text: str,
        language: Optional[str] = None,
    ) -> Transcription:
        """Store a transcript produced outside the provider pipeline."""
        with self._session() as db:
            row = self._transcription_row(db, user_id, recording_id)
            if row.status == TranscriptionStatus.RUNNING:
                raise InvalidTransition(f"Recording {recording_id} is being transcribed; try again when it finishes")
            row.status = TranscriptionStatus.COMPLETE
            row.source = TranscriptionSource.EXTERNAL
            row.text = text
            row.language = language
            row.error_message = None
            row.provider = None
            row.model = None
            row.completed_at = datetime.utcnow()
            db.commit()
            return row

    @staticmethod
    def _transcription_row(db: Session, user_id: str, recording_id: int) -> Transcription:
        recording = (
            db.query(Recording)
            .filter(Recording.user_id == user_id, Recording.id == recording_id)
            .first()
        )
        if recording is None:
            raise RecordingNotFound(f"Recording {recording_id} not found")
        row = db.query(Transcription).filter(Transcription.recording_id == recording_id).first()
        if row is None:
            row = Transcription(recording_id=recording_id, user_id=user_id, status=TranscriptionStatus.NONE)
            db.add(row)
        return row
