"""SQLAlchemy model & state machine for recording transcriptions."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from plaudsync.db.base import Base


class TranscriptionStatus(str, Enum):
    """Lifecycle of a recording's transcript."""

    NONE = "none"
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


class TranscriptionSource(str, Enum):
    SERVER = "server"      # produced by our provider pipeline
    EXTERNAL = "external"  # supplied by a client


# Forward-only, except FAILED -> QUEUED (retry) and COMPLETE -> QUEUED (re-transcription).
ALLOWED_TRANSITIONS: Dict[TranscriptionStatus, FrozenSet[TranscriptionStatus]] = {
    TranscriptionStatus.NONE: frozenset({TranscriptionStatus.QUEUED}),
    TranscriptionStatus.QUEUED: frozenset({TranscriptionStatus.RUNNING, TranscriptionStatus.FAILED}),
    TranscriptionStatus.RUNNING: frozenset({TranscriptionStatus.COMPLETE, TranscriptionStatus.FAILED}),
    TranscriptionStatus.FAILED: frozenset({TranscriptionStatus.QUEUED}),
    TranscriptionStatus.COMPLETE: frozenset({TranscriptionStatus.QUEUED}),
}


def can_transition(current: TranscriptionStatus, target: TranscriptionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class Transcription(Base):
    """
    The single active transcript of a recording.

    Stores the text, detected language, job status and the last error so the
    backfill sweep can pick up failed items again.
    """
    __tablename__ = "transcriptions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    recording_id = Column(Integer, ForeignKey("recordings.id", ondelete="CASCADE"), nullable=False, unique=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=True, comment="The full transcript in plain text format.")
    language = Column(String(50), nullable=True, comment="The detected language of the audio (e.g., 'en', 'es').")
    status = Column(SAEnum(TranscriptionStatus), nullable=False, default=TranscriptionStatus.NONE)
    source = Column(SAEnum(TranscriptionSource), nullable=True)
    error_message = Column(Text, nullable=True)
    provider = Column(String(100), nullable=True, comment="Provider name that produced the text.")
    model = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    recording = relationship("Recording", back_populates="transcription")

    @property
    def status_str(self) -> str:
        return self.status.value if isinstance(self.status, TranscriptionStatus) else str(self.status)
