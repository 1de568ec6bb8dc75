"""SQLAlchemy model for mirrored Plaud recordings."""

from __future__ import annotations

from datetime import datetime
from typing import Tuple

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from plaudsync.db.base import Base


class Recording(Base):
    """
    Local mirror of one recording in the user's Plaud cloud account.

    The natural key is (user_id, plaud_file_id); the integer primary key is
    stable once the row exists. Rows are soft-deleted through ``is_trash`` and
    never purged by the sync.
    """
    __tablename__ = "recordings"
    __table_args__ = (
        UniqueConstraint("user_id", "plaud_file_id", name="uq_recordings_user_remote"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plaud_file_id = Column(String(64), nullable=False, comment="Remote recording id.")
    file_md5 = Column(String(64), nullable=True, comment="Content hash reported by the remote.")
    filename = Column(String(512), nullable=False, default="")
    filetype = Column(String(32), nullable=True)
    device_sn = Column(String(64), nullable=True, index=True)
    filesize = Column(BigInteger, nullable=False, default=0)
    duration_ms = Column(BigInteger, nullable=False, default=0)
    start_time = Column(BigInteger, nullable=True, comment="Epoch milliseconds.")
    end_time = Column(BigInteger, nullable=True, comment="Epoch milliseconds.")
    version = Column(BigInteger, nullable=False, default=0)
    version_ms = Column(BigInteger, nullable=False, default=0)
    is_trash = Column(Boolean, nullable=False, default=False)
    ori_ready = Column(Boolean, nullable=False, default=False, comment="Audio is ready for download.")
    is_trans = Column(Boolean, nullable=False, default=False, comment="Remote-side transcription hint.")
    is_summary = Column(Boolean, nullable=False, default=False, comment="Remote-side summary hint.")
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    transcription = relationship("Transcription", back_populates="recording", uselist=False, lazy="joined")

    @property
    def version_key(self) -> Tuple[int, int]:
        return (self.version or 0, self.version_ms or 0)
