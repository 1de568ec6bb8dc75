"""SQLAlchemy models for users and their API sessions.

Login and registration live outside this service; these tables only carry
what the sync pipeline consumes: the Plaud credential and the per-user sync
preferences.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text

from plaudsync.db.base import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """An account owning one Plaud device connection."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(255), unique=True, nullable=False, index=True)
    plaud_bearer_token = Column(Text, nullable=True, comment="Bearer token for the Plaud cloud API.")
    plaud_server = Column(String(20), nullable=False, default="global", comment="Key into PLAUD_SERVERS.")
    plaud_device_sn = Column(String(64), nullable=True, comment="Restrict sync to this device serial; all devices when empty.")

    # Sync preferences (intervals in milliseconds, as the settings UI stores them)
    sync_interval_ms = Column(Integer, nullable=False, default=300_000)
    auto_sync_enabled = Column(Boolean, nullable=False, default=True)
    sync_on_mount = Column(Boolean, nullable=False, default=True)
    sync_on_visibility_change = Column(Boolean, nullable=False, default=True)
    sync_notifications = Column(Boolean, nullable=False, default=True)

    # Transcription preferences
    auto_transcribe = Column(Boolean, nullable=False, default=False)
    default_transcription_language = Column(String(10), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


class ApiSession(Base):
    """Opaque session token issued by the authentication layer."""

    __tablename__ = "api_sessions"

    token = Column(String(128), primary_key=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
