"""SQLAlchemy model for user-configured AI providers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text

from plaudsync.db.base import Base


class ProviderKind(str, Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    LOCAL_WHISPER = "local_whisper"


class ProviderCapability(str, Enum):
    TRANSCRIPTION = "transcription"
    ENHANCEMENT = "enhancement"


class ProviderConfig(Base):
    """
    One AI provider entry in a user's settings.

    At most one row per user holds ``is_default_transcription``; the gateway
    demotes the previous holder whenever the flag is set.
    """
    __tablename__ = "provider_configs"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(100), nullable=False, comment="Display name, e.g. 'OpenAI', 'Groq', 'Ollama'.")
    kind = Column(SAEnum(ProviderKind), nullable=False, default=ProviderKind.OPENAI_COMPATIBLE)
    base_url = Column(String(512), nullable=True)
    api_key = Column(Text, nullable=True)
    default_model = Column(String(100), nullable=True)
    is_default_transcription = Column(Boolean, nullable=False, default=False)
    is_default_enhancement = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
