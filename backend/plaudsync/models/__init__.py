# Namespace for Pydantic & ORM models.
from .user import ApiSession, User
from .recording import Recording
from .transcription import Transcription, TranscriptionSource, TranscriptionStatus
from .provider import ProviderCapability, ProviderConfig, ProviderKind

__all__ = [
    "ApiSession",
    "User",
    "Recording",
    "Transcription",
    "TranscriptionSource",
    "TranscriptionStatus",
    "ProviderCapability",
    "ProviderConfig",
    "ProviderKind",
]
