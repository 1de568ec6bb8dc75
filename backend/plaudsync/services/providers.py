"""AI provider gateway.

Every provider variant implements the same capability,
``transcribe(audio_path, language) -> TranscriptionOutput``; variants differ
only in endpoint, credential and model. Which configured provider serves a
capability is decided by the per-user default flags.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import mimetypes
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
from sqlalchemy.orm import sessionmaker

from ..config import settings
from ..db.database import SessionLocal
from ..errors import NoProviderConfigured, ProviderError, PlaudSyncError
from ..models.provider import ProviderCapability, ProviderConfig, ProviderKind
from . import whisper_local

logger = logging.getLogger(__name__)

OPENAI_DEFAULT_BASE_URL = "https://api.openai.com/v1"
OPENAI_DEFAULT_MODEL = "whisper-1"


@dataclass(frozen=True)
class TranscriptionOutput:
    text: str
    language: Optional[str] = None


class TranscriptionProvider(abc.ABC):
    """Capability interface shared by every provider variant."""

    name: str = "provider"
    model: Optional[str] = None

    @abc.abstractmethod
    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> TranscriptionOutput:
        """Return the transcript text and detected language, or raise ProviderError."""


class OpenAICompatibleProvider(TranscriptionProvider):
    """Any endpoint speaking the OpenAI ``/audio/transcriptions`` API.

    Covers OpenAI itself, Groq, Together AI, OpenRouter and local inference
    servers such as LM Studio or Ollama.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        name: str = "OpenAI",
        timeout: float = settings.PROVIDER_TIMEOUT,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or OPENAI_DEFAULT_BASE_URL).rstrip("/")
        self.model = model or OPENAI_DEFAULT_MODEL
        self.name = name
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "OpenAICompatibleProvider":
        return cls(
            api_key=config.api_key,
            base_url=config.base_url,
            model=config.default_model,
            name=config.provider,
        )

    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> TranscriptionOutput:
        url = f"{self.base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        data = {"model": self.model, "response_format": "verbose_json"}
        if language:
            data["language"] = language
        mime_type = mimetypes.guess_type(audio_path.name)[0] or "application/octet-stream"

        try:
            content = audio_path.read_bytes()
        except OSError as e:
            raise ProviderError(f"Cannot read audio file {audio_path}: {e}") from e

        logger.info(f"Sending {audio_path.name} ({len(content)} bytes) to {self.name} model {self.model}")
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.post(
                    url,
                    headers=headers,
                    data=data,
                    files={"file": (audio_path.name, content, mime_type)},
                )
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPStatusError as e:
                body = e.response.text[:300] if e.response is not None else ""
                logger.error(f"HTTP error {e.response.status_code} from {self.name}: {body}")
                raise ProviderError(f"{self.name} returned HTTP {e.response.status_code}: {body}") from e
            except httpx.RequestError as e:
                logger.error(f"Request to {self.name} failed: {e}")
                raise ProviderError(f"Request to {self.name} failed: {e}") from e
            except ValueError as e:
                raise ProviderError(f"{self.name} returned a non-JSON response") from e

        if not isinstance(payload, dict) or "text" not in payload:
            raise ProviderError(f"{self.name} response did not contain a transcript")
        return TranscriptionOutput(text=(payload.get("text") or "").strip(), language=payload.get("language") or language)


class LocalWhisperProvider(TranscriptionProvider):
    """In-process faster-whisper model; runs in a worker thread."""

    def __init__(self, model: Optional[str] = None, name: str = "Local Whisper") -> None:
        self.model = model or whisper_local.DEFAULT_MODEL_SIZE
        self.name = name

    @classmethod
    def from_config(cls, config: ProviderConfig) -> "LocalWhisperProvider":
        return cls(model=config.default_model, name=config.provider)

    async def transcribe(self, audio_path: Path, language: Optional[str] = None) -> TranscriptionOutput:
        try:
            text, detected = await asyncio.to_thread(whisper_local.transcribe_file, audio_path, language, self.model)
        except (FileNotFoundError, RuntimeError) as e:
            raise ProviderError(str(e)) from e
        return TranscriptionOutput(text=text, language=detected or language)


ProviderFactory = Callable[[ProviderConfig], TranscriptionProvider]

PROVIDER_REGISTRY: Dict[ProviderKind, ProviderFactory] = {
    ProviderKind.OPENAI_COMPATIBLE: OpenAICompatibleProvider.from_config,
    ProviderKind.LOCAL_WHISPER: LocalWhisperProvider.from_config,
}

CAPABILITY_FLAGS = {
    ProviderCapability.TRANSCRIPTION: ProviderConfig.is_default_transcription,
    ProviderCapability.ENHANCEMENT: ProviderConfig.is_default_enhancement,
}


class ProviderGateway:
    """Selects and builds the provider serving a capability for a user."""

    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        registry: Optional[Dict[ProviderKind, ProviderFactory]] = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry if registry is not None else PROVIDER_REGISTRY

    def select(self, user_id: str, capability: ProviderCapability) -> ProviderConfig:
        flag = CAPABILITY_FLAGS[capability]
        db = self._session_factory()
        try:
            candidates: List[ProviderConfig] = (
                db.query(ProviderConfig)
                .filter(ProviderConfig.user_id == user_id, flag.is_(True))
                .order_by(ProviderConfig.updated_at.desc(), ProviderConfig.id.desc())
                .all()
            )
        finally:
            db.close()

        if not candidates:
            raise NoProviderConfigured(
                f"No {capability.value} provider configured. Add one in Settings and mark it as default."
            )
        if len(candidates) > 1:
            logger.warning(
                "Data integrity: user %s has %d default %s providers (%s); using most recently updated id=%s",
                user_id, len(candidates), capability.value,
                ", ".join(str(c.id) for c in candidates), candidates[0].id,
            )
        return candidates[0]

    def build(self, config: ProviderConfig) -> TranscriptionProvider:
        kind = config.kind or ProviderKind.OPENAI_COMPATIBLE
        factory = self._registry.get(kind)
        if factory is None:
            raise PlaudSyncError(f"Unsupported provider kind: {kind}", status_code=400)
        return factory(config)

    def transcriber_for(self, user_id: str) -> TranscriptionProvider:
        return self.build(self.select(user_id, ProviderCapability.TRANSCRIPTION))

    def list_for_user(self, user_id: str) -> List[ProviderConfig]:
        db = self._session_factory()
        try:
            return (
                db.query(ProviderConfig)
                .filter(ProviderConfig.user_id == user_id)
                .order_by(ProviderConfig.created_at.asc(), ProviderConfig.id.asc())
                .all()
            )
        finally:
            db.close()

    def add(self, user_id: str, **fields) -> ProviderConfig:
        """Create a provider entry; default flags set here demote previous holders."""
        wants_transcription = bool(fields.pop("is_default_transcription", False))
        wants_enhancement = bool(fields.pop("is_default_enhancement", False))
        db = self._session_factory()
        try:
            config = ProviderConfig(user_id=user_id, **fields)
            db.add(config)
            db.flush()
            if wants_transcription:
                self._claim_default(db, config, ProviderCapability.TRANSCRIPTION)
            if wants_enhancement:
                self._claim_default(db, config, ProviderCapability.ENHANCEMENT)
            db.commit()
            return config
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def set_default(self, user_id: str, provider_id: int, capability: ProviderCapability) -> ProviderConfig:
        """Make ``provider_id`` the only default for ``capability`` (last write wins)."""
        db = self._session_factory()
        try:
            config = (
                db.query(ProviderConfig)
                .filter(ProviderConfig.user_id == user_id, ProviderConfig.id == provider_id)
                .first()
            )
            if config is None:
                raise PlaudSyncError(f"Provider {provider_id} not found", status_code=404)
            self._claim_default(db, config, capability)
            db.commit()
            logger.info("Provider %s is now the default %s provider for user %s", provider_id, capability.value, user_id)
            return config
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    @staticmethod
    def _claim_default(db, config: ProviderConfig, capability: ProviderCapability) -> None:
        flag = CAPABILITY_FLAGS[capability]
        now = datetime.utcnow()
        (
            db.query(ProviderConfig)
            .filter(
                ProviderConfig.user_id == config.user_id,
                ProviderConfig.id != config.id,
                flag.is_(True),
            )
            .update({flag.key: False, ProviderConfig.updated_at.key: now}, synchronize_session=False)
        )
        setattr(config, flag.key, True)
        config.updated_at = now
