import logging
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from plaudsync.errors import NoProviderConfigured, PlaudSyncError, ProviderError
from plaudsync.models.provider import ProviderCapability, ProviderConfig, ProviderKind
from plaudsync.services.providers import LocalWhisperProvider, OpenAICompatibleProvider


def _defaults(gateway, user_id, capability=ProviderCapability.TRANSCRIPTION):
    flag = "is_default_transcription" if capability == ProviderCapability.TRANSCRIPTION else "is_default_enhancement"
    return [p.id for p in gateway.list_for_user(user_id) if getattr(p, flag)]


def test_no_default_raises(gateway, user):
    gateway.add(user.id, provider="OpenAI", api_key="sk-1")
    with pytest.raises(NoProviderConfigured):
        gateway.select(user.id, ProviderCapability.TRANSCRIPTION)


def test_setting_a_default_demotes_the_previous_one(gateway, user):
    openai = gateway.add(user.id, provider="OpenAI", api_key="sk-1", is_default_transcription=True)
    groq = gateway.add(user.id, provider="Groq", api_key="gsk-2", is_default_transcription=True)

    assert _defaults(gateway, user.id) == [groq.id]
    assert gateway.select(user.id, ProviderCapability.TRANSCRIPTION).id == groq.id

    gateway.set_default(user.id, openai.id, ProviderCapability.TRANSCRIPTION)
    assert _defaults(gateway, user.id) == [openai.id]


def test_capabilities_have_independent_defaults(gateway, user):
    openai = gateway.add(user.id, provider="OpenAI", is_default_transcription=True)
    ollama = gateway.add(user.id, provider="Ollama", is_default_enhancement=True)

    assert gateway.select(user.id, ProviderCapability.TRANSCRIPTION).id == openai.id
    assert gateway.select(user.id, ProviderCapability.ENHANCEMENT).id == ollama.id


def test_set_default_for_unknown_provider(gateway, user):
    with pytest.raises(PlaudSyncError) as excinfo:
        gateway.set_default(user.id, 404, ProviderCapability.TRANSCRIPTION)
    assert excinfo.value.status_code == 404


def test_multiple_defaults_pick_most_recent_and_warn(session_factory, gateway, user, caplog):
    now = datetime.utcnow()
    db = session_factory()
    try:
        db.add_all([
            ProviderConfig(user_id=user.id, provider="Old", is_default_transcription=True,
                           updated_at=now - timedelta(days=2)),
            ProviderConfig(user_id=user.id, provider="Recent", is_default_transcription=True,
                           updated_at=now - timedelta(hours=1)),
        ])
        db.commit()
    finally:
        db.close()

    with caplog.at_level(logging.WARNING, logger="plaudsync.services.providers"):
        selected = gateway.select(user.id, ProviderCapability.TRANSCRIPTION)

    assert selected.provider == "Recent"
    assert "Data integrity" in caplog.text


def test_build_uses_kind(gateway, user):
    config = gateway.add(user.id, provider="On device", kind=ProviderKind.LOCAL_WHISPER, default_model="small",
                         is_default_transcription=True)
    provider = gateway.transcriber_for(user.id)
    assert isinstance(provider, LocalWhisperProvider)
    assert provider.model == "small"
    assert provider.name == config.provider


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_openai_compatible_transcribe(mock_post, tmp_path):
    audio = tmp_path / "rec1.mp3"
    audio.write_bytes(b"ID3audio")

    mock_response = MagicMock()
    mock_response.json.return_value = {"text": " Hello there. ", "language": "english"}
    mock_response.raise_for_status = MagicMock()
    mock_post.return_value = mock_response

    provider = OpenAICompatibleProvider(api_key="gsk-1", base_url="https://api.groq.com/openai/v1/",
                                        model="whisper-large-v3", name="Groq")
    output = await provider.transcribe(audio, "en")

    assert output.text == "Hello there."
    assert output.language == "english"
    mock_post.assert_called_once()
    assert mock_post.call_args.args[0] == "https://api.groq.com/openai/v1/audio/transcriptions"
    kwargs = mock_post.call_args.kwargs
    assert kwargs["headers"] == {"Authorization": "Bearer gsk-1"}
    assert kwargs["data"] == {"model": "whisper-large-v3", "response_format": "verbose_json", "language": "en"}
    assert kwargs["files"]["file"][0] == "rec1.mp3"


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_openai_compatible_http_error(mock_post, tmp_path):
    audio = tmp_path / "rec1.mp3"
    audio.write_bytes(b"ID3audio")
    request = httpx.Request("POST", "https://api.openai.com/v1/audio/transcriptions")
    mock_post.side_effect = httpx.HTTPStatusError(
        "server error", request=request, response=httpx.Response(500, text="overloaded", request=request),
    )

    provider = OpenAICompatibleProvider(api_key="sk-1")
    with pytest.raises(ProviderError, match="HTTP 500"):
        await provider.transcribe(audio)


@pytest.mark.asyncio
async def test_openai_compatible_missing_file(tmp_path):
    provider = OpenAICompatibleProvider(api_key="sk-1")
    with pytest.raises(ProviderError, match="Cannot read audio"):
        await provider.transcribe(tmp_path / "missing.mp3")


@pytest.mark.asyncio
@patch("plaudsync.services.providers.whisper_local.transcribe_file")
async def test_local_whisper_runs_in_thread(mock_transcribe, tmp_path):
    mock_transcribe.return_value = ("hallo welt", "de")

    output = await LocalWhisperProvider(model="tiny").transcribe(tmp_path / "rec1.mp3")

    assert (output.text, output.language) == ("hallo welt", "de")
    mock_transcribe.assert_called_once_with(tmp_path / "rec1.mp3", None, "tiny")


@pytest.mark.asyncio
@patch("plaudsync.services.providers.whisper_local.transcribe_file")
async def test_local_whisper_errors_become_provider_errors(mock_transcribe, tmp_path):
    mock_transcribe.side_effect = RuntimeError("Whisper model 'tiny' failed to load")
    with pytest.raises(ProviderError, match="failed to load"):
        await LocalWhisperProvider(model="tiny").transcribe(tmp_path / "rec1.mp3")
