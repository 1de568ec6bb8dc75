from pathlib import Path
from typing import Dict, Optional, Tuple
from faster_whisper import WhisperModel
import logging
import threading

from ..config import settings

# Get a logger for this module
logger = logging.getLogger(__name__)

DEFAULT_MODEL_SIZE = "base"  # Examples: "base", "small", "medium", "large-v3"

# --- Whisper Model Cache ---
# Loading a model is expensive; each worker process keeps one instance per
# (size, device, compute type) and reuses it for every recording.
_models: Dict[Tuple[str, str, str], WhisperModel] = {}
_models_lock = threading.Lock()


def get_whisper_model(model_size: Optional[str] = None) -> WhisperModel:
    """Initializes and returns the Whisper model instance. Caches the instance."""
    key = (model_size or DEFAULT_MODEL_SIZE, settings.WHISPER_DEVICE, settings.WHISPER_COMPUTE_TYPE)
    with _models_lock:
        model = _models.get(key)
        if model is None:
            size, device, compute_type = key
            logger.info(f"Initializing Whisper model: Size='{size}', Device='{device}', Compute='{compute_type}'")
            try:
                model = WhisperModel(size, device=device, compute_type=compute_type)
            except Exception as e:
                logger.error(f"Failed to initialize Whisper model (Size: {size}, Device: {device}): {e}", exc_info=True)
                raise RuntimeError(f"Whisper model '{size}' failed to load: {e}") from e
            _models[key] = model
            logger.info("Whisper model initialized successfully.")
    return model


def transcribe_file(audio_input_path: Path, language: Optional[str] = None, model_size: Optional[str] = None) -> Tuple[str, str]:
    """
    Transcribes an audio file with a locally loaded Whisper model.

    Blocking; call it from a worker thread when inside the event loop.

    Args:
        audio_input_path: Path to the input audio file.
        language: Optional ISO language hint; auto-detected when omitted.
        model_size: faster-whisper model size or path.

    Returns:
        A tuple of (plain_text_transcript, detected_language).

    Raises:
        FileNotFoundError: If the audio input file does not exist.
        RuntimeError: If the model failed to initialize or transcription fails.
    """
    if not audio_input_path.exists():
        logger.error(f"Audio input file for transcription not found: {audio_input_path}")
        raise FileNotFoundError(f"Audio input file not found: {audio_input_path}")

    model = get_whisper_model(model_size)
    logger.info(f"Starting local transcription for: {audio_input_path}")

    plain_text_parts = []
    try:
        segments, info = model.transcribe(str(audio_input_path), beam_size=5, language=language)
        logger.info(f"Transcription details - Detected language: '{info.language}' (Prob: {info.language_probability:.2f}), Duration: {info.duration:.2f}s")
        for segment in segments:
            plain_text_parts.append(segment.text.strip())
    except Exception as e:
        # faster-whisper does not raise a dedicated error type.
        logger.error(f"Error during Whisper model transcription for {audio_input_path}: {e}", exc_info=True)
        raise RuntimeError(f"Transcription failed for {audio_input_path}: {str(e)}") from e

    text = " ".join(part for part in plain_text_parts if part)
    logger.info(f"Successfully transcribed {audio_input_path}. Total segments: {len(plain_text_parts)}")
    return text, info.language or (language or "")
