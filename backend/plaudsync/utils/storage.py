"""Filesystem helpers for the local audio cache."""

import os
from pathlib import Path
from typing import AsyncIterator

# Determine base data directory:
# 1. Use DATA_ROOT env var if set.
# 2. Else, if /data exists, assume Docker environment and use /data.
# 3. Otherwise, use project_root/data (development environment).
_PROJECT_ROOT = Path(__file__).resolve().parents[3]
_ENV_DATA_ROOT = os.getenv("DATA_ROOT")
if _ENV_DATA_ROOT:
    DATA_ROOT = Path(_ENV_DATA_ROOT)
elif Path("/data").exists():
    DATA_ROOT = Path("/data")
else:
    DATA_ROOT = _PROJECT_ROOT / "data"

# Downloaded recording audio, one sub-directory per user
RECORDINGS_DIR = DATA_ROOT / "recordings"

AUDIO_EXTENSIONS = {"mp3", "opus", "ogg", "wav", "m4a", "aac", "flac"}


def ensure_dir_exists(path: Path) -> Path:
    """Ensure that the given directory exists, creating it if necessary."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def recording_audio_path(user_id: str, plaud_file_id: str, filetype: str | None = None, root: Path | None = None) -> Path:
    """Deterministic cache location for a recording's audio file."""
    ext = (filetype or "").lower().lstrip(".")
    if ext not in AUDIO_EXTENSIONS:
        ext = "mp3"
    base = root if root is not None else RECORDINGS_DIR
    # Remote ids are hex strings; strip anything that could escape the directory.
    safe_id = "".join(ch for ch in plaud_file_id if ch.isalnum() or ch in "-_")
    return base / user_id / f"{safe_id}.{ext}"


async def write_stream_atomic(path: Path, chunks: AsyncIterator[bytes]) -> int:
    """Stream ``chunks`` into ``path`` through a temp file so readers never see a partial file.

    Returns the number of bytes written. The temp file is removed on failure.
    """
    ensure_dir_exists(path.parent)
    tmp_path = path.with_name(path.name + ".part")
    written = 0
    try:
        with open(tmp_path, "wb") as f:
            async for chunk in chunks:
                f.write(chunk)
                written += len(chunk)
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return written
