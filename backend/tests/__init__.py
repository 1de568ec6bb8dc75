# Ensure the `backend` directory is importable so `plaudsync` resolves
from __future__ import annotations

import sys
import tempfile
from pathlib import Path

# Add the backend directory to PYTHONPATH so imports like `from plaudsync.*` work
ROOT_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT_DIR))

# Use an in-memory SQLite DB and throwaway directories during tests unless overridden
import os
_TMP_ROOT = Path(tempfile.mkdtemp(prefix="plaudsync-tests-"))
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("DB_ECHO", "0")
os.environ.setdefault("DATA_ROOT", str(_TMP_ROOT / "data"))
os.environ.setdefault("LOG_DIR", str(_TMP_ROOT / "logs"))
os.environ.setdefault("INTERNAL_SECRET", "test-internal-secret")
os.environ.setdefault("PLAUD_API_BASE", "https://api.plaud.test")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
