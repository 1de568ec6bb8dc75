"""Application-wide configuration loader.

Every module imports the singleton ``settings`` object defined here.
"""

import os


class Settings:
    """Settings helper that gracefully falls back to sane defaults.

    Rationale
    ---------
    When docker-compose injects an environment variable whose value is empty
    (e.g. `DATABASE_URL=""`) ``os.getenv("DATABASE_URL", default)`` returns an
    empty string *not* ``None``.  That empty string then overrides the useful
    in-code default and downstream libraries (SQLAlchemy, Celery, httpx…)
    raise parsing errors.

    To avoid similar problems for every setting we use the idiom

        os.getenv(KEY) or DEFAULT

    so that *falsy* values ("", None, 0) are replaced by the specified
    DEFAULT.
    """

    DATABASE_URL: str = os.getenv('DATABASE_URL') or 'postgresql://plaudsync:plaudsync@db:5432/plaudsync'
    DB_ECHO: bool = (os.getenv('DB_ECHO') or '0').lower() in ('1', 'true', 'yes')
    CELERY_BROKER_URL: str = os.getenv('CELERY_BROKER_URL') or 'redis://broker:6379/0'
    CELERY_RESULT_BACKEND: str = os.getenv('CELERY_RESULT_BACKEND') or 'redis://broker:6379/0'

    # Remote catalog (Plaud cloud API)
    PLAUD_SERVER: str = os.getenv('PLAUD_SERVER') or 'global'
    PLAUD_API_BASE: str = os.getenv('PLAUD_API_BASE') or ''
    PLAUD_PAGE_SIZE: int = int(os.getenv('PLAUD_PAGE_SIZE') or '50')
    PLAUD_PAGE_OVERLAP: int = int(os.getenv('PLAUD_PAGE_OVERLAP') or '5')
    PLAUD_REQUEST_TIMEOUT: float = float(os.getenv('PLAUD_REQUEST_TIMEOUT') or '30')
    PLAUD_MAX_ATTEMPTS: int = int(os.getenv('PLAUD_MAX_ATTEMPTS') or '3')
    PLAUD_BACKOFF_BASE: float = float(os.getenv('PLAUD_BACKOFF_BASE') or '0.5')

    # Sync scheduling, in seconds
    SYNC_DEFAULT_INTERVAL: float = float(os.getenv('SYNC_DEFAULT_INTERVAL') or '300')
    SYNC_MIN_INTERVAL: float = float(os.getenv('SYNC_MIN_INTERVAL') or '60')

    # Transcription
    PROVIDER_TIMEOUT: float = float(os.getenv('PROVIDER_TIMEOUT') or '600')
    # A running row untouched for this long belongs to a dead worker.
    TRANSCRIPTION_STALE_AFTER: float = float(os.getenv('TRANSCRIPTION_STALE_AFTER') or '900')
    TRANSCRIPTION_POLL_INTERVAL: float = float(os.getenv('TRANSCRIPTION_POLL_INTERVAL') or '2')
    BACKFILL_CONCURRENCY: int = int(os.getenv('BACKFILL_CONCURRENCY') or '3')
    WHISPER_DEVICE: str = os.getenv('WHISPER_DEVICE') or 'cpu'
    WHISPER_COMPUTE_TYPE: str = os.getenv('WHISPER_COMPUTE_TYPE') or 'int8'

    # Service-to-service authentication
    INTERNAL_SECRET: str = os.getenv('INTERNAL_SECRET') or ''

    # Sync notifications
    SYNC_WEBHOOK_URL: str = os.getenv('SYNC_WEBHOOK_URL') or ''
    SYNC_WEBHOOK_API_KEY: str = os.getenv('SYNC_WEBHOOK_API_KEY') or ''


settings = Settings()
