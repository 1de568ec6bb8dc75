"""Database engine & session utilities.

Sync engine + classic session maker. Sessions are short-lived: the recording
store opens one per keyed write so that reconciliation and backfill can
interleave safely.
"""

import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from plaudsync.config import settings
from plaudsync.db.base import Base
from plaudsync import models  # noqa: F401  registers every mapped class on Base

# ---------------------------------------------------------------------------
# Engine & session factory
# ---------------------------------------------------------------------------

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False):
    """Create an engine; SQLite gets thread-agnostic connections and, in memory, one shared pool."""
    kwargs = {"echo": echo, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


logger.info("Creating database engine for %s", settings.DATABASE_URL.split('@')[-1])
engine = build_engine(settings.DATABASE_URL, echo=settings.DB_ECHO)

# ORM objects are handed across coroutines after their session has closed.
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


def create_tables() -> None:  # pragma: no cover – exercised at start-up
    """Create all tables if they do not yet exist. Harmless when they do."""

    try:
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables ensured")
    except Exception as exc:  # broad except OK in one-off helper
        logger.exception("Could not create DB tables: %s", exc)


def get_db():
    """Yields a database session and ensures it's closed after use."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        logger.debug("DB session closed")
