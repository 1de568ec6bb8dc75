import pytest
from sqlalchemy.orm import sessionmaker

from plaudsync.db.base import Base
from plaudsync.db.database import build_engine
from plaudsync.models.user import User
from plaudsync.services.providers import ProviderGateway
from plaudsync.services.recording_store import RecordingStore


@pytest.fixture
def session_factory():
    """A fresh in-memory database per test."""
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def user(session_factory):
    db = session_factory()
    try:
        row = User(email="owner@example.com", plaud_bearer_token="plaud-token")
        db.add(row)
        db.commit()
        return row
    finally:
        db.close()


@pytest.fixture
def store(session_factory):
    return RecordingStore(session_factory)


@pytest.fixture
def gateway(session_factory):
    return ProviderGateway(session_factory)
