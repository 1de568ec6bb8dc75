from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from plaudsync.errors import AuthError
from plaudsync.services import pipeline
from plaudsync.services.reconciliation import SyncResult

from .factories import FakeCatalog, make_remote


@pytest.mark.asyncio
async def test_sync_for_unknown_user_fails_softly(session_factory):
    result = await pipeline.run_user_sync("nobody", session_factory)
    assert result.success is False
    assert "not found" in result.error


@pytest.mark.asyncio
async def test_sync_without_plaud_token(session_factory):
    db = session_factory()
    try:
        from plaudsync.models.user import User

        user = User(email="no-token@example.com")
        db.add(user)
        db.commit()
    finally:
        db.close()

    result = await pipeline.run_user_sync(user.id, session_factory)
    assert result.success is False
    assert "No Plaud account connected" in result.error


def test_build_plaud_client_requires_token():
    with pytest.raises(AuthError):
        pipeline.build_plaud_client(MagicMock(plaud_bearer_token=None))


@pytest.mark.asyncio
async def test_sync_merges_catalog_and_closes_client(session_factory, store, user):
    catalog = FakeCatalog([[make_remote("a"), make_remote("b")]])

    with patch("plaudsync.services.pipeline.build_plaud_client", return_value=catalog):
        result = await pipeline.run_user_sync(user.id, session_factory)

    assert result.success is True
    assert result.new_recordings == 2
    assert store.count_for_user(user.id) == 2
    assert catalog.closed is True


@pytest.mark.asyncio
async def test_listeners_notify_and_queue_auto_transcription():
    settings_row = MagicMock(sync_notifications=True, auto_transcribe=True)
    with patch("plaudsync.services.pipeline.load_user", return_value=settings_row), \
            patch("plaudsync.services.pipeline.notify_sync_result", new_callable=AsyncMock) as mock_notify, \
            patch("plaudsync.workers.tasks.backfill_transcriptions_task.delay") as mock_delay:
        notify, auto_transcribe = pipeline.sync_listeners_for("u1")

        result = SyncResult(success=True, new_recordings=3)
        await notify(result)
        await auto_transcribe(result)
        await auto_transcribe(SyncResult(success=True, new_recordings=0))
        await auto_transcribe(SyncResult(success=False, error="boom"))

    mock_notify.assert_awaited_once_with("u1", result)
    mock_delay.assert_called_once_with("u1")


@pytest.mark.asyncio
async def test_listeners_respect_user_preferences():
    settings_row = MagicMock(sync_notifications=False, auto_transcribe=False)
    with patch("plaudsync.services.pipeline.load_user", return_value=settings_row), \
            patch("plaudsync.services.pipeline.notify_sync_result", new_callable=AsyncMock) as mock_notify, \
            patch("plaudsync.workers.tasks.backfill_transcriptions_task.delay") as mock_delay:
        notify, auto_transcribe = pipeline.sync_listeners_for("u1")
        result = SyncResult(success=True, new_recordings=3)
        await notify(result)
        await auto_transcribe(result)

    mock_notify.assert_not_awaited()
    mock_delay.assert_not_called()


def test_sync_config_follows_user_preferences():
    row = MagicMock(sync_interval_ms=30_000, auto_sync_enabled=False, sync_on_mount=True, sync_on_visibility_change=False)
    with patch("plaudsync.services.pipeline.load_user", return_value=row):
        config = pipeline.sync_config_for("u1")

    # 30s is below the floor, so it is clamped.
    assert config.interval == 60
    assert config.enabled is False
    assert config.sync_on_visibility_change is False
