from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from plaudsync.models.provider import ProviderKind
from plaudsync.models.transcription import TranscriptionStatus
from plaudsync.services.backfill import backfill_transcriptions
from plaudsync.services.providers import ProviderGateway
from plaudsync.services.transcription_jobs import TranscriptionJobManager

from .factories import FakeAudioSource, FakeProvider, make_remote


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def jobs(session_factory, store, user, provider, tmp_path):
    gateway = ProviderGateway(session_factory, registry={ProviderKind.OPENAI_COMPATIBLE: lambda config: provider})
    gateway.add(user.id, provider="Fake", is_default_transcription=True)
    audio = FakeAudioSource(tmp_path)
    return TranscriptionJobManager(store, gateway, lambda user_id: audio)


def _seed(store, user_id, count=5):
    for index in range(count):
        store.upsert_remote(user_id, make_remote(f"rec{index}", start_time=1_700_000_000_000 + index))


@pytest.mark.asyncio
async def test_fills_every_eligible_recording(store, user, jobs, provider):
    _seed(store, user.id)

    report = await backfill_transcriptions(user.id, store, jobs, max_concurrency=2)

    assert report.filled == 5
    assert report.errors == []
    assert provider.calls == 5
    assert store.backfill_candidates(user.id) == []


@pytest.mark.asyncio
async def test_failures_are_reported_and_picked_up_next_time(store, user, jobs, provider):
    _seed(store, user.id)
    provider.fail_for.add("rec3")
    failing_id = store.get_by_remote_id(user.id, "rec3").id

    first = await backfill_transcriptions(user.id, store, jobs)
    assert first.filled == 4
    assert len(first.errors) == 1
    assert first.errors[0].recording_id == failing_id
    assert "HTTP 500" in first.errors[0].message
    assert store.get_transcription(failing_id).status == TranscriptionStatus.FAILED

    provider.fail_for.clear()
    second = await backfill_transcriptions(user.id, store, jobs)
    assert second.filled == 1
    assert second.errors == []

    third = await backfill_transcriptions(user.id, store, jobs)
    assert third.filled == 0
    assert third.to_dict() == {"filled": 0, "errors": []}


@pytest.mark.asyncio
async def test_trashed_and_unready_recordings_are_skipped(store, user, jobs, provider):
    store.upsert_remote(user.id, make_remote("ready"))
    store.upsert_remote(user.id, make_remote("uploading", ori_ready=False))
    store.upsert_remote(user.id, make_remote("binned", is_trash=True))

    report = await backfill_transcriptions(user.id, store, jobs)

    assert report.filled == 1
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_without_provider_every_item_errors(session_factory, store, user, tmp_path):
    _seed(store, user.id, count=2)
    jobs = TranscriptionJobManager(store, ProviderGateway(session_factory), lambda user_id: FakeAudioSource(tmp_path))

    report = await backfill_transcriptions(user.id, store, jobs)

    assert report.filled == 0
    assert len(report.errors) == 2
    assert all("No transcription provider" in e.message for e in report.errors)


@pytest.mark.asyncio
async def test_candidate_query_failure_is_reported():
    store = MagicMock()
    store.backfill_candidates.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))

    report = await backfill_transcriptions("user-1", store, MagicMock())

    assert report.filled == 0
    assert report.errors[0].recording_id is None
    assert report.to_dict()["errors"][0]["recordingId"] is None


@pytest.mark.asyncio
async def test_items_finished_elsewhere_are_not_counted(store, user, jobs, provider):
    _seed(store, user.id, count=2)
    select = store.backfill_candidates

    def select_then_finish_one(user_id):
        candidates = select(user_id)
        store.save_external_transcription(user_id, candidates[0].id, "typed in the browser")
        return candidates

    store.backfill_candidates = select_then_finish_one
    report = await backfill_transcriptions(user.id, store, jobs)

    assert report.filled == 1
    assert report.errors == []
    assert provider.calls == 1
