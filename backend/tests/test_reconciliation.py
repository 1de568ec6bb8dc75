import pytest

from plaudsync.models.transcription import TranscriptionSource, TranscriptionStatus
from plaudsync.services.reconciliation import ReconciliationEngine
from plaudsync.services.recording_store import UpsertOutcome

from .factories import FakeCatalog, make_remote


@pytest.mark.asyncio
async def test_sync_is_idempotent(store, user):
    pages = [[make_remote("a"), make_remote("b")], [make_remote("c")]]

    first = await ReconciliationEngine(FakeCatalog(pages), store).run(user.id)
    second = await ReconciliationEngine(FakeCatalog(pages), store).run(user.id)

    assert first.success and first.new_recordings == 3
    assert second.success
    assert (second.new_recordings, second.updated_recordings, second.trashed_recordings) == (0, 0, 0)
    assert store.count_for_user(user.id) == 3


@pytest.mark.asyncio
async def test_overlapping_pages_do_not_duplicate(store, user):
    pages = [[make_remote("a"), make_remote("b")], [make_remote("b"), make_remote("c")]]

    result = await ReconciliationEngine(FakeCatalog(pages), store).run(user.id)

    assert result.new_recordings == 3
    assert store.count_for_user(user.id) == 3


@pytest.mark.asyncio
async def test_device_serial_is_passed_to_catalog(store, user):
    catalog = FakeCatalog([[make_remote("a")]])
    await ReconciliationEngine(catalog, store).run(user.id, "SN-1")
    assert catalog.device_sns == ["SN-1"]


def test_stale_version_never_overwrites_newer(store, user):
    assert store.upsert_remote(user.id, make_remote("a", version=2, filename="new name")) == UpsertOutcome.CREATED
    assert store.upsert_remote(user.id, make_remote("a", version=1, filename="old name")) == UpsertOutcome.UNCHANGED
    assert store.get_by_remote_id(user.id, "a").filename == "new name"

    assert store.upsert_remote(user.id, make_remote("a", version=3, filename="newest")) == UpsertOutcome.UPDATED
    row = store.get_by_remote_id(user.id, "a")
    assert row.filename == "newest"
    assert row.version == 3


def test_stale_trashed_payload_does_not_retrash_newer_row(store, user):
    store.upsert_remote(user.id, make_remote("a", version=2, is_trash=True))
    assert store.upsert_remote(user.id, make_remote("a", version=3, is_trash=False)) == UpsertOutcome.UPDATED

    assert store.upsert_remote(user.id, make_remote("a", version=2, is_trash=True)) == UpsertOutcome.UNCHANGED
    row = store.get_by_remote_id(user.id, "a")
    assert row.version_key == (3, 0)
    assert row.is_trash is False

    # Trashing at the current version still applies.
    assert store.upsert_remote(user.id, make_remote("a", version=3, is_trash=True)) == UpsertOutcome.TRASHED


def test_version_ms_breaks_ties(store, user):
    store.upsert_remote(user.id, make_remote("a", version=5, version_ms=100, filename="first"))
    assert store.upsert_remote(user.id, make_remote("a", version=5, version_ms=100, filename="same")) == UpsertOutcome.UNCHANGED
    assert store.upsert_remote(user.id, make_remote("a", version=5, version_ms=200, filename="later")) == UpsertOutcome.UPDATED
    assert store.get_by_remote_id(user.id, "a").filename == "later"


def test_local_id_is_stable_across_updates(store, user):
    store.upsert_remote(user.id, make_remote("a", version=1))
    local_id = store.get_by_remote_id(user.id, "a").id
    store.upsert_remote(user.id, make_remote("a", version=2))
    assert store.get_by_remote_id(user.id, "a").id == local_id


@pytest.mark.asyncio
async def test_trash_is_soft_and_keeps_transcript(store, user):
    store.upsert_remote(user.id, make_remote("a", version=1))
    recording = store.get_by_remote_id(user.id, "a")
    store.save_external_transcription(user.id, recording.id, "meeting notes", "en")

    # Trashed remotely without a version bump.
    result = await ReconciliationEngine(FakeCatalog([[make_remote("a", version=1, is_trash=True)]]), store).run(user.id)

    assert result.trashed_recordings == 1
    row = store.get(user.id, recording.id)
    assert row.is_trash is True
    transcription = store.get_transcription(recording.id)
    assert transcription.text == "meeting notes"
    assert transcription.source == TranscriptionSource.EXTERNAL
    assert store.list_for_user(user.id) == []
    assert len(store.list_for_user(user.id, include_trash=True)) == 1


@pytest.mark.asyncio
async def test_missing_remote_items_are_not_deleted(store, user):
    await ReconciliationEngine(FakeCatalog([[make_remote("a"), make_remote("b")]]), store).run(user.id)
    await ReconciliationEngine(FakeCatalog([[make_remote("a")]]), store).run(user.id)
    assert store.get_by_remote_id(user.id, "b") is not None


@pytest.mark.asyncio
async def test_page_failure_keeps_progress(store, user):
    pages = [[make_remote("a"), make_remote("b")], [make_remote("c")]]

    failed = await ReconciliationEngine(FakeCatalog(pages, fail_at=1), store).run(user.id)

    assert failed.success is False
    assert failed.new_recordings == 2
    assert "503" in failed.error
    assert store.count_for_user(user.id) == 2

    retried = await ReconciliationEngine(FakeCatalog(pages), store).run(user.id)
    assert retried.success is True
    assert retried.new_recordings == 1
    assert store.count_for_user(user.id) == 3


@pytest.mark.asyncio
async def test_unexpected_error_becomes_failed_result(store, user):
    class Broken:
        async def iter_pages(self, device_sn=None):
            raise RuntimeError("parser exploded")
            yield  # pragma: no cover

    result = await ReconciliationEngine(Broken(), store).run(user.id)
    assert result.success is False
    assert "parser exploded" in result.error


def test_sync_result_to_dict(store):
    from plaudsync.services.reconciliation import SyncResult

    data = SyncResult(success=True, new_recordings=2).to_dict()
    assert data["new_recordings"] == 2
    assert isinstance(data["timestamp"], str)


def test_backfill_candidates_follow_status(store, user):
    store.upsert_remote(user.id, make_remote("ready"))
    store.upsert_remote(user.id, make_remote("not-ready", ori_ready=False))
    store.upsert_remote(user.id, make_remote("trashed", is_trash=True))
    store.upsert_remote(user.id, make_remote("done"))
    done = store.get_by_remote_id(user.id, "done")
    store.transition(user.id, done.id, TranscriptionStatus.QUEUED)
    store.transition(user.id, done.id, TranscriptionStatus.RUNNING)
    store.transition(user.id, done.id, TranscriptionStatus.COMPLETE, text="x")

    assert [r.plaud_file_id for r in store.backfill_candidates(user.id)] == ["ready"]
