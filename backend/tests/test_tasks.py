from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from plaudsync.errors import ProviderError
from plaudsync.services.backfill import BackfillError, BackfillReport
from plaudsync.workers import tasks


@patch("plaudsync.workers.tasks.build_job_manager")
@patch("plaudsync.workers.tasks.run_user_backfill", new_callable=AsyncMock)
def test_backfill_task_reports_partial(mock_backfill, mock_build):
    mock_backfill.return_value = BackfillReport(filled=3, errors=[BackfillError(recording_id=4, message="timeout")])

    result = tasks.backfill_transcriptions_task("u1")

    assert result == {
        "filled": 3,
        "errors": [{"recordingId": 4, "message": "timeout"}],
        "status": "PARTIAL",
    }
    mock_backfill.assert_awaited_once_with("u1", jobs=mock_build.return_value)


@patch("plaudsync.workers.tasks.build_job_manager")
@patch("plaudsync.workers.tasks.run_user_transcription", new_callable=AsyncMock)
def test_transcribe_task_returns_status(mock_transcribe, mock_build):
    mock_transcribe.return_value = MagicMock(status_str="complete", language="en")

    result = tasks.transcribe_recording_task("u1", 12, True)

    assert result == {"recording_id": 12, "status": "complete", "language": "en"}
    mock_transcribe.assert_awaited_once_with("u1", 12, force=True, jobs=mock_build.return_value)


@patch("plaudsync.workers.tasks.build_job_manager")
@patch("plaudsync.workers.tasks.run_user_transcription", new_callable=AsyncMock)
def test_transcribe_task_propagates_failure(mock_transcribe, mock_build):
    mock_transcribe.side_effect = ProviderError("Groq returned HTTP 500")

    with pytest.raises(ProviderError):
        tasks.transcribe_recording_task("u1", 12)
