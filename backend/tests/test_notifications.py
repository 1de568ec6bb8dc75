import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import httpx

from plaudsync.services import notifications
from plaudsync.services.notifications import build_sync_payload, notify_sync_result
from plaudsync.services.reconciliation import SyncResult


def test_payload_carries_count_or_error():
    ok = build_sync_payload("u1", SyncResult(success=True, new_recordings=3))
    assert ok["userId"] == "u1"
    assert ok["newRecordings"] == 3
    assert "error" not in ok

    failed = build_sync_payload("u1", SyncResult(success=False, error="token expired"))
    assert failed["error"] == "token expired"
    assert "newRecordings" not in failed


@pytest.mark.asyncio
async def test_no_webhook_configured(monkeypatch):
    monkeypatch.setattr(notifications.settings, "SYNC_WEBHOOK_URL", "")
    result = await notify_sync_result("u1", SyncResult(success=True, new_recordings=1))
    assert result["success"] is False
    assert result["payload"]["newRecordings"] == 1


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_webhook_success(mock_post):
    mock_response = MagicMock()
    mock_response.json.return_value = {"ok": True}
    mock_response.raise_for_status = MagicMock()
    mock_post.return_value = mock_response

    result = await notify_sync_result(
        "u1", SyncResult(success=True, new_recordings=2),
        webhook_url="http://hooks.local/sync", api_key="secret",
    )

    assert result["success"] is True
    assert result["response"] == {"ok": True}
    mock_post.assert_called_once()
    assert mock_post.call_args.kwargs["headers"] == {"X-API-KEY": "secret"}
    assert mock_post.call_args.kwargs["json"]["newRecordings"] == 2


@pytest.mark.asyncio
@patch("httpx.AsyncClient.post", new_callable=AsyncMock)
async def test_webhook_failure_never_raises(mock_post):
    mock_post.side_effect = httpx.ConnectError("connection refused")

    result = await notify_sync_result(
        "u1", SyncResult(success=False, error="boom"), webhook_url="http://hooks.local/sync",
    )

    assert result["success"] is False
    assert "connection refused" in result["details"]
