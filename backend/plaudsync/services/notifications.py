"""Sync notifications delivered to an external webhook."""

import httpx
import logging
from typing import Any, Dict, Optional

from ..config import settings
from .reconciliation import SyncResult

# Get a logger for this module
logger = logging.getLogger(__name__)


def build_sync_payload(user_id: str, result: SyncResult) -> Dict[str, Any]:
    """Payload handed to the notification layer: new recording count or an error string."""
    payload: Dict[str, Any] = {
        "userId": user_id,
        "timestamp": result.timestamp.isoformat(),
    }
    if result.success:
        payload["newRecordings"] = result.new_recordings
    else:
        payload["error"] = result.error or "Sync failed"
    return payload


async def notify_sync_result(
    user_id: str,
    result: SyncResult,
    webhook_url: Optional[str] = None,
    api_key: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Informs the notification layer about a finished sync.

    Args:
        user_id: Owner of the synced recordings.
        result: The SyncResult produced by the reconciliation run.
        webhook_url: Overrides SYNC_WEBHOOK_URL.
        api_key: Overrides SYNC_WEBHOOK_API_KEY.

    Returns:
        A dictionary indicating success or failure, and any response from the webhook.
        Example success: {"success": True, "message": "...", "response": ...}
        Example failure: {"success": False, "message": "...", "details": ...}

    Never raises: delivery problems must not affect the sync result.
    """
    payload = build_sync_payload(user_id, result)
    if result.success:
        logger.info(f"Sync for user {user_id} finished: {result.new_recordings} new recording(s)")
    else:
        logger.warning(f"Sync for user {user_id} failed: {result.error}")

    url = webhook_url if webhook_url is not None else settings.SYNC_WEBHOOK_URL
    if not url:
        logger.debug("SYNC_WEBHOOK_URL is not configured; notification only logged.")
        return {"success": False, "message": "No notification webhook configured.", "payload": payload}

    headers = {}
    key = api_key if api_key is not None else settings.SYNC_WEBHOOK_API_KEY
    if key:
        headers["X-API-KEY"] = key

    async with httpx.AsyncClient(timeout=30.0) as client:
        try:
            logger.info(f"Sending sync notification for user {user_id} to {url}")
            response = await client.post(url, json=payload, headers=headers)
            response.raise_for_status()
            try:
                response_data = response.json()
            except ValueError:
                response_data = response.text
            return {"success": True, "message": "Notification delivered.", "response": response_data}
        except httpx.HTTPStatusError as e:
            error_body = e.response.text if e.response is not None else "No response body."
            logger.error(f"HTTP error {e.response.status_code} from notification webhook for user {user_id}: {error_body}")
            return {
                "success": False,
                "message": f"HTTP error from notification webhook: {e.response.status_code}",
                "details": error_body,
            }
        except httpx.RequestError as e:
            logger.error(f"Request error for notification webhook (URL: {url}) for user {user_id}: {e}")
            return {"success": False, "message": "Request to notification webhook failed.", "details": str(e)}
