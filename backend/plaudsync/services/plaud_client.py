"""Typed async client for the Plaud cloud API.

Owns the retry policy for the remote catalog:

* 401/403 -> :class:`AuthError`, surfaced immediately.
* timeout, connection failure, 5xx -> retried with exponential backoff, then
  :class:`TransientNetworkError`.
* 429 -> retried after ``Retry-After`` when present (same backoff otherwise),
  then :class:`RateLimitError`.
* A JSON body whose ``status`` is not 0 -> :class:`RemoteApiError`.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

import httpx

from ..config import settings
from ..errors import AuthError, RateLimitError, RemoteApiError, TransientNetworkError
from ..models.plaud import PlaudDevice, PlaudFileDetail, PlaudRecording, RecordingPage
from ..utils.storage import write_stream_atomic

logger = logging.getLogger(__name__)

PLAUD_SERVERS: Dict[str, Dict[str, str]] = {
    "global": {"label": "Global (api.plaud.ai)", "api_base": "https://api.plaud.ai"},
    "eu": {"label": "EU – Frankfurt (api-euc1.plaud.ai)", "api_base": "https://api-euc1.plaud.ai"},
}
DEFAULT_SERVER_KEY = "global"


def resolve_api_base(server_key: Optional[str] = None) -> str:
    """API host for a server key; ``PLAUD_API_BASE`` wins when set."""
    if settings.PLAUD_API_BASE:
        return settings.PLAUD_API_BASE.rstrip("/")
    server = PLAUD_SERVERS.get(server_key or settings.PLAUD_SERVER) or PLAUD_SERVERS[DEFAULT_SERVER_KEY]
    return server["api_base"]


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given as delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


class PlaudClient:
    """Thin wrapper around the list/detail/download endpoints of the remote catalog."""

    def __init__(
        self,
        token: str,
        api_base: Optional[str] = None,
        *,
        page_size: int = settings.PLAUD_PAGE_SIZE,
        page_overlap: int = settings.PLAUD_PAGE_OVERLAP,
        timeout: float = settings.PLAUD_REQUEST_TIMEOUT,
        max_attempts: int = settings.PLAUD_MAX_ATTEMPTS,
        backoff_base: float = settings.PLAUD_BACKOFF_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if page_overlap >= page_size:
            raise ValueError("page_overlap must be smaller than page_size")
        self.api_base = (api_base or resolve_api_base()).rstrip("/")
        self.page_size = page_size
        self.page_overlap = max(0, page_overlap)
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base
        self._sleep = sleep
        self._token = token
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def __aenter__(self) -> "PlaudClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport with retry
    # ------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        return self.backoff_base * (2 ** (attempt - 1))

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        stream: bool = False,
    ) -> httpx.Response:
        """Send with the retry policy. A ``stream=True`` response must be closed by the caller."""
        headers = {"Authorization": f"Bearer {self._token}"} if authenticated else {}
        last_error: Exception
        attempt = 0

        while True:
            attempt += 1
            delay = self._backoff(attempt)
            try:
                request = self._http.build_request(method, url, params=params, headers=headers)
                response = await self._http.send(request, stream=stream)
            except httpx.TimeoutException as exc:
                last_error = TransientNetworkError(f"Timed out calling {method} {url}: {exc}")
            except httpx.TransportError as exc:
                last_error = TransientNetworkError(f"Connection error calling {method} {url}: {exc}")
            else:
                status = response.status_code
                if status < 400:
                    return response
                if stream:
                    # Error bodies are small; reading one also releases the connection.
                    await response.aread()
                if status in (401, 403):
                    logger.warning("Plaud API rejected credential (%s) for %s %s", status, method, url)
                    raise AuthError(f"Plaud credential rejected with HTTP {status}; reconnect your Plaud account.")
                if status == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    if retry_after is not None:
                        delay = retry_after
                    last_error = RateLimitError(f"Plaud API rate limit hit on {method} {url}", retry_after=retry_after)
                elif status >= 500:
                    last_error = TransientNetworkError(f"Plaud API returned HTTP {status} for {method} {url}")
                else:
                    raise RemoteApiError(f"Plaud API returned HTTP {status} for {method} {url}: {response.text[:200]}")

            if attempt >= self.max_attempts:
                logger.error("Giving up on %s %s after %d attempts: %s", method, url, self.max_attempts, last_error)
                raise last_error
            logger.info(
                "Transient failure on %s %s (attempt %d/%d): %s. Retrying in %.2fs",
                method, url, attempt, self.max_attempts, last_error, delay,
            )
            await self._sleep(delay)

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._send("GET", f"{self.api_base}{path}", params=params)
        try:
            body = response.json()
        except ValueError as exc:
            raise RemoteApiError(f"Plaud API returned a non-JSON body for {path}") from exc
        status = body.get("status", 0)
        if status not in (0, None):
            raise RemoteApiError(f"Plaud API error on {path}: {body.get('msg') or status}")
        return body

    # ------------------------------------------------------------------
    # Catalog operations
    # ------------------------------------------------------------------

    async def list_devices(self) -> List[PlaudDevice]:
        body = await self._get_json("/device/list")
        return [PlaudDevice.model_validate(d) for d in body.get("data_devices") or []]

    async def list_recordings(self, device_sn: Optional[str] = None, cursor: Optional[str] = None) -> RecordingPage:
        """Fetch one page of the catalog, newest first, trashed items included.

        ``cursor`` is the opaque value returned as ``next_cursor`` by the
        previous page (``None`` for the first page). Consecutive pages overlap
        by ``page_overlap`` items so that deletions at the head of the list
        mid-scan cannot push an item past us unseen.
        """
        skip = int(cursor) if cursor else 0
        body = await self._get_json(
            "/file/simple/web",
            params={
                "skip": skip,
                "limit": self.page_size,
                "is_trash": 2,
                "sort_by": "start_time",
                "is_desc": "true",
            },
        )
        raw_items = body.get("data_file_list") or []
        total = body.get("data_file_total")
        recordings = [PlaudRecording.model_validate(item) for item in raw_items]

        next_cursor: Optional[str] = None
        fetched_until = skip + len(raw_items)
        if len(raw_items) >= self.page_size and (total is None or fetched_until < total):
            next_cursor = str(fetched_until - self.page_overlap)

        if device_sn:
            recordings = [r for r in recordings if r.serial_number == device_sn]
        logger.debug("Fetched catalog page skip=%d size=%d total=%s next=%s", skip, len(raw_items), total, next_cursor)
        return RecordingPage(recordings=recordings, next_cursor=next_cursor, total=total)

    async def iter_pages(self, device_sn: Optional[str] = None) -> AsyncIterator[RecordingPage]:
        """Drain the catalog page by page, in the order the remote returns them."""
        cursor: Optional[str] = None
        while True:
            page = await self.list_recordings(device_sn, cursor)
            yield page
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    async def get_temp_download_url(self, recording_id: str, prefer_opus: bool = False) -> str:
        body = await self._get_json(f"/file/temp-url/{recording_id}")
        url = (body.get("temp_url_opus") if prefer_opus else None) or body.get("temp_url")
        if not url:
            raise RemoteApiError(f"Plaud API returned no download URL for recording {recording_id}")
        return url

    async def get_file_detail(self, recording_id: str) -> PlaudFileDetail:
        body = await self._get_json(f"/file/detail/{recording_id}")
        return PlaudFileDetail.model_validate(body.get("data") or {"file_id": recording_id})

    async def download_audio(self, url: str, dest: Path) -> Path:
        """Stream a pre-signed audio URL (no bearer credential) into ``dest``."""
        response = await self._send("GET", url, authenticated=False, stream=True)
        try:
            size = await write_stream_atomic(dest, response.aiter_bytes())
        finally:
            await response.aclose()
        logger.info("Downloaded %d bytes of audio to %s", size, dest)
        return dest
