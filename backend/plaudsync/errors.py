"""Domain exceptions shared by the sync and transcription pipeline.

Every error carries an HTTP ``status_code`` so the API layer can map it to a
JSON response without knowing the concrete class.
"""

from __future__ import annotations

from typing import Optional


class PlaudSyncError(Exception):
    """Domain-level base exception."""

    status_code: int = 500

    def __init__(self, detail: str, status_code: Optional[int] = None) -> None:
        super().__init__(detail)
        self.detail = detail
        if status_code is not None:
            self.status_code = status_code


class AuthError(PlaudSyncError):
    """The remote API rejected our bearer credential (401/403). Never retried."""

    status_code = 401


class TransientNetworkError(PlaudSyncError):
    """Timeout, 5xx or connection failure that survived the bounded retries."""

    status_code = 503


class RateLimitError(TransientNetworkError):
    """HTTP 429 from the remote API."""

    status_code = 429

    def __init__(self, detail: str, retry_after: Optional[float] = None) -> None:
        super().__init__(detail)
        self.retry_after = retry_after


class RemoteApiError(PlaudSyncError):
    """The remote API answered, but with an error we do not retry."""

    status_code = 502


class NoProviderConfigured(PlaudSyncError):
    """No provider is flagged as default for the requested capability."""

    status_code = 400


class ProviderError(PlaudSyncError):
    """The AI provider call failed."""

    status_code = 502


class RecordingNotFound(PlaudSyncError):
    status_code = 404


class InvalidTransition(PlaudSyncError):
    """A transcription status change that the state machine does not allow."""

    status_code = 409
