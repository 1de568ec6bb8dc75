"""Reconciliation of the remote Plaud catalog against the local mirror."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError

from ..errors import PlaudSyncError
from .recording_store import RecordingStore, UpsertOutcome

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one reconciliation run. Not persisted."""

    success: bool
    timestamp: datetime = field(default_factory=_utcnow)
    new_recordings: int = 0
    updated_recordings: int = 0
    trashed_recordings: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class CatalogClient(Protocol):
    def iter_pages(self, device_sn: Optional[str] = None):
        """Async iterator of :class:`RecordingPage`."""


class ReconciliationEngine:
    """Diff the remote catalog against local rows and merge it in.

    * new remote id -> insert (counted in ``new_recordings``)
    * strictly newer remote version -> update in place
    * remote trash flag -> local soft delete, transcript kept
    * local rows missing from the remote listing are left alone

    A page fetch failure stops the run; rows already merged stay merged.
    Must not run concurrently for the same user (the scheduler guarantees it).
    """

    def __init__(self, client: CatalogClient, store: RecordingStore) -> None:
        self.client = client
        self.store = store

    async def run(self, user_id: str, device_sn: Optional[str] = None) -> SyncResult:
        created = updated = trashed = seen = 0
        logger.info("Sync started for user %s (device=%s)", user_id, device_sn or "all")
        try:
            async for page in self.client.iter_pages(device_sn):
                for remote in page.recordings:
                    seen += 1
                    outcome = self.store.upsert_remote(user_id, remote)
                    if outcome == UpsertOutcome.CREATED:
                        created += 1
                    elif outcome == UpsertOutcome.UPDATED:
                        updated += 1
                    elif outcome == UpsertOutcome.TRASHED:
                        trashed += 1
        except PlaudSyncError as exc:
            logger.error(
                "Sync for user %s aborted after %d item(s) (%d new kept): %s",
                user_id, seen, created, exc.detail,
            )
            return SyncResult(
                success=False, new_recordings=created, updated_recordings=updated,
                trashed_recordings=trashed, error=exc.detail,
            )
        except SQLAlchemyError as exc:
            logger.exception("Database error during sync for user %s", user_id)
            return SyncResult(
                success=False, new_recordings=created, updated_recordings=updated,
                trashed_recordings=trashed, error=f"Database error: {exc.__class__.__name__}",
            )
        except Exception as exc:
            logger.exception("Unexpected error during sync for user %s", user_id)
            return SyncResult(
                success=False, new_recordings=created, updated_recordings=updated,
                trashed_recordings=trashed, error=f"Unexpected error: {exc}",
            )

        logger.info(
            "Sync finished for user %s: %d seen, %d new, %d updated, %d trashed",
            user_id, seen, created, updated, trashed,
        )
        return SyncResult(
            success=True, new_recordings=created, updated_recordings=updated, trashed_recordings=trashed,
        )
