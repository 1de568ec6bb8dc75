"""Request dependencies shared by the routers."""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Cookie, Header, HTTPException, status

from ..config import settings
from ..db.database import SessionLocal
from ..models.user import ApiSession, User
from ..services.pipeline import get_job_manager, get_scheduler_registry
from ..services.providers import ProviderGateway
from ..services.recording_store import RecordingStore
from ..services.sync_scheduler import SchedulerRegistry
from ..services.transcription_jobs import TranscriptionJobManager

logger = logging.getLogger(__name__)


def _not_logged_in() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="You must be logged in")


def _is_expired(expires_at: Optional[datetime]) -> bool:
    if expires_at is None:
        return False
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(timezone.utc)


async def get_current_user_id(
    authorization: Optional[str] = Header(default=None),
    x_internal_secret: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
    session_token: Optional[str] = Cookie(default=None),
) -> str:
    """Resolve the calling user from an internal service header or a session token."""
    db = SessionLocal()
    try:
        if x_internal_secret and settings.INTERNAL_SECRET:
            if not hmac.compare_digest(x_internal_secret, settings.INTERNAL_SECRET):
                logger.warning("Rejected request with an invalid internal secret")
                raise _not_logged_in()
            if not x_user_email:
                raise _not_logged_in()
            user = db.query(User).filter(User.email == x_user_email).first()
            if user is None:
                raise _not_logged_in()
            return user.id

        token = None
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization[7:].strip()
        token = token or session_token
        if not token:
            raise _not_logged_in()

        session = db.query(ApiSession).filter(ApiSession.token == token).first()
        if session is None or _is_expired(session.expires_at):
            raise _not_logged_in()
        return session.user_id
    finally:
        db.close()


def get_registry() -> SchedulerRegistry:
    return get_scheduler_registry()


def get_jobs() -> TranscriptionJobManager:
    return get_job_manager()


def get_store() -> RecordingStore:
    return get_job_manager().store


def get_gateway() -> ProviderGateway:
    return get_job_manager().gateway
