from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from ..models.provider import ProviderCapability, ProviderConfig, ProviderKind
from ..services.providers import ProviderGateway
from .deps import get_current_user_id, get_gateway

router = APIRouter()
logger = logging.getLogger(__name__)


class ProviderInfo(BaseModel):
    id: int
    provider: str
    kind: ProviderKind
    base_url: Optional[str] = None
    default_model: Optional[str] = None
    has_api_key: bool
    is_default_transcription: bool
    is_default_enhancement: bool
    updated_at: datetime

    @classmethod
    def from_row(cls, row: ProviderConfig) -> "ProviderInfo":
        # The key itself never leaves the server.
        return cls(
            id=row.id,
            provider=row.provider,
            kind=row.kind,
            base_url=row.base_url,
            default_model=row.default_model,
            has_api_key=bool(row.api_key),
            is_default_transcription=row.is_default_transcription,
            is_default_enhancement=row.is_default_enhancement,
            updated_at=row.updated_at,
        )


class ProviderCreateRequest(BaseModel):
    provider: str = Field(..., min_length=1, max_length=100)
    kind: ProviderKind = ProviderKind.OPENAI_COMPATIBLE
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    default_model: Optional[str] = None
    is_default_transcription: bool = False
    is_default_enhancement: bool = False


class SetDefaultRequest(BaseModel):
    capability: ProviderCapability = ProviderCapability.TRANSCRIPTION


@router.get("", response_model=List[ProviderInfo])
async def list_providers(
    user_id: str = Depends(get_current_user_id),
    gateway: ProviderGateway = Depends(get_gateway),
) -> List[ProviderInfo]:
    return [ProviderInfo.from_row(p) for p in gateway.list_for_user(user_id)]


@router.post("", response_model=ProviderInfo, status_code=status.HTTP_201_CREATED)
async def add_provider(
    payload: ProviderCreateRequest,
    user_id: str = Depends(get_current_user_id),
    gateway: ProviderGateway = Depends(get_gateway),
) -> ProviderInfo:
    config = gateway.add(user_id, **payload.model_dump())
    logger.info("User %s added provider %s (%s)", user_id, config.id, config.provider)
    return ProviderInfo.from_row(config)


@router.put("/{provider_id}/default", response_model=ProviderInfo)
async def set_default_provider(
    provider_id: int,
    payload: SetDefaultRequest,
    user_id: str = Depends(get_current_user_id),
    gateway: ProviderGateway = Depends(get_gateway),
) -> ProviderInfo:
    """Make this provider the user's only default for the capability."""
    return ProviderInfo.from_row(gateway.set_default(user_id, provider_id, payload.capability))
