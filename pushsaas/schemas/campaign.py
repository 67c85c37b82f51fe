"""Pydantic schemas for campaign endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field, field_validator

from pushsaas.db.models.campaign import SendType
from pushsaas.schemas.base import CamelModel


class CampaignActionIn(CamelModel):
    """Action button supplied by the client."""

    text: str = Field(max_length=255)
    url: str


class CampaignActionRead(CamelModel):
    text: str
    url: str
    order: int


class CampaignCreate(CamelModel):
    """Campaign creation payload."""

    name: str = Field(max_length=255)
    title: str = Field(max_length=255)
    body: str
    icon_url: Optional[str] = None
    image_url: Optional[str] = None
    click_url: Optional[str] = None
    badge_url: Optional[str] = None
    site_id: Optional[int] = None
    segment_id: Optional[int] = None
    send_type: SendType = SendType.IMMEDIATE
    scheduled_at: Optional[datetime] = None
    actions: List[CampaignActionIn] = Field(default_factory=list)


class CampaignUpdate(CampaignCreate):
    """Full replacement of a draft; ``immediate`` keeps it a draft."""

    send_type: SendType = SendType.DRAFT


class CampaignRead(CamelModel):
    """Campaign as returned to its owner."""

    id: int
    name: str
    title: str
    body: str
    icon_url: Optional[str] = None
    image_url: Optional[str] = None
    click_url: Optional[str] = None
    badge_url: Optional[str] = None
    site_id: Optional[int] = None
    segment_id: Optional[int] = None
    send_type: str
    status: str
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    total_sent: int = 0
    total_delivered: int = 0
    total_failed: int = 0
    total_clicked: int = 0
    dispatch_attempts: int = 0
    last_error: Optional[str] = None
    actions: List[CampaignActionRead] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("actions", mode="before")
    @classmethod
    def _actions_from_rows(cls, value: Any) -> Any:
        if value is None:
            return []
        return [item.to_payload() if hasattr(item, "to_payload") else item for item in value]


class DispatchSummary(CamelModel):
    """Counts reported after one dispatch."""

    sent: int
    failed: int
    expired: int
    total: int
    message: str


class CampaignDetail(CamelModel):
    campaign: CampaignRead
    execution_stats: Dict[str, int] = Field(default_factory=dict)


class CampaignCreateResponse(CamelModel):
    message: str
    campaign: CampaignRead
    execution: Optional[DispatchSummary] = None


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int


class CampaignListResponse(CamelModel):
    """Paginated campaign listing."""

    items: List[CampaignRead]
    pagination: Pagination
