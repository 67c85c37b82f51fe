"""Pydantic schemas for audience segments."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from pushsaas.schemas.base import CamelModel
from pushsaas.schemas.campaign import Pagination


class SegmentCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    site_id: Optional[int] = None
    conditions: Dict[str, Any] = Field(default_factory=dict)


class SegmentUpdate(CamelModel):
    """Partial segment update; omitted fields are left untouched."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    site_id: Optional[int] = None
    conditions: Optional[Dict[str, Any]] = None


class SegmentRead(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    site_id: Optional[int] = None
    conditions: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SegmentListResponse(CamelModel):
    items: List[SegmentRead]
    pagination: Pagination


class SegmentPreviewRequest(CamelModel):
    """Ad-hoc conditions evaluated without saving a segment."""

    conditions: Dict[str, Any] = Field(default_factory=dict)
    site_id: Optional[int] = None
    limit: int = Field(default=10, ge=1, le=100)


class PreviewSubscription(CamelModel):
    id: int
    endpoint: str
    user_agent: Optional[str] = None
    site_id: Optional[int] = None
    created_at: Optional[datetime] = None


class SegmentPreview(CamelModel):
    """Result of evaluating a segment against live subscriptions."""

    total_matching: int
    total_available: int
    subscriptions: List[PreviewSubscription] = Field(default_factory=list)
