"""Audience segment endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, status

from pushsaas.api import deps
from pushsaas.db.models.user import User
from pushsaas.schemas import (
    SegmentCreate,
    SegmentListResponse,
    SegmentPreview,
    SegmentPreviewRequest,
    SegmentRead,
    SegmentUpdate,
)
from pushsaas.services.segment_service import SegmentService
from pushsaas.utils.exceptions import (
    CampaignStateError,
    NotFoundError,
    ValidationError,
    handle_campaign_state_error,
    handle_not_found_error,
    handle_validation_error,
)

router = APIRouter(prefix="/segments", tags=["segments"])


@router.get("", response_model=SegmentListResponse)
def list_segments(
    site_id: Optional[int] = Query(default=None, alias="siteId"),
    search: Optional[str] = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.get_current_user),
) -> SegmentListResponse:
    items, pagination = service.list_segments(
        current_user, site_id=site_id, search=search, page=page, limit=limit
    )
    return SegmentListResponse(
        items=[SegmentRead.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.post("", response_model=SegmentRead, status_code=status.HTTP_201_CREATED)
def create_segment(
    payload: SegmentCreate,
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.get_current_user),
) -> SegmentRead:
    try:
        segment = service.create_segment(current_user, payload)
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return SegmentRead.model_validate(segment)


# Registered before /{segment_id} so "preview" is never parsed as an id.
@router.post("/preview", response_model=SegmentPreview)
def preview_conditions(
    payload: SegmentPreviewRequest,
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.require_admin),
) -> SegmentPreview:
    """Evaluate unsaved conditions against live subscriptions."""

    try:
        preview = service.preview_conditions(
            payload.conditions, site_id=payload.site_id, limit=payload.limit
        )
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return SegmentPreview.model_validate(preview)


@router.get("/{segment_id}", response_model=SegmentRead)
def get_segment(
    segment_id: int,
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.get_current_user),
) -> SegmentRead:
    try:
        segment = service.get_segment(current_user, segment_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    return SegmentRead.model_validate(segment)


@router.put("/{segment_id}", response_model=SegmentRead)
def update_segment(
    segment_id: int,
    payload: SegmentUpdate,
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.get_current_user),
) -> SegmentRead:
    try:
        segment = service.update_segment(current_user, segment_id, payload)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return SegmentRead.model_validate(segment)


@router.delete("/{segment_id}")
def delete_segment(
    segment_id: int,
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.get_current_user),
) -> dict:
    try:
        service.delete_segment(current_user, segment_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except CampaignStateError as exc:
        raise handle_campaign_state_error(exc) from exc
    return {"message": "Segment deleted", "id": segment_id}


@router.post("/{segment_id}/preview", response_model=SegmentPreview)
def preview_segment(
    segment_id: int,
    limit: int = Body(default=10, ge=1, le=100, embed=True),
    service: SegmentService = Depends(deps.get_segment_service),
    current_user: User = Depends(deps.require_admin),
) -> SegmentPreview:
    """Show how many live subscriptions a stored segment reaches."""

    try:
        preview = service.preview_segment(current_user, segment_id, limit=limit)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return SegmentPreview.model_validate(preview)
