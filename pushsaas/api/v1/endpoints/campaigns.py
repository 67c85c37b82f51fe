"""Campaign management endpoints."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from pushsaas.api import deps
from pushsaas.db.models.user import User
from pushsaas.schemas import (
    CampaignCreate,
    CampaignCreateResponse,
    CampaignDetail,
    CampaignListResponse,
    CampaignRead,
    CampaignUpdate,
    DispatchSummary,
)
from pushsaas.services.campaign_service import CampaignService
from pushsaas.services.dispatcher import DispatchResult
from pushsaas.utils.exceptions import (
    CampaignStateError,
    DispatchFatalError,
    NotFoundError,
    ValidationError,
    handle_campaign_state_error,
    handle_dispatch_error,
    handle_not_found_error,
    handle_validation_error,
)

router = APIRouter(prefix="/campaigns", tags=["campaigns"])


def _summary(result: DispatchResult | None) -> DispatchSummary | None:
    if result is None:
        return None
    return DispatchSummary(
        sent=result.sent,
        failed=result.failed,
        expired=result.expired,
        total=result.total,
        message=result.message,
    )


@router.post("", response_model=CampaignCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    payload: CampaignCreate,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignCreateResponse:
    """Create a campaign; immediate campaigns are sent before responding."""

    try:
        campaign, result = await service.create_campaign(current_user, payload)
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    except CampaignStateError as exc:
        raise handle_campaign_state_error(exc) from exc
    except DispatchFatalError as exc:
        raise handle_dispatch_error(exc) from exc

    if result is not None:
        message = "Campaign created and sent"
    elif campaign.status == "scheduled":
        message = "Campaign scheduled"
    else:
        message = "Campaign created"
    return CampaignCreateResponse(
        message=message,
        campaign=CampaignRead.model_validate(campaign),
        execution=_summary(result),
    )


@router.get("", response_model=CampaignListResponse)
def list_campaigns(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignListResponse:
    items, pagination = service.list_campaigns(
        current_user, status=status_filter, search=search, page=page, limit=limit
    )
    return CampaignListResponse(
        items=[CampaignRead.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.get("/{campaign_id}", response_model=CampaignDetail)
def get_campaign(
    campaign_id: int,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignDetail:
    """Return a campaign with per-status execution counts."""

    try:
        campaign, stats = service.get_campaign(current_user, campaign_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    return CampaignDetail(campaign=CampaignRead.model_validate(campaign), execution_stats=stats)


@router.put("/{campaign_id}", response_model=CampaignRead)
async def update_campaign(
    campaign_id: int,
    payload: CampaignUpdate,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignRead:
    try:
        campaign = service.update_campaign(current_user, campaign_id, payload)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except CampaignStateError as exc:
        raise handle_campaign_state_error(exc) from exc
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return CampaignRead.model_validate(campaign)


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: int,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> dict:
    try:
        service.delete_campaign(current_user, campaign_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    return {"message": "Campaign deleted", "id": campaign_id}


@router.post("/{campaign_id}/send", response_model=CampaignCreateResponse)
async def send_campaign(
    campaign_id: int,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignCreateResponse:
    """Send a draft now."""

    try:
        campaign, result = await service.send_campaign(current_user, campaign_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except CampaignStateError as exc:
        raise handle_campaign_state_error(exc) from exc
    except DispatchFatalError as exc:
        raise handle_dispatch_error(exc) from exc
    return CampaignCreateResponse(
        message="Campaign sent",
        campaign=CampaignRead.model_validate(campaign),
        execution=_summary(result),
    )


@router.post("/{campaign_id}/cancel", response_model=CampaignRead)
async def cancel_campaign(
    campaign_id: int,
    service: CampaignService = Depends(deps.get_campaign_service),
    current_user: User = Depends(deps.get_current_user),
) -> CampaignRead:
    """Pause a scheduled campaign."""

    try:
        campaign = service.cancel_campaign(current_user, campaign_id)
    except NotFoundError as exc:
        raise handle_not_found_error(exc) from exc
    except CampaignStateError as exc:
        raise handle_campaign_state_error(exc) from exc
    return CampaignRead.model_validate(campaign)
