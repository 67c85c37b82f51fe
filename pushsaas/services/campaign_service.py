"""Campaign lifecycle: validation, persistence and state transitions."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from pushsaas.core.segmentation import ensure_utc
from pushsaas.db.models.campaign import (
    Campaign,
    CampaignAction,
    CampaignExecution,
    CampaignStatus,
    SendType,
)
from pushsaas.db.models.segment import Segment
from pushsaas.db.models.user import User
from pushsaas.schemas.campaign import CampaignCreate, CampaignUpdate
from pushsaas.services.dispatcher import CampaignDispatcher, DispatchResult
from pushsaas.services.scheduler import CampaignScheduler
from pushsaas.utils.exceptions import CampaignStateError, NotFoundError, ValidationError

MAX_ACTIONS = 2


def validate_campaign_payload(
    payload: CampaignCreate | CampaignUpdate, *, now: datetime | None = None
) -> List[str]:
    """Return every business-rule violation in ``payload``."""

    now = now or datetime.now(timezone.utc)
    errors: List[str] = []
    if not (payload.name or "").strip():
        errors.append("Name is required")
    if not (payload.title or "").strip():
        errors.append("Title is required")
    if not (payload.body or "").strip():
        errors.append("Body is required")

    if payload.send_type == SendType.SCHEDULED and payload.scheduled_at is None:
        errors.append("scheduledAt is required for scheduled campaigns")
    if payload.scheduled_at is not None and ensure_utc(payload.scheduled_at) <= now:
        errors.append("scheduledAt must be in the future")

    if len(payload.actions) > MAX_ACTIONS:
        errors.append(f"At most {MAX_ACTIONS} actions are allowed")
    for index, action in enumerate(payload.actions, start=1):
        if not action.text.strip() or not action.url.strip():
            errors.append(f"Action {index} needs both text and url")
    return errors


class CampaignService:
    """Owner-scoped campaign operations.

    The service never dispatches on its own: immediate and explicit sends go
    through the shared :class:`CampaignDispatcher`, and scheduled campaigns
    are handed to the process-wide :class:`CampaignScheduler`.
    """

    def __init__(
        self,
        db: Session,
        *,
        dispatcher: CampaignDispatcher,
        scheduler: CampaignScheduler | None = None,
    ) -> None:
        self.db = db
        self.dispatcher = dispatcher
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def get_campaign(self, user: User, campaign_id: int) -> Tuple[Campaign, Dict[str, int]]:
        """Return the campaign and its execution counts keyed by status."""

        campaign = self._get_owned(user, campaign_id)
        rows = self.db.execute(
            select(CampaignExecution.status, func.count(CampaignExecution.id))
            .where(CampaignExecution.campaign_id == campaign.id)
            .group_by(CampaignExecution.status)
        ).all()
        return campaign, {status: int(count) for status, count in rows}

    def list_campaigns(
        self,
        user: User,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Campaign], Dict[str, int]]:
        """Return one page of the caller's campaigns, newest first."""

        filters = [Campaign.user_id == user.id]
        if status and status != "all":
            filters.append(Campaign.status == status)
        if search:
            pattern = f"%{search.strip()}%"
            filters.append(
                or_(
                    Campaign.name.ilike(pattern),
                    Campaign.title.ilike(pattern),
                    Campaign.body.ilike(pattern),
                )
            )

        total = int(self.db.scalar(select(func.count(Campaign.id)).where(*filters)) or 0)
        items = list(
            self.db.scalars(
                select(Campaign)
                .where(*filters)
                .order_by(Campaign.created_at.desc(), Campaign.id.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            ).all()
        )
        pagination = {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
        }
        return items, pagination

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def create_campaign(
        self, user: User, payload: CampaignCreate
    ) -> Tuple[Campaign, Optional[DispatchResult]]:
        """Persist a campaign and start it according to its send type.

        Immediate campaigns are committed as ``draft`` first and then
        dispatched before returning; a :class:`DispatchFatalError` from that
        dispatch propagates to the caller with the campaign left revertible.
        """

        self._validate(user, payload)
        scheduled = payload.send_type == SendType.SCHEDULED
        campaign = Campaign(
            user_id=user.id,
            site_id=payload.site_id,
            segment_id=payload.segment_id,
            send_type=payload.send_type.value,
            status=CampaignStatus.SCHEDULED.value if scheduled else CampaignStatus.DRAFT.value,
            scheduled_at=ensure_utc(payload.scheduled_at) if scheduled else None,
            dispatch_attempts=0,
            total_sent=0,
            total_delivered=0,
            total_failed=0,
            total_clicked=0,
        )
        self._apply_content(campaign, payload)
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)
        logger.info(
            "Campaign created",
            campaign_id=campaign.id,
            user_id=str(user.id),
            send_type=campaign.send_type,
            status=campaign.status,
        )

        if payload.send_type == SendType.IMMEDIATE:
            result = await self._dispatch_now(campaign)
            return campaign, result
        if scheduled:
            self._arm(campaign)
        return campaign, None

    def update_campaign(self, user: User, campaign_id: int, payload: CampaignUpdate) -> Campaign:
        """Replace a draft's content, targeting and schedule."""

        campaign = self._get_owned(user, campaign_id)
        if campaign.status != CampaignStatus.DRAFT.value:
            raise CampaignStateError(
                "Only draft campaigns can be edited",
                details={"status": campaign.status},
            )
        self._validate(user, payload)

        scheduled = payload.send_type == SendType.SCHEDULED
        campaign.site_id = payload.site_id
        campaign.segment_id = payload.segment_id
        campaign.send_type = payload.send_type.value
        campaign.scheduled_at = ensure_utc(payload.scheduled_at) if scheduled else None
        campaign.updated_at = datetime.now(timezone.utc)
        campaign.actions.clear()
        self.db.flush()
        self._apply_content(campaign, payload)

        # The status flip is conditional so a concurrent send wins cleanly.
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign.id, Campaign.status == CampaignStatus.DRAFT.value)
            .values(
                status=CampaignStatus.SCHEDULED.value if scheduled else CampaignStatus.DRAFT.value
            )
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise CampaignStateError("Campaign is no longer a draft")
        self.db.commit()
        self.db.refresh(campaign)
        logger.info("Campaign updated", campaign_id=campaign.id, status=campaign.status)

        if scheduled:
            self._arm(campaign)
        return campaign

    def delete_campaign(self, user: User, campaign_id: int) -> None:
        """Delete a campaign in any status, disarming its timer."""

        campaign = self._get_owned(user, campaign_id)
        if self.scheduler is not None:
            self.scheduler.cancel_scheduled_campaign(campaign.id)
        self.db.delete(campaign)
        self.db.commit()
        logger.info("Campaign deleted", campaign_id=campaign_id, user_id=str(user.id))

    async def send_campaign(self, user: User, campaign_id: int) -> Tuple[Campaign, DispatchResult]:
        """Explicitly dispatch a draft."""

        campaign = self._get_owned(user, campaign_id)
        if campaign.status != CampaignStatus.DRAFT.value:
            raise CampaignStateError(
                "Only draft campaigns can be sent",
                details={"status": campaign.status},
            )
        result = await self._dispatch_now(campaign)
        return campaign, result

    def cancel_campaign(self, user: User, campaign_id: int) -> Campaign:
        """Pause a scheduled campaign so it never fires."""

        campaign = self._get_owned(user, campaign_id)
        result = self.db.execute(
            update(Campaign)
            .where(Campaign.id == campaign.id, Campaign.status == CampaignStatus.SCHEDULED.value)
            .values(status=CampaignStatus.CANCELLED.value, updated_at=datetime.now(timezone.utc))
        )
        if result.rowcount != 1:
            self.db.rollback()
            self.db.refresh(campaign)
            raise CampaignStateError(
                "Only scheduled campaigns can be cancelled",
                details={"status": campaign.status},
            )
        self.db.commit()
        self.db.refresh(campaign)
        if self.scheduler is not None:
            self.scheduler.cancel_scheduled_campaign(campaign.id)
        logger.info("Campaign cancelled", campaign_id=campaign.id)
        return campaign

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _get_owned(self, user: User, campaign_id: int) -> Campaign:
        campaign = self.db.scalars(
            select(Campaign).where(Campaign.id == campaign_id, Campaign.user_id == user.id)
        ).first()
        if campaign is None:
            raise NotFoundError("Campaign not found", details={"campaign_id": campaign_id})
        return campaign

    def _validate(self, user: User, payload: CampaignCreate | CampaignUpdate) -> None:
        errors = validate_campaign_payload(payload)
        if payload.segment_id is not None:
            segment = self.db.scalars(
                select(Segment.id).where(Segment.id == payload.segment_id, Segment.user_id == user.id)
            ).first()
            if segment is None:
                errors.append("Segment not found")
        if errors:
            raise ValidationError("Invalid campaign data", details={"errors": errors})

    @staticmethod
    def _apply_content(campaign: Campaign, payload: CampaignCreate | CampaignUpdate) -> None:
        campaign.name = payload.name.strip()
        campaign.title = payload.title.strip()
        campaign.body = payload.body.strip()
        campaign.icon_url = payload.icon_url or None
        campaign.image_url = payload.image_url or None
        campaign.click_url = payload.click_url or None
        campaign.badge_url = payload.badge_url or None
        for order, action in enumerate(payload.actions, start=1):
            campaign.actions.append(
                CampaignAction(
                    action_text=action.text.strip(),
                    action_url=action.url.strip(),
                    action_order=order,
                )
            )

    def _arm(self, campaign: Campaign) -> None:
        if self.scheduler is None or campaign.scheduled_at is None:
            return
        if not self.scheduler.schedule_campaign(campaign.id, ensure_utc(campaign.scheduled_at)):
            logger.info(
                "Campaign left for the overdue sweep",
                campaign_id=campaign.id,
                scheduled_at=ensure_utc(campaign.scheduled_at).isoformat(),
            )

    async def _dispatch_now(self, campaign: Campaign) -> DispatchResult:
        result = await self.dispatcher.execute_campaign(campaign.id)
        self.db.refresh(campaign)
        if result is None:
            raise CampaignStateError(
                "Campaign is already being sent",
                details={"status": campaign.status},
            )
        return result


__all__ = ["CampaignService", "MAX_ACTIONS", "validate_campaign_payload"]
