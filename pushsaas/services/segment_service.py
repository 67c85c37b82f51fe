"""Segment CRUD and audience preview."""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pushsaas.core.segmentation import compile_conditions, validate_conditions
from pushsaas.db.models.campaign import Campaign, CampaignStatus
from pushsaas.db.models.segment import Segment
from pushsaas.db.models.user import User
from pushsaas.schemas.segment import SegmentCreate, SegmentUpdate
from pushsaas.services.subscription_store import SubscriptionStore
from pushsaas.utils.exceptions import CampaignStateError, NotFoundError, ValidationError

PREVIEW_ENDPOINT_CHARS = 50

# Campaigns that still resolve their audience at dispatch time.
PENDING_STATUSES = (
    CampaignStatus.DRAFT.value,
    CampaignStatus.SCHEDULED.value,
    CampaignStatus.PROCESSING.value,
)


class SegmentService:
    """Owner-scoped access to audience segments."""

    def __init__(self, db: Session):
        self.db = db

    def list_segments(
        self,
        user: User,
        *,
        site_id: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Segment], Dict[str, int]]:
        filters = [Segment.user_id == user.id]
        if site_id is not None:
            filters.append(Segment.site_id == site_id)
        if search:
            filters.append(Segment.name.ilike(f"%{search.strip()}%"))

        total = int(self.db.scalar(select(func.count(Segment.id)).where(*filters)) or 0)
        items = list(
            self.db.scalars(
                select(Segment)
                .where(*filters)
                .order_by(Segment.created_at.desc(), Segment.id.desc())
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

    def get_segment(self, user: User, segment_id: int) -> Segment:
        segment = self.db.scalars(
            select(Segment).where(Segment.id == segment_id, Segment.user_id == user.id)
        ).first()
        if segment is None:
            raise NotFoundError("Segment not found", details={"segment_id": segment_id})
        return segment

    def create_segment(self, user: User, payload: SegmentCreate) -> Segment:
        """Validate the conditions and store a new segment."""

        self._check_conditions(payload.conditions)
        segment = Segment(
            user_id=user.id,
            site_id=payload.site_id,
            name=payload.name.strip(),
            description=payload.description,
            conditions=payload.conditions,
        )
        self.db.add(segment)
        self.db.commit()
        self.db.refresh(segment)
        logger.info("Segment created", segment_id=segment.id, user_id=str(user.id))
        return segment

    def update_segment(self, user: User, segment_id: int, payload: SegmentUpdate) -> Segment:
        segment = self.get_segment(user, segment_id)
        changes = payload.model_dump(exclude_unset=True)
        if "conditions" in changes:
            self._check_conditions(changes["conditions"])
            segment.conditions = changes["conditions"] or {}
        if changes.get("name") is not None:
            segment.name = changes["name"].strip()
        if "description" in changes:
            segment.description = changes["description"]
        if "site_id" in changes:
            segment.site_id = changes["site_id"]
        segment.updated_at = datetime.now(timezone.utc)
        self.db.commit()
        self.db.refresh(segment)
        logger.info("Segment updated", segment_id=segment.id)
        return segment

    def delete_segment(self, user: User, segment_id: int) -> None:
        """Delete a segment that no pending campaign targets."""

        segment = self.get_segment(user, segment_id)
        pending = list(
            self.db.scalars(
                select(Campaign.id)
                .where(Campaign.segment_id == segment.id)
                .where(Campaign.status.in_(PENDING_STATUSES))
            ).all()
        )
        if pending:
            raise CampaignStateError(
                "Segment is targeted by campaigns that have not been sent",
                details={"campaign_ids": pending},
            )
        self.db.delete(segment)
        self.db.commit()
        logger.info("Segment deleted", segment_id=segment_id)

    def preview_segment(self, user: User, segment_id: int, *, limit: int = 10) -> Dict[str, Any]:
        segment = self.get_segment(user, segment_id)
        return self.preview_conditions(segment.conditions, site_id=segment.site_id, limit=limit)

    def preview_conditions(
        self,
        conditions: Mapping[str, Any] | None,
        *,
        site_id: Optional[int] = None,
        limit: int = 10,
    ) -> Dict[str, Any]:
        """Evaluate ``conditions`` against live subscriptions.

        Uses the same matcher as dispatch, so the count is what a campaign
        targeting this segment would reach right now.
        """

        self._check_conditions(conditions)
        candidates = SubscriptionStore(self.db).list_by_filter(site_id=site_id)
        matching = compile_conditions(conditions).filter(candidates)
        return {
            "total_matching": len(matching),
            "total_available": len(candidates),
            "subscriptions": [
                {
                    "id": subscription.id,
                    "endpoint": _shorten(subscription.endpoint),
                    "user_agent": subscription.user_agent,
                    "site_id": subscription.site_id,
                    "created_at": subscription.created_at,
                }
                for subscription in matching[:limit]
            ],
        }

    @staticmethod
    def _check_conditions(conditions: Any) -> None:
        errors = validate_conditions(conditions)
        if errors:
            raise ValidationError("Invalid segment conditions", details={"errors": errors})


def _shorten(endpoint: str) -> str:
    if len(endpoint) <= PREVIEW_ENDPOINT_CHARS:
        return endpoint
    return endpoint[:PREVIEW_ENDPOINT_CHARS] + "..."
