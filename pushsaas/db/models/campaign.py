"""Campaign, action button and execution log models."""
from __future__ import annotations

from enum import Enum

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from pushsaas.db.base import Base


class SendType(str, Enum):
    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    DRAFT = "draft"


class CampaignStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CLICKED = "clicked"
    EXPIRED = "expired"


# Statuses the dispatcher may claim.
DISPATCHABLE_STATUSES = (CampaignStatus.DRAFT.value, CampaignStatus.SCHEDULED.value)


class Campaign(Base):
    """One notification send intent and its aggregate delivery counters."""

    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True)
    user_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    site_id = Column(Integer, index=True)
    segment_id = Column(
        Integer, ForeignKey("audience_segments.id", ondelete="SET NULL"), index=True
    )

    # Content
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    icon_url = Column(Text)
    image_url = Column(Text)
    click_url = Column(Text)
    badge_url = Column(Text)

    # Scheduling and lifecycle
    send_type = Column(String(20), nullable=False, default=SendType.IMMEDIATE.value, index=True)
    status = Column(String(20), nullable=False, default=CampaignStatus.DRAFT.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), index=True)
    sent_at = Column(DateTime(timezone=True))
    dispatch_attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text)

    # Aggregates
    total_sent = Column(Integer, nullable=False, default=0)
    total_delivered = Column(Integer, nullable=False, default=0)
    total_failed = Column(Integer, nullable=False, default=0)
    total_clicked = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    actions = relationship(
        "CampaignAction",
        back_populates="campaign",
        cascade="all, delete-orphan",
        order_by="CampaignAction.action_order",
    )
    executions = relationship(
        "CampaignExecution",
        back_populates="campaign",
        cascade="all, delete-orphan",
    )
    segment = relationship("Segment")


class CampaignAction(Base):
    """Action button attached to a campaign notification."""

    __tablename__ = "campaign_actions"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action_text = Column(String(255), nullable=False)
    action_url = Column(Text, nullable=False)
    action_order = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    campaign = relationship("Campaign", back_populates="actions")

    def to_payload(self) -> dict[str, object]:
        return {"text": self.action_text, "url": self.action_url, "order": self.action_order}


class CampaignExecution(Base):
    """Append-only record of one delivery attempt."""

    __tablename__ = "campaign_executions"

    id = Column(Integer, primary_key=True)
    campaign_id = Column(
        Integer, ForeignKey("campaigns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"))
    endpoint = Column(Text)
    status = Column(String(20), nullable=False, default=ExecutionStatus.PENDING.value)
    error_message = Column(Text)
    sent_at = Column(DateTime(timezone=True))
    delivered_at = Column(DateTime(timezone=True))
    clicked_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    campaign = relationship("Campaign", back_populates="executions")
