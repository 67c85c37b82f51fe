"""Database models package."""
from pushsaas.db.models.user import User
from pushsaas.db.models.subscription import Subscription
from pushsaas.db.models.segment import Segment
from pushsaas.db.models.campaign import (
    Campaign,
    CampaignAction,
    CampaignExecution,
    CampaignStatus,
    ExecutionStatus,
    SendType,
)

__all__ = [
    "User",
    "Subscription",
    "Segment",
    "Campaign",
    "CampaignAction",
    "CampaignExecution",
    "CampaignStatus",
    "ExecutionStatus",
    "SendType",
]
