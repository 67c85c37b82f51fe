"""Pydantic schemas package."""

from pushsaas.schemas.auth import TokenPayload
from pushsaas.schemas.campaign import (
    CampaignActionIn,
    CampaignActionRead,
    CampaignCreate,
    CampaignCreateResponse,
    CampaignDetail,
    CampaignListResponse,
    CampaignRead,
    CampaignUpdate,
    DispatchSummary,
    Pagination,
)
from pushsaas.schemas.scheduler import SchedulerStatsRead
from pushsaas.schemas.segment import (
    PreviewSubscription,
    SegmentCreate,
    SegmentListResponse,
    SegmentPreview,
    SegmentPreviewRequest,
    SegmentRead,
    SegmentUpdate,
)
from pushsaas.schemas.subscription import (
    SubscriptionCreate,
    SubscriptionKeys,
    SubscriptionRead,
    VapidPublicKey,
)

__all__ = [
    "TokenPayload",
    "CampaignActionIn",
    "CampaignActionRead",
    "CampaignCreate",
    "CampaignCreateResponse",
    "CampaignDetail",
    "CampaignListResponse",
    "CampaignRead",
    "CampaignUpdate",
    "DispatchSummary",
    "Pagination",
    "SchedulerStatsRead",
    "PreviewSubscription",
    "SegmentCreate",
    "SegmentListResponse",
    "SegmentPreview",
    "SegmentPreviewRequest",
    "SegmentRead",
    "SegmentUpdate",
    "SubscriptionCreate",
    "SubscriptionKeys",
    "SubscriptionRead",
    "VapidPublicKey",
]
