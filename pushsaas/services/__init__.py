"""Service layer package."""

from pushsaas.services.campaign_service import CampaignService
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.services.scheduler import CampaignScheduler
from pushsaas.services.segment_service import SegmentService
from pushsaas.services.subscription_store import SubscriptionStore

__all__ = [
    "CampaignDispatcher",
    "CampaignScheduler",
    "CampaignService",
    "SegmentService",
    "SubscriptionStore",
]
