"""Scheduler introspection."""
from fastapi import APIRouter, Depends

from pushsaas.api import deps
from pushsaas.db.models.user import User
from pushsaas.schemas import SchedulerStatsRead
from pushsaas.services.scheduler import CampaignScheduler

router = APIRouter(prefix="/scheduler", tags=["scheduler"])


@router.get("/stats", response_model=SchedulerStatsRead)
def scheduler_stats(
    scheduler: CampaignScheduler = Depends(deps.get_campaign_scheduler),
    current_user: User = Depends(deps.require_admin),
) -> SchedulerStatsRead:
    """Report armed timers without changing anything."""

    stats = scheduler.get_stats()
    return SchedulerStatsRead(
        is_running=stats.is_running,
        scheduled_campaigns=stats.scheduled_campaigns,
        campaign_ids=stats.campaign_ids,
    )
