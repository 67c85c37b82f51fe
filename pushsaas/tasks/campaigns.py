"""Celery tasks for out-of-process campaign dispatch."""
from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Dict

from loguru import logger

from pushsaas.celery_app import celery_app
from pushsaas.config import settings
from pushsaas.db.session import SessionLocal
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.services.push_provider import build_push_provider
from pushsaas.services.scheduler import CampaignScheduler
from pushsaas.utils.exceptions import DispatchFatalError


def _build_dispatcher() -> CampaignDispatcher:
    return CampaignDispatcher(SessionLocal, build_push_provider())


@celery_app.task(name="pushsaas.tasks.campaigns.execute_campaign")
def execute_campaign(campaign_id: int) -> Dict[str, Any]:
    """Dispatch one campaign from a worker.

    Safe to enqueue more than once: only the first run gets past the
    dispatcher's status claim.
    """

    dispatcher = _build_dispatcher()
    try:
        result = asyncio.run(dispatcher.execute_campaign(campaign_id))
    except DispatchFatalError as exc:
        logger.error(
            "Campaign task failed",
            campaign_id=campaign_id,
            status_after=exc.status_after,
            error=exc.message,
        )
        return {"campaign_id": campaign_id, "status": "error", "campaign_status": exc.status_after}
    finally:
        dispatcher.close()

    if result is None:
        logger.info("Campaign task skipped", campaign_id=campaign_id)
        return {"campaign_id": campaign_id, "status": "skipped"}
    return {"status": "sent", **result.as_dict()}


@celery_app.task(name="pushsaas.tasks.campaigns.sweep_overdue_campaigns")
def sweep_overdue_campaigns() -> Dict[str, Any]:
    """Release stalled dispatches and send every overdue scheduled campaign."""

    dispatcher = _build_dispatcher()
    try:
        recovered = dispatcher.recover_stalled_campaigns(
            timedelta(seconds=settings.SCHEDULER_STALE_PROCESSING_SECONDS)
        )
        scheduler = CampaignScheduler(dispatcher, SessionLocal)
        dispatched = asyncio.run(scheduler.process_scheduled_campaigns(wait=True))
    finally:
        dispatcher.close()

    logger.info("Overdue campaign sweep finished", recovered=len(recovered), dispatched=dispatched)
    return {"recovered": recovered, "dispatched": dispatched}
