"""In-process scheduler for campaigns with a future send time.

One :class:`CampaignScheduler` per process owns every armed timer. On start
it arms a one-shot timer per future scheduled campaign and runs a periodic
sweep that dispatches scheduled campaigns whose time has already passed,
which covers timers lost to a restart. Timers and the sweep may race for the
same campaign; a campaign already being sent by this scheduler is skipped,
and the dispatcher's status claim settles races with other processes. The
periodic sweep never waits for the dispatches it starts, so one slow
campaign cannot hold back the next overdue one.

Running several processes with the scheduler enabled arms duplicate timers.
That stays correct thanks to the claim but wastes work, so deployments run a
single scheduler.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, TypeVar

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from pushsaas.config import settings
from pushsaas.core.segmentation import ensure_utc
from pushsaas.db.models.campaign import Campaign, CampaignStatus
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.utils.exceptions import DispatchFatalError, SchedulerTimerError

T = TypeVar("T")


@dataclass
class SchedulerStats:
    """Read-only snapshot of scheduler state."""

    is_running: bool
    scheduled_campaigns: int
    campaign_ids: List[int] = field(default_factory=list)


def list_due_campaign_ids(db: Session, now: datetime | None = None) -> List[int]:
    """Scheduled campaigns whose send time has passed, oldest first."""

    now = now or datetime.now(timezone.utc)
    return list(
        db.scalars(
            select(Campaign.id)
            .where(Campaign.status == CampaignStatus.SCHEDULED.value)
            .where(Campaign.scheduled_at <= now)
            .order_by(Campaign.scheduled_at.asc(), Campaign.id.asc())
        ).all()
    )


def list_upcoming_campaigns(db: Session, now: datetime | None = None) -> List[tuple[int, datetime]]:
    """Scheduled campaigns still waiting for their send time."""

    now = now or datetime.now(timezone.utc)
    rows = db.execute(
        select(Campaign.id, Campaign.scheduled_at)
        .where(Campaign.status == CampaignStatus.SCHEDULED.value)
        .where(Campaign.scheduled_at > now)
        .order_by(Campaign.scheduled_at.asc())
    ).all()
    return [(campaign_id, ensure_utc(scheduled_at)) for campaign_id, scheduled_at in rows]


class CampaignScheduler:
    """Own the timers that fire scheduled campaigns."""

    def __init__(
        self,
        dispatcher: CampaignDispatcher,
        session_factory: Callable[[], Session],
        *,
        sweep_interval_seconds: float | None = None,
        stale_processing_after: timedelta | None = None,
    ) -> None:
        self.dispatcher = dispatcher
        self._session_factory = session_factory
        self.sweep_interval_seconds = (
            sweep_interval_seconds or settings.SCHEDULER_SWEEP_INTERVAL_SECONDS
        )
        self.stale_processing_after = stale_processing_after or timedelta(
            seconds=settings.SCHEDULER_STALE_PROCESSING_SECONDS
        )
        self._jobs: Dict[int, asyncio.TimerHandle] = {}
        self._in_flight: Dict[int, asyncio.Task] = {}
        self._sweep_task: asyncio.Task | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self.is_running = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        """Start the sweep and arm timers for upcoming campaigns."""

        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self.is_running = True
        self._sweep_task = self._loop.create_task(self._sweep_forever())
        logger.info("Campaign scheduler started", sweep_interval=self.sweep_interval_seconds)
        try:
            await self.dispatcher.run_in_db_thread(
                self.dispatcher.recover_stalled_campaigns, self.stale_processing_after
            )
        except Exception as exc:
            logger.error("Failed to recover stalled campaigns", error=str(exc))
        await self.load_scheduled_campaigns()

    async def stop(self) -> None:
        """Cancel the sweep and every armed timer.

        Dispatches already running are allowed to finish. Storage is left
        untouched, so a later :meth:`start` re-arms the same campaigns.
        """

        if not self.is_running:
            return
        self.is_running = False
        for handle in self._jobs.values():
            handle.cancel()
        self._jobs.clear()

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        if self._in_flight:
            await asyncio.gather(*list(self._in_flight.values()), return_exceptions=True)
        logger.info("Campaign scheduler stopped")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    async def load_scheduled_campaigns(self) -> int:
        """Arm a timer for every scheduled campaign with a future send time."""

        try:
            upcoming = await self._query(list_upcoming_campaigns)
        except Exception as exc:
            logger.error("Failed to load scheduled campaigns", error=str(exc))
            return 0

        armed = sum(
            1 for campaign_id, scheduled_at in upcoming if self.schedule_campaign(campaign_id, scheduled_at)
        )
        logger.info("Scheduled campaigns loaded", count=armed)
        return armed

    def schedule_campaign(self, campaign_id: int, scheduled_at: datetime) -> bool:
        """Arm (or re-arm) the one-shot timer for ``campaign_id``.

        Returns ``False`` when no timer was armed; the campaign stays
        ``scheduled`` and the sweep picks it up once it is due. Must be
        called from the scheduler's event loop thread.
        """

        if not self.is_running or self._loop is None:
            logger.debug("Scheduler not running, timer not armed", campaign_id=campaign_id)
            return False
        try:
            delay = self._delay_until(scheduled_at)
            self.cancel_scheduled_campaign(campaign_id)
            handle = self._loop.call_later(delay, self._on_timer, campaign_id)
        except SchedulerTimerError as exc:
            logger.error("Could not arm campaign timer", campaign_id=campaign_id, error=exc.message)
            return False
        except (TypeError, ValueError, OverflowError) as exc:
            logger.error("Could not arm campaign timer", campaign_id=campaign_id, error=str(exc))
            return False

        self._jobs[campaign_id] = handle
        logger.info(
            "Campaign timer armed",
            campaign_id=campaign_id,
            scheduled_at=ensure_utc(scheduled_at).isoformat(),
        )
        return True

    def cancel_scheduled_campaign(self, campaign_id: int) -> bool:
        """Disarm the timer for ``campaign_id`` if one is armed."""

        handle = self._jobs.pop(campaign_id, None)
        if handle is None:
            return False
        handle.cancel()
        logger.info("Campaign timer cancelled", campaign_id=campaign_id)
        return True

    def get_stats(self) -> SchedulerStats:
        return SchedulerStats(
            is_running=self.is_running,
            scheduled_campaigns=len(self._jobs),
            campaign_ids=sorted(self._jobs),
        )

    @staticmethod
    def _delay_until(scheduled_at: datetime) -> float:
        delay = (ensure_utc(scheduled_at) - datetime.now(timezone.utc)).total_seconds()
        if delay <= 0:
            raise SchedulerTimerError(
                "Scheduled time already passed", details={"scheduled_at": scheduled_at.isoformat()}
            )
        return delay

    def _on_timer(self, campaign_id: int) -> None:
        self._jobs.pop(campaign_id, None)
        logger.info("Campaign timer fired", campaign_id=campaign_id)
        if self._launch(campaign_id) is None:
            logger.info("Campaign already being sent, timer ignored", campaign_id=campaign_id)

    def _launch(self, campaign_id: int) -> asyncio.Task | None:
        if campaign_id in self._in_flight:
            return None
        task = asyncio.get_running_loop().create_task(self._run_campaign(campaign_id))
        self._in_flight[campaign_id] = task
        task.add_done_callback(lambda done: self._forget(campaign_id, done))
        return task

    def _forget(self, campaign_id: int, task: asyncio.Task) -> None:
        if self._in_flight.get(campaign_id) is task:
            del self._in_flight[campaign_id]

    async def _run_campaign(self, campaign_id: int) -> None:
        try:
            await self.dispatcher.execute_campaign(campaign_id)
        except DispatchFatalError as exc:
            logger.error(
                "Scheduled campaign dispatch failed",
                campaign_id=campaign_id,
                status_after=exc.status_after,
                error=exc.message,
            )
        except Exception:
            logger.exception("Unexpected error executing scheduled campaign", campaign_id=campaign_id)

    async def _query(self, query: Callable[..., T], *args: Any) -> T:
        def _blocking_call() -> T:
            db = self._session_factory()
            try:
                return query(db, *args)
            finally:
                db.close()

        return await self.dispatcher.run_in_db_thread(_blocking_call)

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------
    async def process_scheduled_campaigns(self, *, wait: bool = True) -> int:
        """Dispatch every scheduled campaign that is already due.

        Campaigns this scheduler is already sending are skipped. With
        ``wait`` the call returns once the started dispatches finish, which
        is what one-shot callers such as the Celery sweep need; the periodic
        sweep passes ``wait=False``. Returns how many campaigns were handed
        to the dispatcher.
        """

        try:
            due = await self._query(list_due_campaign_ids)
        except Exception as exc:
            logger.error("Failed to query overdue campaigns", error=str(exc))
            return 0

        tasks: Dict[int, asyncio.Task] = {}
        for campaign_id in due:
            task = self._launch(campaign_id)
            if task is None:
                continue
            self.cancel_scheduled_campaign(campaign_id)
            tasks[campaign_id] = task
        if not tasks:
            return 0

        logger.info("Dispatching overdue campaigns", campaign_ids=list(tasks))
        if wait:
            await asyncio.wait(list(tasks.values()))
        return len(tasks)

    async def _sweep_forever(self) -> None:
        while True:
            await self.process_scheduled_campaigns(wait=False)
            await asyncio.sleep(self.sweep_interval_seconds)
