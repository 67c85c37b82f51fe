"""Campaign dispatch: audience resolution, push fan-out and bookkeeping.

A dispatch runs in three steps:

1. *Claim.* The campaign's status is read and conditionally flipped from
   ``draft``/``scheduled`` to ``processing`` in its own committed
   transaction. Only one caller can win the flip, which is what keeps a
   timer, the sweep and an explicit send from delivering the same campaign
   twice. The campaign's ``dispatch_attempts`` value at claim time is kept
   as the claim token.
2. *Fan-out.* The audience is resolved once and delivered to in batches;
   every attempt is isolated, so one bad endpoint never aborts the rest.
   After each batch that is followed by another one, ``updated_at`` is
   refreshed so stall recovery can tell a long dispatch from a dead one.
3. *Finalize.* Execution rows, pruning of gone endpoints, counters and the
   ``sent`` flip are written in a single transaction, and only while the
   claim is still held: the campaign must be ``processing`` with an
   unchanged token.

Stall recovery and fatal releases both bump ``dispatch_attempts``, so a run
whose claim was taken away finds its token stale. Its heartbeat and
finalize then match no row, and its results are discarded instead of being
added on top of the run that took over.

If anything after the claim raises, the final transaction is rolled back and
the status is restored to its claimed-from value so the campaign can be
retried. After ``max_attempts`` fatal errors the campaign is marked
``failed`` instead. Deliveries already made are not tracked across retries,
so a retry can notify the same subscriber twice.

Every database step runs on the dispatcher's single database thread, never
on the event loop.
"""
from __future__ import annotations

import asyncio
import functools
import json
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Set, TypeVar

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pushsaas.config import settings
from pushsaas.core.segmentation import compile_conditions
from pushsaas.db.models.campaign import (
    DISPATCHABLE_STATUSES,
    Campaign,
    CampaignExecution,
    CampaignStatus,
    ExecutionStatus,
    SendType,
)
from pushsaas.db.models.segment import Segment
from pushsaas.db.models.subscription import Subscription
from pushsaas.services.push_provider import (
    DeliveryGone,
    DeliveryTarget,
    DeliveryTransient,
    PushDeliveryProvider,
)
from pushsaas.services.subscription_store import SubscriptionStore
from pushsaas.utils.exceptions import DispatchFatalError

SessionFactory = Callable[[], Session]
T = TypeVar("T")

_MAX_ERROR_LENGTH = 2000
_INTERRUPTED = "Dispatch interrupted before completion"


@dataclass
class DeliveryOutcome:
    """Result of one delivery attempt."""

    target: DeliveryTarget
    status: ExecutionStatus
    error_message: Optional[str] = None
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class DispatchResult:
    """Aggregate outcome of one campaign execution."""

    campaign_id: int
    sent: int = 0
    failed: int = 0
    expired: int = 0
    total: int = 0

    @property
    def message(self) -> str:
        if self.total == 0:
            return "No target subscriptions"
        return f"Campaign executed: {self.sent} sent, {self.failed} failed, {self.expired} expired"

    def as_dict(self) -> Dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "sent": self.sent,
            "failed": self.failed,
            "expired": self.expired,
            "total": self.total,
            "message": self.message,
        }


@dataclass(frozen=True)
class ClaimedCampaign:
    """A campaign this dispatcher flipped to ``processing``."""

    campaign_id: int
    previous_status: str
    token: int

    def held_by(self) -> tuple:
        """WHERE clauses that match the campaign only while the claim holds."""

        return (
            Campaign.id == self.campaign_id,
            Campaign.status == CampaignStatus.PROCESSING.value,
            Campaign.dispatch_attempts == self.token,
        )


class ClaimLost(Exception):
    """The campaign was released or re-claimed while this run was sending."""

    def __init__(self, campaign_id: int, status: str | None = None) -> None:
        super().__init__(f"Claim on campaign {campaign_id} is no longer held")
        self.campaign_id = campaign_id
        self.status = status


def build_notification_payload(campaign: Campaign) -> Dict[str, Any]:
    """Build the JSON document handed to the service worker."""

    payload: Dict[str, Any] = {"title": campaign.title, "body": campaign.body}
    if campaign.icon_url:
        payload["icon"] = campaign.icon_url
    if campaign.image_url:
        payload["image"] = campaign.image_url
    if campaign.badge_url:
        payload["badge"] = campaign.badge_url

    data: Dict[str, Any] = {"campaignId": campaign.id}
    if campaign.click_url:
        data["url"] = campaign.click_url
    actions = [action.to_payload() for action in campaign.actions if action.action_text]
    if actions:
        data["actions"] = actions
    payload["data"] = data
    return payload


class CampaignDispatcher:
    """Execute campaigns against the live subscription set."""

    def __init__(
        self,
        session_factory: SessionFactory,
        provider: PushDeliveryProvider,
        *,
        batch_size: int | None = None,
        batch_pause_seconds: float | None = None,
        delivery_timeout: float | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.provider = provider
        self.batch_size = max(1, batch_size or settings.DISPATCH_BATCH_SIZE)
        self.batch_pause_seconds = (
            settings.DISPATCH_BATCH_PAUSE_SECONDS if batch_pause_seconds is None else batch_pause_seconds
        )
        self.delivery_timeout = (
            settings.PUSH_REQUEST_TIMEOUT_SECONDS if delivery_timeout is None else delivery_timeout
        )
        self.max_attempts = max(1, max_attempts or settings.CAMPAIGN_MAX_DISPATCH_ATTEMPTS)
        # One thread keeps database steps in submission order.
        self._db_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="pushsaas-db")
        self._active: Set[int] = set()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def active_campaign_ids(self) -> FrozenSet[int]:
        """Campaigns this dispatcher is sending right now."""

        return frozenset(self._active)

    def close(self) -> None:
        """Stop the database thread once queued work has drained."""

        self._db_executor.shutdown(wait=True)

    async def run_in_db_thread(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run blocking database work without stalling the event loop."""

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._db_executor, functools.partial(fn, *args, **kwargs))

    async def execute_campaign(self, campaign_id: int) -> DispatchResult | None:
        """Dispatch ``campaign_id`` once.

        Returns ``None`` when the campaign does not exist, is not in a
        dispatchable status (already sent, claimed by another caller,
        cancelled), or when its claim was taken away mid-run by stall
        recovery. Raises :class:`DispatchFatalError` when the dispatch
        aborted as a whole.
        """

        try:
            claim = await self.run_in_db_thread(self._claim, campaign_id)
        except SQLAlchemyError as exc:
            logger.error("Campaign claim failed", campaign_id=campaign_id, error=str(exc))
            raise DispatchFatalError(
                f"Could not claim campaign: {exc}", campaign_id=campaign_id, status_after="unchanged"
            ) from exc
        if claim is None:
            return None

        self._active.add(campaign_id)
        try:
            result = await self._run_claimed(claim)
        except ClaimLost as exc:
            logger.warning(
                "Campaign claim lost during dispatch, results discarded",
                campaign_id=campaign_id,
                status=exc.status,
            )
            return None
        except asyncio.CancelledError:
            await asyncio.shield(self.run_in_db_thread(self._release_claim, claim, None))
            logger.warning("Campaign dispatch cancelled", campaign_id=campaign_id)
            raise
        except Exception as exc:
            status_after = await self.run_in_db_thread(self._release_claim, claim, exc)
            logger.exception(
                "Campaign dispatch failed",
                campaign_id=campaign_id,
                status_after=status_after,
            )
            raise DispatchFatalError(
                str(exc) or exc.__class__.__name__,
                campaign_id=campaign_id,
                status_after=status_after,
            ) from exc
        finally:
            self._active.discard(campaign_id)

        logger.info(
            "Campaign dispatched",
            campaign_id=campaign_id,
            sent=result.sent,
            failed=result.failed,
            expired=result.expired,
            total=result.total,
        )
        return result

    def recover_stalled_campaigns(self, older_than: timedelta) -> List[int]:
        """Release campaigns stuck in ``processing`` after a crash.

        A campaign counts as stalled when its ``updated_at`` heartbeat is
        older than ``older_than``. Campaigns this dispatcher is still sending
        are never released. Each released one counts as a failed attempt and
        goes back to ``scheduled`` or ``draft`` depending on its send type.
        Blocking; async callers go through :meth:`run_in_db_thread`.
        """

        cutoff = datetime.now(timezone.utc) - older_than
        active = self.active_campaign_ids
        db = self._session_factory()
        try:
            stalled = db.execute(
                select(Campaign.id, Campaign.send_type, Campaign.dispatch_attempts)
                .where(Campaign.status == CampaignStatus.PROCESSING.value)
                .where(Campaign.updated_at < cutoff)
            ).all()
            recovered: List[int] = []
            for campaign_id, send_type, attempts in stalled:
                if campaign_id in active:
                    logger.debug("Stalled check skipped running campaign", campaign_id=campaign_id)
                    continue
                previous = (
                    CampaignStatus.SCHEDULED.value
                    if send_type == SendType.SCHEDULED.value
                    else CampaignStatus.DRAFT.value
                )
                released = db.execute(
                    update(Campaign)
                    .where(
                        Campaign.id == campaign_id,
                        Campaign.status == CampaignStatus.PROCESSING.value,
                        Campaign.dispatch_attempts == attempts,
                        Campaign.updated_at < cutoff,
                    )
                    .values(**self._failure_values(attempts, previous, _INTERRUPTED))
                    .execution_options(synchronize_session=False)
                )
                if released.rowcount == 1:
                    recovered.append(campaign_id)
            db.commit()
            if recovered:
                logger.warning("Recovered stalled campaigns", campaign_ids=recovered)
            return recovered
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Claim / release
    # ------------------------------------------------------------------
    def _claim(self, campaign_id: int) -> ClaimedCampaign | None:
        db = self._session_factory()
        try:
            row = db.execute(
                select(Campaign.status, Campaign.dispatch_attempts).where(Campaign.id == campaign_id)
            ).first()
            if row is None:
                logger.info("Campaign not found, nothing to dispatch", campaign_id=campaign_id)
                return None
            current, attempts = row
            if current not in DISPATCHABLE_STATUSES:
                logger.info("Campaign not dispatchable", campaign_id=campaign_id, status=current)
                return None

            claimed = db.execute(
                update(Campaign)
                .where(
                    Campaign.id == campaign_id,
                    Campaign.status == current,
                    Campaign.dispatch_attempts == attempts,
                )
                .values(status=CampaignStatus.PROCESSING.value, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if claimed.rowcount != 1:
                logger.info("Campaign claimed by another dispatcher", campaign_id=campaign_id)
                return None
            logger.debug("Campaign claimed", campaign_id=campaign_id, previous_status=current, token=attempts)
            return ClaimedCampaign(campaign_id, current, attempts or 0)
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def _release_claim(self, claim: ClaimedCampaign, error: Exception | None) -> str:
        db = self._session_factory()
        try:
            if error is None:
                values: Dict[str, Any] = {
                    "status": claim.previous_status,
                    "updated_at": datetime.now(timezone.utc),
                }
            else:
                values = self._failure_values(
                    claim.token, claim.previous_status, str(error) or error.__class__.__name__
                )
            released = db.execute(
                update(Campaign)
                .where(*claim.held_by())
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if released.rowcount == 1:
                return values["status"]

            current = db.scalar(select(Campaign.status).where(Campaign.id == claim.campaign_id))
            if current is None:
                return "deleted"
            logger.warning(
                "Campaign claim already released elsewhere",
                campaign_id=claim.campaign_id,
                status=current,
            )
            return current
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(
                "Could not release campaign claim",
                campaign_id=claim.campaign_id,
                error=str(exc),
            )
            return CampaignStatus.PROCESSING.value
        finally:
            db.close()

    def _failure_values(self, attempts_before: int | None, restore_to: str, error: str) -> Dict[str, Any]:
        attempts = (attempts_before or 0) + 1
        return {
            "dispatch_attempts": attempts,
            "last_error": _truncate(error),
            "updated_at": datetime.now(timezone.utc),
            "status": CampaignStatus.FAILED.value if attempts >= self.max_attempts else restore_to,
        }

    def _heartbeat(self, claim: ClaimedCampaign) -> None:
        db = self._session_factory()
        try:
            touched = db.execute(
                update(Campaign)
                .where(*claim.held_by())
                .values(updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.commit()
            if touched.rowcount == 1:
                return
            current = db.scalar(select(Campaign.status).where(Campaign.id == claim.campaign_id))
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Dispatch heartbeat failed", campaign_id=claim.campaign_id, error=str(exc))
            return
        finally:
            db.close()
        # A deleted campaign still finishes so gone endpoints get pruned.
        if current is not None:
            raise ClaimLost(claim.campaign_id, current)

    # ------------------------------------------------------------------
    # Dispatch body
    # ------------------------------------------------------------------
    async def _run_claimed(self, claim: ClaimedCampaign) -> DispatchResult:
        payload, targets = await self.run_in_db_thread(self._prepare, claim.campaign_id)
        outcomes = await self._fan_out(claim, targets, payload)
        return await self.run_in_db_thread(self._finalize, claim, outcomes)

    def _prepare(self, campaign_id: int) -> tuple[str, List[DeliveryTarget]]:
        db = self._session_factory()
        try:
            campaign = db.get(Campaign, campaign_id)
            if campaign is None:
                raise LookupError(f"Campaign {campaign_id} disappeared after claim")
            payload = json.dumps(build_notification_payload(campaign))
            targets = self.resolve_audience(db, campaign)
            # Nothing is held open across network I/O.
            db.commit()
            return payload, targets
        finally:
            db.close()

    def resolve_audience(self, db: Session, campaign: Campaign) -> List[DeliveryTarget]:
        """Return delivery targets for ``campaign``.

        A segment restricts candidates to the segment's site and its
        conditions; the campaign's own site, when set, always applies too.
        """

        store = SubscriptionStore(db)
        if campaign.segment_id is not None:
            segment = db.get(Segment, campaign.segment_id)
            if segment is None:
                logger.warning(
                    "Campaign segment no longer exists",
                    campaign_id=campaign.id,
                    segment_id=campaign.segment_id,
                )
                return []
            rule = compile_conditions(segment.conditions)
            site_scope = segment.site_id if segment.site_id is not None else campaign.site_id
            candidates = store.list_by_filter(site_id=site_scope)
            if campaign.site_id is not None:
                candidates = [sub for sub in candidates if sub.site_id == campaign.site_id]
            subscriptions = rule.filter(candidates)
        else:
            subscriptions = store.list_by_filter(site_id=campaign.site_id)

        return [_to_target(subscription) for subscription in subscriptions]

    async def _fan_out(
        self, claim: ClaimedCampaign, targets: List[DeliveryTarget], payload: str
    ) -> List[DeliveryOutcome]:
        outcomes: List[DeliveryOutcome] = []
        for start in range(0, len(targets), self.batch_size):
            batch = targets[start : start + self.batch_size]
            results = await asyncio.gather(*(self._deliver(target, payload) for target in batch))
            outcomes.extend(results)
            logger.debug(
                "Dispatch batch finished",
                campaign_id=claim.campaign_id,
                delivered=len(outcomes),
                total=len(targets),
            )
            if start + self.batch_size >= len(targets):
                break
            await self.run_in_db_thread(self._heartbeat, claim)
            if self.batch_pause_seconds > 0:
                await asyncio.sleep(self.batch_pause_seconds)
        return outcomes

    async def _deliver(self, target: DeliveryTarget, payload: str) -> DeliveryOutcome:
        try:
            await asyncio.wait_for(self.provider.send(target, payload), timeout=self.delivery_timeout)
        except DeliveryGone as exc:
            logger.info(
                "Push endpoint gone",
                subscription_id=target.subscription_id,
                status_code=exc.status_code,
            )
            return DeliveryOutcome(target, ExecutionStatus.EXPIRED, str(exc))
        except DeliveryTransient as exc:
            logger.warning(
                "Push delivery failed",
                subscription_id=target.subscription_id,
                status_code=exc.status_code,
                error=str(exc),
            )
            return DeliveryOutcome(target, ExecutionStatus.FAILED, str(exc))
        except asyncio.TimeoutError:
            logger.warning("Push delivery timed out", subscription_id=target.subscription_id)
            return DeliveryOutcome(
                target,
                ExecutionStatus.FAILED,
                f"Delivery timed out after {self.delivery_timeout:.1f}s",
            )
        except Exception as exc:
            logger.exception("Unexpected push delivery error", subscription_id=target.subscription_id)
            return DeliveryOutcome(target, ExecutionStatus.FAILED, str(exc) or exc.__class__.__name__)
        return DeliveryOutcome(target, ExecutionStatus.SENT)

    def _finalize(self, claim: ClaimedCampaign, outcomes: List[DeliveryOutcome]) -> DispatchResult:
        campaign_id = claim.campaign_id
        db = self._session_factory()
        try:
            store = SubscriptionStore(db)
            result = DispatchResult(campaign_id=campaign_id, total=len(outcomes))
            present = store.existing_ids(outcome.target.subscription_id for outcome in outcomes)

            campaign = db.get(Campaign, campaign_id, populate_existing=True)
            if campaign is not None and (
                campaign.status != CampaignStatus.PROCESSING.value
                or (campaign.dispatch_attempts or 0) != claim.token
            ):
                raise ClaimLost(campaign_id, campaign.status)

            for outcome in outcomes:
                subscription_id: int | None = outcome.target.subscription_id
                if outcome.status is ExecutionStatus.EXPIRED:
                    store.delete(outcome.target.subscription_id, commit=False)
                    subscription_id = None
                    result.expired += 1
                elif outcome.status is ExecutionStatus.SENT:
                    result.sent += 1
                else:
                    result.failed += 1
                if subscription_id not in present:
                    subscription_id = None

                if campaign is not None:
                    db.add(
                        CampaignExecution(
                            campaign_id=campaign_id,
                            subscription_id=subscription_id,
                            endpoint=outcome.target.endpoint,
                            status=outcome.status.value,
                            error_message=_truncate(outcome.error_message),
                            sent_at=outcome.attempted_at,
                        )
                    )

            if campaign is None:
                logger.warning("Campaign deleted during dispatch", campaign_id=campaign_id)
                db.commit()
                return result

            now = datetime.now(timezone.utc)
            finished = db.execute(
                update(Campaign)
                .where(*claim.held_by())
                .values(
                    total_sent=func.coalesce(Campaign.total_sent, 0) + result.sent,
                    total_failed=func.coalesce(Campaign.total_failed, 0) + result.failed,
                    status=CampaignStatus.SENT.value,
                    sent_at=campaign.sent_at or now,
                    updated_at=now,
                    last_error=None,
                )
                .execution_options(synchronize_session=False)
            )
            if finished.rowcount != 1:
                db.rollback()
                raise ClaimLost(campaign_id)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def _truncate(value: str | None) -> str | None:
    if not value:
        return None
    return value[:_MAX_ERROR_LENGTH]


def _to_target(subscription: Subscription) -> DeliveryTarget:
    return DeliveryTarget(
        subscription_id=subscription.id,
        endpoint=subscription.endpoint,
        p256dh=subscription.p256dh,
        auth=subscription.auth,
    )


__all__ = [
    "CampaignDispatcher",
    "ClaimLost",
    "ClaimedCampaign",
    "DeliveryOutcome",
    "DispatchResult",
    "build_notification_payload",
]
