"""Access to live push subscriptions."""
from __future__ import annotations

from typing import Any, Iterable, List, Optional

from loguru import logger
from sqlalchemy import delete, select
from sqlalchemy.orm import Session
from sqlalchemy.sql import func

from pushsaas.db.models.subscription import Subscription
from pushsaas.utils.exceptions import ValidationError


class SubscriptionStore:
    """Read, upsert and prune push subscriptions."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def list_by_filter(self, *, site_id: Optional[int] = None) -> List[Subscription]:
        """Return live subscriptions, optionally scoped to one site.

        Ordered oldest first so repeated reads are stable.
        """

        stmt = select(Subscription)
        if site_id is not None:
            stmt = stmt.where(Subscription.site_id == site_id)
        stmt = stmt.order_by(Subscription.created_at.asc(), Subscription.id.asc())
        return list(self.db.scalars(stmt).all())

    def count(self, *, site_id: Optional[int] = None) -> int:
        stmt = select(func.count(Subscription.id))
        if site_id is not None:
            stmt = stmt.where(Subscription.site_id == site_id)
        return int(self.db.scalar(stmt) or 0)

    def existing_ids(self, subscription_ids: Iterable[int]) -> set[int]:
        """Return which of ``subscription_ids`` still exist."""

        ids = list(subscription_ids)
        if not ids:
            return set()
        return set(self.db.scalars(select(Subscription.id).where(Subscription.id.in_(ids))).all())

    def delete(self, subscription_id: int, *, commit: bool = True) -> bool:
        """Remove a subscription permanently; missing ids are a no-op."""

        result = self.db.execute(delete(Subscription).where(Subscription.id == subscription_id))
        if commit:
            self.db.commit()
        removed = bool(result.rowcount)
        if removed:
            logger.info("Subscription removed", subscription_id=subscription_id)
        return removed

    def upsert_by_endpoint(
        self,
        endpoint: str,
        keys: dict[str, Any],
        *,
        site_id: Optional[int] = None,
        user_id: Any = None,
        user_agent: Optional[str] = None,
        ip: Optional[str] = None,
    ) -> Subscription:
        """Insert a subscription or refresh the one registered for ``endpoint``."""

        endpoint = (endpoint or "").strip()
        if not endpoint:
            raise ValidationError("Endpoint required")
        p256dh = (keys or {}).get("p256dh")
        auth = (keys or {}).get("auth")
        if not p256dh or not auth:
            raise ValidationError("Subscription keys p256dh and auth are required")

        existing = self.db.scalars(
            select(Subscription).where(Subscription.endpoint == endpoint)
        ).first()
        if existing:
            existing.p256dh = p256dh
            existing.auth = auth
            existing.user_agent = user_agent
            existing.ip = ip
            if site_id is not None:
                existing.site_id = site_id
            if user_id is not None:
                existing.user_id = user_id
            subscription = existing
        else:
            subscription = Subscription(
                endpoint=endpoint,
                p256dh=p256dh,
                auth=auth,
                user_agent=user_agent,
                ip=ip,
                site_id=site_id,
                user_id=user_id,
            )
            self.db.add(subscription)

        self.db.commit()
        self.db.refresh(subscription)
        logger.info(
            "Subscription stored",
            subscription_id=subscription.id,
            site_id=subscription.site_id,
            created=existing is None,
        )
        return subscription
