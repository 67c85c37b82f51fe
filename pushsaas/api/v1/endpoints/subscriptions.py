"""Public subscribe flow used by the service worker."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.orm import Session

from pushsaas.api import deps
from pushsaas.config import settings
from pushsaas.schemas import SubscriptionCreate, SubscriptionRead, VapidPublicKey
from pushsaas.services.subscription_store import SubscriptionStore
from pushsaas.utils.exceptions import ValidationError, handle_validation_error

router = APIRouter(tags=["subscriptions"])


@router.get("/push/vapid-public-key", response_model=VapidPublicKey)
def get_vapid_public_key() -> VapidPublicKey:
    return VapidPublicKey(public_key=settings.VAPID_PUBLIC_KEY)


@router.post("/subscribe", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def subscribe(
    payload: SubscriptionCreate,
    request: Request,
    user_agent: str | None = Header(default=None),
    db: Session = Depends(deps.get_db),
) -> SubscriptionRead:
    """Register or refresh a browser push subscription."""

    client_ip = request.client.host if request.client else None
    store = SubscriptionStore(db)
    try:
        subscription = store.upsert_by_endpoint(
            payload.endpoint,
            payload.keys.model_dump(),
            site_id=payload.site_id,
            user_agent=user_agent,
            ip=client_ip,
        )
    except ValidationError as exc:
        raise handle_validation_error(exc) from exc
    return SubscriptionRead.model_validate(subscription)
