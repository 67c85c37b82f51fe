"""Pydantic schemas for the subscribe flow."""
from __future__ import annotations

from typing import Optional

from pydantic import Field

from pushsaas.schemas.base import CamelModel


class SubscriptionKeys(CamelModel):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class SubscriptionCreate(CamelModel):
    """Body posted by the service worker after ``pushManager.subscribe``."""

    endpoint: str = Field(min_length=1)
    keys: SubscriptionKeys
    site_id: Optional[int] = None


class SubscriptionRead(CamelModel):
    id: int
    endpoint: str
    site_id: Optional[int] = None


class VapidPublicKey(CamelModel):
    public_key: Optional[str] = None
