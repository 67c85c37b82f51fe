"""Scheduler introspection schema."""
from __future__ import annotations

from typing import List

from pydantic import Field

from pushsaas.schemas.base import CamelModel


class SchedulerStatsRead(CamelModel):
    is_running: bool
    scheduled_campaigns: int
    campaign_ids: List[int] = Field(default_factory=list)
