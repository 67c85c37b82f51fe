"""API router for version 1."""
from fastapi import APIRouter

from pushsaas.api.v1.endpoints import campaigns, scheduler, segments, subscriptions


api_router = APIRouter()
api_router.include_router(campaigns.router)
api_router.include_router(segments.router)
api_router.include_router(subscriptions.router)
api_router.include_router(scheduler.router)
