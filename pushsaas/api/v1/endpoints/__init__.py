"""API endpoint modules for v1."""

from pushsaas.api.v1.endpoints import campaigns, scheduler, segments, subscriptions

__all__ = ["campaigns", "scheduler", "segments", "subscriptions"]
