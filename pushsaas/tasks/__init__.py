"""Celery tasks package."""

from pushsaas.tasks import campaigns

__all__ = ["campaigns"]
