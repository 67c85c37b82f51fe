"""Multi-tenant web push campaign service."""

__version__ = "0.1.0"
