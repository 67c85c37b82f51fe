"""Web Push delivery provider."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Protocol

import requests
from loguru import logger
from pywebpush import WebPushException, webpush

from pushsaas.config import settings


# Push service responses meaning the endpoint will never accept messages again.
GONE_STATUS_CODES = frozenset({404, 410})


@dataclass(frozen=True)
class DeliveryTarget:
    """Snapshot of the subscription fields needed to deliver one message."""

    subscription_id: int
    endpoint: str
    p256dh: str
    auth: str

    def subscription_info(self) -> Dict[str, Any]:
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class DeliveryError(RuntimeError):
    """Base class for a failed delivery attempt."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class DeliveryGone(DeliveryError):
    """The endpoint is permanently invalid and should be deleted."""


class DeliveryTransient(DeliveryError):
    """Any other failure; the subscription is kept."""


class PushDeliveryProvider(Protocol):
    """Interface the dispatcher uses to send one message to one endpoint."""

    async def send(self, target: DeliveryTarget, payload: str) -> None:  # pragma: no cover - interface definition
        """Deliver ``payload`` or raise :class:`DeliveryGone` / :class:`DeliveryTransient`."""


def classify_webpush_error(exc: WebPushException) -> DeliveryError:
    """Map a pywebpush failure onto the delivery error taxonomy."""

    response = getattr(exc, "response", None)
    status_code = getattr(response, "status_code", None)
    message = getattr(exc, "message", None) or str(exc)
    if status_code in GONE_STATUS_CODES:
        return DeliveryGone(message, status_code=status_code)
    return DeliveryTransient(message, status_code=status_code)


@dataclass
class WebPushProvider:
    """Deliver notifications through the Web Push protocol with VAPID auth."""

    vapid_private_key: str | None
    vapid_subject: str
    ttl: int = 86400
    request_timeout: float = 10.0

    async def send(self, target: DeliveryTarget, payload: str) -> None:
        if not self.vapid_private_key:
            raise DeliveryTransient("VAPID keys not configured")
        # pywebpush blocks on requests; the outer bound keeps a stuck socket
        # from holding the whole batch.
        try:
            await asyncio.wait_for(
                asyncio.to_thread(self._send_blocking, target, payload),
                timeout=self.request_timeout + 1.0,
            )
        except asyncio.TimeoutError as exc:
            raise DeliveryTransient(
                f"Push request timed out after {self.request_timeout:.1f}s"
            ) from exc

    def _send_blocking(self, target: DeliveryTarget, payload: str) -> None:
        try:
            webpush(
                subscription_info=target.subscription_info(),
                data=payload,
                vapid_private_key=self.vapid_private_key,
                vapid_claims={"sub": self.vapid_subject},
                ttl=self.ttl,
                timeout=self.request_timeout,
            )
        except WebPushException as exc:
            raise classify_webpush_error(exc) from exc
        except requests.RequestException as exc:
            raise DeliveryTransient(f"Push request failed: {exc}") from exc


def build_push_provider() -> WebPushProvider:
    """Create the provider from settings."""

    if not settings.VAPID_PRIVATE_KEY:
        logger.warning("VAPID keys not configured, every delivery will fail")
    return WebPushProvider(
        vapid_private_key=settings.VAPID_PRIVATE_KEY,
        vapid_subject=settings.VAPID_SUBJECT,
        ttl=settings.PUSH_TTL_SECONDS,
        request_timeout=settings.PUSH_REQUEST_TIMEOUT_SECONDS,
    )
