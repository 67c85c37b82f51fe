"""Custom exception classes and error handling utilities."""
from typing import Any, Dict, Optional

from fastapi import HTTPException, status
from loguru import logger


class PushSaaSException(Exception):
    """Base exception for the application."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(PushSaaSException):
    """Request data failed business validation."""
    pass


class NotFoundError(PushSaaSException):
    """Campaign, segment or subscription does not exist for the caller."""
    pass


class CampaignStateError(PushSaaSException):
    """Operation is not allowed in the campaign's current status."""
    pass


class AuthorizationError(PushSaaSException):
    """Caller lacks the role required for an operation."""
    pass


class DispatchFatalError(PushSaaSException):
    """A dispatch aborted as a whole (storage failure and the like)."""

    def __init__(
        self,
        message: str,
        *,
        campaign_id: int,
        status_after: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.campaign_id = campaign_id
        self.status_after = status_after


class SchedulerTimerError(PushSaaSException):
    """A timer could not be armed for a scheduled campaign."""
    pass


def handle_validation_error(error: ValidationError) -> HTTPException:
    """Handle validation errors."""
    logger.warning(f"Validation error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail={
            "message": error.message,
            "details": error.details
        }
    )


def handle_not_found_error(error: NotFoundError) -> HTTPException:
    """Handle missing resources."""
    logger.info(f"Not found: {error.message}")
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=error.message
    )


def handle_campaign_state_error(error: CampaignStateError) -> HTTPException:
    """Handle operations attempted in the wrong campaign status."""
    logger.warning(f"Campaign state error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": error.message,
            "details": error.details
        }
    )


def handle_authorization_error(error: AuthorizationError) -> HTTPException:
    """Handle insufficient privileges."""
    logger.warning(f"Authorization error: {error.message}")
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail=error.message
    )


def handle_dispatch_error(error: DispatchFatalError) -> HTTPException:
    """Handle a dispatch that aborted as a whole."""
    logger.error(f"Dispatch error for campaign {error.campaign_id}: {error.message}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "code": "EXECUTION_ERROR",
            "message": f"Campaign could not be sent: {error.message}",
            "campaignId": error.campaign_id,
            "status": error.status_after,
        }
    )
