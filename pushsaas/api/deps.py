"""Shared API dependencies."""
from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError
from sqlalchemy.orm import Session

from pushsaas.config import settings
from pushsaas.core.security import InvalidTokenError, decode_access_token
from pushsaas.db.models.user import User
from pushsaas.db.session import SessionLocal
from pushsaas.schemas import TokenPayload
from pushsaas.services.campaign_service import CampaignService
from pushsaas.services.dispatcher import CampaignDispatcher
from pushsaas.services.scheduler import CampaignScheduler
from pushsaas.services.segment_service import SegmentService
from pushsaas.utils.exceptions import AuthorizationError, handle_authorization_error

# Tokens are minted by the auth service; the URL only feeds the OpenAPI docs.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_V1_STR}/auth/login")


def get_db() -> Session:
    """Yield a database session for request lifetime."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)
) -> User:
    """Resolve the authenticated user from the Authorization header."""

    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    try:
        token_data = TokenPayload.model_validate(decode_access_token(token))
    except (InvalidTokenError, ValidationError, ValueError, KeyError) as exc:
        raise credentials_exception from exc

    user_id = uuid.UUID(str(token_data.sub))
    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise credentials_exception
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    """Allow only admin and superadmin accounts."""

    if not current_user.is_admin:
        raise handle_authorization_error(
            AuthorizationError("Insufficient permissions", details={"role": current_user.role})
        )
    return current_user


def get_campaign_dispatcher(request: Request) -> CampaignDispatcher:
    """Return the application's single dispatcher."""

    return request.app.state.dispatcher


def get_campaign_scheduler(request: Request) -> CampaignScheduler:
    """Return the application's single scheduler."""

    return request.app.state.scheduler


def get_campaign_service(
    db: Session = Depends(get_db),
    dispatcher: CampaignDispatcher = Depends(get_campaign_dispatcher),
    scheduler: CampaignScheduler = Depends(get_campaign_scheduler),
) -> CampaignService:
    """Assemble the campaign service with request-scoped dependencies."""

    return CampaignService(db, dispatcher=dispatcher, scheduler=scheduler)


def get_segment_service(db: Session = Depends(get_db)) -> SegmentService:
    return SegmentService(db)
