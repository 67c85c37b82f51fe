"""Verification of bearer tokens minted by the auth service."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import JWTError, jwt

from pushsaas.config import settings


ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


class InvalidTokenError(Exception):
    """Raised when a bearer token is unsigned, expired or of the wrong type."""


def create_access_token(subject: str | Any, expires_minutes: int | None = None) -> str:
    """Sign an access token the way the auth service does.

    Only tooling and tests mint tokens here; production tokens come from the
    auth service sharing ``SECRET_KEY``.
    """

    lifetime = timedelta(minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    claims: Dict[str, Any] = {
        "sub": str(subject),
        "type": ACCESS_TOKEN_TYPE,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Return the claims of a valid access token."""

    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise InvalidTokenError("Token must be an access token")
    return claims
