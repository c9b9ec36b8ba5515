"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT bearer tokens and exposes these dependencies:

- `get_current_user`: the authenticated `User`, or 401.
- `get_optional_user`: the authenticated `User`, or None when no valid
  token was sent.
- `get_user_or_dev_user`: like `get_current_user`, but falls back to the
  shared dev user in development and prelaunch.
- `get_user_or_dev_user_in_development`: the same fallback, development only.

Token problems raise `AuthenticationRequired` so every route answers an
unauthenticated call with the same 401 JSON body.
"""

import logging
from typing import Optional

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .database import get_session
from .errors import AuthenticationRequired
from .services import DevUserService

bearer_scheme = HTTPBearer(auto_error=False)
logger = logging.getLogger("planner.auth")


def decode_token(token: str) -> dict:
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises
    `AuthenticationRequired` on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise AuthenticationRequired("token expired")
    except jwt.InvalidTokenError:
        raise AuthenticationRequired("invalid token")


def _user_from_credentials(credentials: Optional[HTTPAuthorizationCredentials], db: Session) -> Optional[models.User]:
    if credentials is None or not credentials.credentials:
        return None
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise AuthenticationRequired("invalid token payload")
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise AuthenticationRequired("user not found")
    return user


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user or raises 401."""
    user = _user_from_credentials(credentials, db)
    if user is None:
        raise AuthenticationRequired()
    return user


def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> Optional[models.User]:
    """Return the authenticated user, or None for anonymous or bad tokens."""
    try:
        return _user_from_credentials(credentials, db)
    except AuthenticationRequired as exc:
        logger.debug("ignoring credentials: %s", exc.message)
        return None


def get_user_or_dev_user(
    user: Optional[models.User] = Depends(get_optional_user),
    db: Session = Depends(get_session),
) -> models.User:
    """Authenticated user, or the dev user in development/prelaunch."""
    if user is not None:
        return user
    if settings.allows_dev_user:
        return DevUserService(db).ensure()
    raise AuthenticationRequired()


def get_user_or_dev_user_in_development(
    user: Optional[models.User] = Depends(get_optional_user),
    db: Session = Depends(get_session),
) -> models.User:
    """Authenticated user, or the dev user when running in development only."""
    if user is not None:
        return user
    if settings.is_development:
        return DevUserService(db).ensure()
    raise AuthenticationRequired()
