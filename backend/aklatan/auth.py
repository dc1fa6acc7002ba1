"""Authentication helpers and FastAPI security dependencies.

This module decodes staff bearer tokens and exposes the dependencies
`get_current_user`, `require_staff` and `require_admin`. With the local
identity provider tokens are HS256 JWTs issued by `AuthService`; with
Clerk they are session JWTs verified against the instance JWKS and
mapped to users through `User.clerk_id`.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session

from .config import settings
from .database import get_session
from . import models, repositories
from .utils.identity import IdentityProviderError, verify_clerk_session_token

logger = logging.getLogger("aklatan.api")
bearer_scheme = HTTPBearer()


def decode_token(token: str) -> dict:
    """Decode and verify a locally issued JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def _user_from_clerk_token(token: str, repo: repositories.UserRepository) -> models.User:
    try:
        claims = verify_clerk_session_token(token)
    except (jwt.InvalidTokenError, jwt.PyJWKClientError, IdentityProviderError) as e:
        logger.warning("rejected identity provider token: %s", e)
        raise HTTPException(status_code=401, detail='invalid token')
    user = repo.get_by_clerk_id(claims.get('sub') or '')
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return user


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated staff user.

    Deleted, invited and inactive accounts are rejected with 401.
    """
    token = credentials.credentials
    repo = repositories.UserRepository(db)
    if settings.AUTH_PROVIDER == 'clerk':
        user = _user_from_clerk_token(token, repo)
    else:
        payload = decode_token(token)
        user_id = payload.get('user_id')
        if not user_id:
            raise HTTPException(status_code=401, detail='invalid token payload')
        user = repo.get(user_id)
        if not user:
            raise HTTPException(status_code=401, detail='user not found')
    if user.status != 'active':
        raise HTTPException(status_code=401, detail='account is not active')
    return user


def require_staff(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role not in ('admin', 'teacher'):
        raise HTTPException(status_code=403, detail='staff access required')
    return user


def require_admin(user: models.User = Depends(get_current_user)) -> models.User:
    if user.role != 'admin':
        raise HTTPException(status_code=403, detail='admin access required')
    return user


optional_bearer_scheme = HTTPBearer(auto_error=False)


def get_signup_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(optional_bearer_scheme),
) -> Optional[str]:
    """Verified Clerk account id of the caller, if a session token was sent.

    Only used by the sign-up callback; with the local provider, or without
    a token, no identity is returned and nothing gets linked.
    """
    if settings.AUTH_PROVIDER != 'clerk' or credentials is None:
        return None
    try:
        claims = verify_clerk_session_token(credentials.credentials)
    except (jwt.InvalidTokenError, jwt.PyJWKClientError, IdentityProviderError) as e:
        logger.warning("rejected sign-up token: %s", e)
        raise HTTPException(status_code=401, detail='invalid token')
    return claims.get('sub') or None
