"""
Module: auth.py
Description: Email/password sessions for the Finance Tracker, carried as
signed bearer tokens.

A successful /auth/login issues an HS256 JWT whose `sub` is the user id and
whose `role` is the account role. Routes take the id through the
`get_current_user` dependency (`require_existing_user` also checks the
account still exists); admin routes use `require_admin`.

Environment:
    SECRET_KEY                   signing key (change it outside development)
    ACCESS_TOKEN_EXPIRE_MINUTES  token lifetime, default one day
    AUTH_BYPASS                  "true" skips token checks (local demos only)
    AUTH_BYPASS_USER_ID          the user id used while bypassing

Author: Finance Tracker Team
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from dotenv import load_dotenv
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session as DBSession

from database import get_db
from services.observability import logger
from services.user_service import UserService

load_dotenv()

SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(24 * 60)))

AUTH_BYPASS = os.getenv("AUTH_BYPASS", "false").lower() == "true"
AUTH_BYPASS_USER_ID = os.getenv("AUTH_BYPASS_USER_ID", "demo_user_123")

# auto_error=False so a missing header becomes our 401, not FastAPI's 403
bearer_scheme = HTTPBearer(auto_error=False)

# =============================================================================
# Tokens
# =============================================================================

def create_access_token(user_id: str, role: str, expires_minutes: Optional[int] = None) -> str:
    """Issue a signed token carrying the user id (sub) and role."""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims = {"sub": user_id, "role": role, "exp": expire}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> Optional[dict]:
    """
    Verify a token and return its claims.

    Returns:
        Dict of claims if valid, None otherwise.
    """
    if not token:
        return None

    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.warning("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.warning("Invalid token", error=str(e))
        return None


# =============================================================================
# FastAPI Dependencies
# =============================================================================

def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Resolve the bearer token to a user id.

    With AUTH_BYPASS=true every request acts as AUTH_BYPASS_USER_ID.

    Raises:
        HTTPException: 401 when the token is absent, invalid, expired or has no subject.
    """
    if AUTH_BYPASS:
        return AUTH_BYPASS_USER_ID

    if credentials is None:
        raise _unauthorized("Not signed in. Log in to get an access token.")

    claims = verify_token(credentials.credentials)
    if claims is None:
        raise _unauthorized("Access token is invalid or has expired. Log in again.")

    subject = claims.get("sub")
    if not subject:
        raise _unauthorized("Access token has no subject.")

    return subject


async def require_existing_user(
    user_id: str = Depends(get_current_user),
    db: DBSession = Depends(get_db),
) -> str:
    """
    Like get_current_user, but the account must still exist.

    A token issued before its account was deleted is refused. Skipped under
    AUTH_BYPASS.

    Raises:
        HTTPException: 401 if the account has been deleted.
    """
    if AUTH_BYPASS:
        return user_id

    if UserService(db).get_user(user_id) is None:
        logger.warning("Token for deleted user", user_id=user_id[:8])
        raise _unauthorized("This account no longer exists.")
    return user_id


async def require_admin(
    user_id: str = Depends(get_current_user),
    db: DBSession = Depends(get_db),
) -> str:
    """
    Let only the admin account through.

    The role is re-read from the database rather than trusted from the token.

    Raises:
        HTTPException: 403 for anyone else.
    """
    user = UserService(db).get_user(user_id)
    if user is None or user.role != "admin":
        logger.warning("Admin route refused", user_id=user_id[:8])
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required.",
        )
    return user_id
