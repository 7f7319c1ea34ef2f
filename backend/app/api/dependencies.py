"""
API Dependencies

FastAPI dependency injection for authentication and the entitlement engine.

Security: client tokens are verified with the configured JWT secret. Never
decode without verification.
"""

import logging
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import get_settings
from app.infrastructure.db.database import get_session
from app.services.engine import EntitlementEngine, get_entitlement_engine


logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def _decode_token(token: str, secret: str, algorithm: str) -> dict:
    return jwt.decode(
        token,
        secret,
        algorithms=[algorithm],
        options={"require": ["exp", "sub"]},
    )


async def get_current_client_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Extract and verify the client ID from a bearer JWT.

    Returns:
        Authenticated client ID (``sub`` claim).

    Raises:
        HTTPException 401: token missing, expired, or invalid.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authorization token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    settings = get_settings()
    if not settings.jwt_secret:
        logger.error("JWT_SECRET is not configured; rejecting authenticated request")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication is not configured",
        )

    try:
        payload = _decode_token(credentials.credentials, settings.jwt_secret, settings.jwt_algorithm)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
        )
    except jwt.InvalidTokenError as e:
        logger.warning("JWT verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or unverifiable token",
        )

    client_id = payload.get("sub")
    if not client_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing client ID",
        )

    return client_id


def get_engine() -> EntitlementEngine:
    """Dependency provider for the entitlement engine (overridden in tests)."""
    return get_entitlement_engine()


ClientIdDep = Annotated[str, Depends(get_current_client_id)]
EngineDep = Annotated[EntitlementEngine, Depends(get_engine)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
