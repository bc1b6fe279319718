"""Authentication dependencies for FastAPI routes.

Bearer tokens are verified with the shared JWT secret. Scheduler callbacks
and internal snapshot reads do not carry user tokens; they are checked
against shared secrets instead.
"""

import hmac
from typing import Annotated, Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.jwt import jwt_verifier
from app.core.ndr_client import RequestMeta
from app.schemas.auth import ROLE_PROOFREADER, ROLE_SUPER_ADMIN, CurrentUser
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# HTTP Bearer token scheme
security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> CurrentUser:
    """Get the current authenticated user from the bearer token.

    Raises:
        HTTPException: If token is missing, invalid, or expired
    """
    if not credentials:
        LOGGER.warning("No authorization credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        claims = await jwt_verifier.verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        LOGGER.warning(f"Invalid token: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    user = CurrentUser(
        id=claims.sub,
        email=claims.email,
        role=claims.role or ROLE_PROOFREADER,
        app_metadata=claims.app_metadata,
        user_metadata=claims.user_metadata,
    )
    LOGGER.debug(f"Authenticated user: {user.id} ({user.role})")
    return user


async def get_current_user_optional(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[CurrentUser]:
    """Get the current user if authenticated, None otherwise."""
    if not credentials:
        return None

    try:
        return await get_current_user(credentials)
    except HTTPException:
        return None


def require_role(required_role: str):
    """Create a dependency that requires a specific user role."""
    async def role_checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role != required_role:
            LOGGER.warning(f"Access denied for user {user.id}: insufficient role '{user.role}', required '{required_role}'")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required role: {required_role}",
            )
        return user

    return role_checker


def forbid_role(blocked_role: str, detail: str):
    """Create a dependency that rejects one role and admits everyone else."""
    async def role_checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role == blocked_role:
            LOGGER.warning(f"Access denied for user {user.id}: role '{user.role}' is blocked")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=detail)
        return user

    return role_checker


require_super_admin = require_role(ROLE_SUPER_ADMIN)
require_editor = forbid_role(ROLE_PROOFREADER, "proofreader cannot perform this operation")


def get_request_meta(
    request: Request,
    user: Annotated[CurrentUser, Depends(get_current_user)],
) -> RequestMeta:
    """Build the NDR call context for the authenticated caller."""
    return RequestMeta(
        api_key=settings.ndr.api_key,
        user_id=user.id,
        user_role=user.role,
        request_id=getattr(request.state, "correlation_id", "") or "",
    )


async def verify_webhook_secret(
    x_webhook_secret: Annotated[Optional[str], Header()] = None,
) -> None:
    """Guard for scheduler callbacks.

    Raises:
        HTTPException: 500 when no secret is configured, 401 on mismatch
    """
    expected = settings.prefect.webhook_secret
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="webhook secret not configured",
        )
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        LOGGER.warning("Rejected callback with invalid webhook secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid webhook secret")


async def verify_webhook_secret_if_configured(
    x_webhook_secret: Annotated[Optional[str], Header()] = None,
) -> None:
    """Like verify_webhook_secret, but open when no secret is configured."""
    if settings.prefect.webhook_secret:
        await verify_webhook_secret(x_webhook_secret)


async def verify_internal_api_key(
    x_api_key: Annotated[Optional[str], Header()] = None,
) -> None:
    """Guard for internal endpoints read by workflow workers."""
    expected = settings.auth.internal_api_key
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="internal api key not configured",
        )
    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="API key required")
    if not hmac.compare_digest(x_api_key, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid API key")
