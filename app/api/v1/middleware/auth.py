"""JWT Authentication Middleware for FastAPI.

Verifies the bearer token for every API request and attaches the caller to
``request.state.user``. Scheduler callbacks and internal worker reads are
let through; their routes enforce shared secrets themselves.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import jwt

from app.core.config import settings
from app.core.jwt import jwt_verifier
from app.schemas.auth import ROLE_PROOFREADER, CurrentUser
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Paths that don't require authentication
EXCLUDED_PATHS = {
    "/",
    "/docs",
    "/docs/",
    "/redoc",
    "/openapi.json",
}

# Prefixes authenticated by webhook secret or internal API key instead of JWT
EXCLUDED_PREFIXES = (
    "/health",
    f"{settings.api_v1_prefix}/workflows/callback/",
    f"{settings.api_v1_prefix}/sync/callback",
    f"{settings.internal_api_prefix}/",
)


def is_public_path(path: str) -> bool:
    return path in EXCLUDED_PATHS or path.startswith(EXCLUDED_PREFIXES)


class JWTAuthenticationMiddleware(BaseHTTPMiddleware):
    """Middleware for JWT authentication.

    Verifies Bearer token in 'Authorization' header and populates request.state.user.
    """

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or is_public_path(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            LOGGER.warning(f"Missing authentication for {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Authentication required"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        if not auth_header.startswith("Bearer "):
            LOGGER.warning(f"Invalid Authorization header format for {request.url.path}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid authentication scheme. Use Bearer token."},
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = auth_header.split(" ", 1)[1]
        try:
            claims = await jwt_verifier.verify_token(token)
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token for {request.url.path}: {e}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid authentication token"},
                headers={"WWW-Authenticate": "Bearer"},
            )

        request.state.user = CurrentUser(
            id=claims.sub,
            email=claims.email,
            role=claims.role or ROLE_PROOFREADER,
            app_metadata=claims.app_metadata,
            user_metadata=claims.user_metadata,
        )
        LOGGER.debug(f"Authenticated user {claims.sub} via middleware")

        return await call_next(request)
