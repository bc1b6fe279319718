"""JWT signing and verification for YDMS access tokens (HS256, PyJWT)."""

import time
from typing import Any, Dict, Optional

import jwt

from app.core.config import settings
from app.schemas.auth import JWTClaims
from app.utils.logging import get_logger

LOGGER = get_logger(__name__)

ISSUER = "ydms"


class JWTVerifier:
    """Verifies and issues shared-secret access tokens."""

    def __init__(self, secret: str, algorithm: str = "HS256", expiry_hours: int = 24):
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_hours = expiry_hours

    async def verify_token(self, token: str) -> JWTClaims:
        """Verify and decode a bearer token.

        Raises:
            jwt.InvalidTokenError: If the token is malformed, badly signed or expired
        """
        if not self.secret:
            raise jwt.InvalidTokenError("JWT secret is not configured")

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=ISSUER,
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            LOGGER.warning(f"Token expired: {e}")
            raise jwt.InvalidTokenError("Token has expired") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token: {e}")
            raise

        claims = JWTClaims(**payload)
        LOGGER.debug(f"Successfully verified token for user: {claims.sub}")
        return claims

    def issue_token(
        self,
        user_id: str,
        role: str,
        email: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Sign a token for ``user_id`` with the configured expiry."""
        now = int(time.time())
        payload: Dict[str, Any] = {
            "sub": user_id,
            "role": role,
            "email": email,
            "iat": now,
            "exp": now + self.expiry_hours * 3600,
            "iss": ISSUER,
        }
        if extra:
            payload.update(extra)
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)


# Global JWT verifier instance
jwt_verifier = JWTVerifier(
    secret=settings.auth.jwt_secret,
    algorithm=settings.auth.jwt_algorithm,
    expiry_hours=settings.auth.jwt_expiry_hours,
)

__all__ = ["JWTClaims", "JWTVerifier", "jwt_verifier"]
