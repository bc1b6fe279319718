"""Authentication schemas."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

ROLE_SUPER_ADMIN = "super_admin"
ROLE_COURSE_ADMIN = "course_admin"
ROLE_PROOFREADER = "proofreader"


class JWTClaims(BaseModel):
    """Claims carried by a YDMS access token."""

    sub: str = Field(..., description="User ID")
    email: Optional[str] = None
    role: Optional[str] = None
    exp: int
    iat: int
    iss: Optional[str] = None
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    user_metadata: Dict[str, Any] = Field(default_factory=dict)


class CurrentUser(BaseModel):
    """Authenticated caller resolved from a bearer token."""

    id: str
    email: Optional[str] = None
    role: str = ROLE_PROOFREADER
    app_metadata: Dict[str, Any] = Field(default_factory=dict)
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_super_admin(self) -> bool:
        return self.role == ROLE_SUPER_ADMIN
