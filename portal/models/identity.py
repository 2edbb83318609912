"""
Identity models shared by the session bridge and the user store.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

REFRESH_ACCESS_TOKEN_ERROR = "RefreshAccessTokenError"


class UserRole(str, Enum):
    """Closed set of portal roles, lowest privilege first."""

    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"


class UserRecord(BaseModel):
    """Authoritative user row."""

    id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    aad_object_id: Optional[str] = None


class SessionIdentity(BaseModel):
    """Claims carried by the session cookie. Never holds Microsoft tokens."""

    user_id: str
    email: str
    name: Optional[str] = None
    role: UserRole = UserRole.USER
    error: Optional[str] = Field(
        None,
        description="Set to RefreshAccessTokenError when Graph access is lost.",
    )

    @property
    def is_degraded(self) -> bool:
        return self.error is not None


__all__ = [
    "REFRESH_ACCESS_TOKEN_ERROR",
    "SessionIdentity",
    "UserRecord",
    "UserRole",
]
