"""Schemas related to sign-in and session state."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from portal.models.identity import UserRole


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., description="Authorization code returned by Microsoft.")
    state: str = Field(..., description="Opaque state token issued when starting OAuth.")


class SessionResponse(BaseModel):
    """Current identity as exposed to the front-end."""

    authenticated: bool
    user_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    role: Optional[UserRole] = None
    error: Optional[str] = Field(
        None,
        description="RefreshAccessTokenError when Microsoft access must be re-established.",
    )


class TokenStatusResponse(BaseModel):
    has_access_token: bool
    has_refresh_token: bool
    expires_at: int
    seconds_until_expiry: int
    is_expired: bool
    needs_refresh: bool


__all__ = ["OAuthCallbackPayload", "SessionResponse", "TokenStatusResponse"]
