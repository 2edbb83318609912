"""
Failure categories shared by the token services and the Graph gateway.
"""

from __future__ import annotations

from typing import Any, Optional


class PortalError(Exception):
    """Base class for token lifecycle and gateway failures."""


class NoCredentialError(PortalError):
    """Raised when a user has no linked Microsoft credential."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"No Microsoft credential stored for user {user_id}.")
        self.user_id = user_id


class RefreshFailedError(PortalError):
    """Raised when the identity platform refuses or fails a refresh grant."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        payload: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload

    @property
    def provider_error(self) -> Optional[str]:
        if isinstance(self.payload, dict):
            return self.payload.get("error")
        return None


class GraphRequestError(PortalError):
    """Base class for errors returned by Microsoft Graph."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class AuthExpiredError(GraphRequestError):
    """Graph rejected the bearer token (HTTP 401)."""


class ForbiddenError(GraphRequestError):
    """The user is authenticated but may not access the resource (HTTP 403)."""


class NotFoundError(GraphRequestError):
    """The requested Graph resource does not exist (HTTP 404)."""


class GatewayError(GraphRequestError):
    """Any other non-2xx, malformed, or failed Graph exchange."""


REAUTHENTICATION_ERRORS = (NoCredentialError, RefreshFailedError, AuthExpiredError)


__all__ = [
    "AuthExpiredError",
    "ForbiddenError",
    "GatewayError",
    "GraphRequestError",
    "NoCredentialError",
    "NotFoundError",
    "PortalError",
    "REAUTHENTICATION_ERRORS",
    "RefreshFailedError",
]
