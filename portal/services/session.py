"""
Session cookie handling and the bridge from a cookie to a portal identity.

The cookie is a signed JWT carrying identity, a cached role and the refresh
error flag. Microsoft tokens stay in the credential store.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import jwt
from pydantic import ValidationError

from portal.core.errors import NoCredentialError, RefreshFailedError
from portal.models.identity import (
    REFRESH_ACCESS_TOKEN_ERROR,
    SessionIdentity,
    UserRecord,
    UserRole,
)
from portal.services.users import UserService

logger = logging.getLogger(__name__)

_ALGORITHM = "HS256"


class AccessTokenSource(Protocol):
    async def resolve(self, user_id: str, *, rejected_token: Optional[str] = None) -> str: ...


class SessionCodec:
    """Sign and verify session JWTs."""

    def __init__(
        self,
        *,
        secret: str,
        max_age_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret:
            raise ValueError("Session secret must be provided.")
        self._secret = secret
        self._max_age = max_age_seconds
        self._clock = clock

    @property
    def max_age_seconds(self) -> int:
        return self._max_age

    def encode(self, identity: SessionIdentity, *, issued_at: Optional[int] = None) -> str:
        iat = int(self._clock()) if issued_at is None else issued_at
        claims = {
            "sub": identity.user_id,
            "email": identity.email,
            "name": identity.name,
            "role": identity.role.value,
            "iat": iat,
            "exp": iat + self._max_age,
        }
        if identity.error:
            claims["error"] = identity.error
        return jwt.encode(claims, self._secret, algorithm=_ALGORITHM)

    def decode(self, token: str) -> Optional[tuple[SessionIdentity, int]]:
        """Return the identity and its issue time, or None when unusable."""
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[_ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
                leeway=0,
            )
        except jwt.ExpiredSignatureError:
            logger.info("Session cookie expired")
            return None
        except jwt.InvalidTokenError as exc:
            logger.warning("Rejected session cookie: %s", exc)
            return None

        try:
            identity = SessionIdentity(
                user_id=claims["sub"],
                email=claims.get("email") or "",
                name=claims.get("name"),
                role=claims.get("role") or UserRole.USER,
                error=claims.get("error"),
            )
        except ValidationError as exc:
            logger.warning("Session cookie carried invalid claims: %s", exc)
            return None
        return identity, int(claims["iat"])


@dataclass
class SessionResolution:
    """Outcome of resolving a session cookie."""

    identity: SessionIdentity
    token: str
    changed: bool = False


class SessionBridge:
    """
    Maps an inbound session cookie to a ``SessionIdentity``.

    Each resolution re-reads the user's role and delegates token expiry to the
    access token resolver. When either changes the claims, the cookie is
    re-signed (keeping its original expiry window) and ``changed`` is set so
    the caller can send it back.
    """

    def __init__(
        self,
        codec: SessionCodec,
        users: UserService,
        token_source: AccessTokenSource,
    ) -> None:
        self._codec = codec
        self._users = users
        self._tokens = token_source

    def start_session(self, user: UserRecord) -> SessionResolution:
        """Issue the first cookie after sign-in, seeding the cached role."""
        stored = self._users.get(user.id)
        role = stored.role if stored else UserRole.USER
        identity = SessionIdentity(
            user_id=user.id,
            email=user.email,
            name=user.name,
            role=role,
        )
        return SessionResolution(
            identity=identity, token=self._codec.encode(identity), changed=True
        )

    async def current_identity(self, token: Optional[str]) -> Optional[SessionResolution]:
        if not token:
            return None
        decoded = self._codec.decode(token)
        if decoded is None:
            return None
        identity, issued_at = decoded

        updates: dict = {}
        stored = self._users.get(identity.user_id)
        if stored is not None and stored.role != identity.role:
            logger.info(
                "Session role for user %s healed from %s to %s",
                identity.user_id,
                identity.role.value,
                stored.role.value,
            )
            updates["role"] = stored.role

        try:
            await self._tokens.resolve(identity.user_id)
        except (RefreshFailedError, NoCredentialError) as exc:
            if identity.error != REFRESH_ACCESS_TOKEN_ERROR:
                logger.warning(
                    "Marking session for user %s as degraded: %s", identity.user_id, exc
                )
                updates["error"] = REFRESH_ACCESS_TOKEN_ERROR
        else:
            if identity.error is not None:
                updates["error"] = None

        if not updates:
            return SessionResolution(identity=identity, token=token)

        healed = identity.model_copy(update=updates)
        return SessionResolution(
            identity=healed,
            token=self._codec.encode(healed, issued_at=issued_at),
            changed=True,
        )


__all__ = ["SessionBridge", "SessionCodec", "SessionResolution"]
