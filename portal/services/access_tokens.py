"""
Resolution of valid Microsoft access tokens for signed-in users.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from typing import Any, Callable, Dict, Optional, Protocol

from portal.core.errors import NoCredentialError, RefreshFailedError
from portal.models.credential import Credential, TokenSet, now_ms
from portal.services.credential_store import CredentialStore

logger = logging.getLogger(__name__)


class TokenRefresher(Protocol):
    async def refresh_access_token(self, refresh_token: str) -> TokenSet: ...


class AccessTokenResolver:
    """
    Single entry point for obtaining a bearer token for Graph calls.

    The cached token is returned while it is valid for longer than the buffer
    window; otherwise the refresh grant runs and the new triple is persisted
    in one update. Within a process, concurrent resolutions for the same user
    share one refresh: the second caller waits on a per-user lock and then
    finds the freshly stored token. Across processes the last writer wins.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        refresher: TokenRefresher,
        *,
        buffer_seconds: int = 300,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._credentials = credential_store
        self._refresher = refresher
        self._buffer_ms = buffer_seconds * 1000
        self._clock = clock
        # An entry lives only while some resolution holds or awaits the lock.
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    async def resolve(self, user_id: str, *, rejected_token: Optional[str] = None) -> str:
        """
        Return a currently valid access token for ``user_id``.

        ``rejected_token`` is the token Graph just answered 401 for; when the
        store still holds it, a refresh is forced regardless of expiry.

        Raises:
            NoCredentialError: the user never linked a Microsoft account.
            RefreshFailedError: the refresh grant failed; nothing was written.
        """
        credential = self._load(user_id)
        if not self._needs_refresh(credential, rejected_token):
            return credential.access_token

        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            # Another request may have refreshed while we waited.
            credential = self._load(user_id)
            if not self._needs_refresh(credential, rejected_token):
                logger.debug("Reusing token refreshed concurrently for user %s", user_id)
                return credential.access_token
            refreshed = await self._refresh(credential)
        return refreshed.access_token

    def token_status(self, user_id: str) -> Dict[str, Any]:
        """Describe the stored credential without exposing the tokens."""
        credential = self._load(user_id)
        now = self._clock()
        seconds_left = credential.seconds_until_expiry(now)
        return {
            "has_access_token": bool(credential.access_token),
            "has_refresh_token": bool(credential.refresh_token),
            "expires_at": credential.expires_at,
            "seconds_until_expiry": seconds_left,
            "is_expired": seconds_left <= 0,
            "needs_refresh": credential.expires_at - now <= self._buffer_ms,
        }

    def _load(self, user_id: str) -> Credential:
        credential = self._credentials.load(user_id)
        if credential is None:
            raise NoCredentialError(user_id)
        return credential

    def _needs_refresh(self, credential: Credential, rejected_token: Optional[str]) -> bool:
        if rejected_token is not None and credential.access_token == rejected_token:
            return True
        return credential.expires_at - self._clock() <= self._buffer_ms

    async def _refresh(self, credential: Credential) -> Credential:
        if not credential.refresh_token:
            raise RefreshFailedError(
                f"No refresh token stored for user {credential.user_id}."
            )
        try:
            tokens = await self._refresher.refresh_access_token(credential.refresh_token)
        except RefreshFailedError as exc:
            logger.error(
                "Token refresh failed for user %s (status=%s, error=%s)",
                credential.user_id,
                exc.status_code,
                exc.provider_error,
            )
            raise

        updated = self._credentials.update_tokens(
            credential,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token or credential.refresh_token,
            expires_at=tokens.expires_at,
        )
        logger.info(
            "Refreshed access token for user %s (expires_at=%s, rotated=%s)",
            credential.user_id,
            updated.expires_at,
            tokens.refresh_token is not None,
        )
        return updated


__all__ = ["AccessTokenResolver", "TokenRefresher"]
