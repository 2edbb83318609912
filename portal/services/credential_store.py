"""
Encrypted persistence of Microsoft credentials.

Every write of ``expires_at`` passes through this module, which is where the
millisecond unit is enforced.
"""

from __future__ import annotations

import logging
from typing import Optional

from portal.clients.sqlite_store import SQLiteStore
from portal.models.credential import (
    EPOCH_MS_THRESHOLD,
    Credential,
    TokenSet,
    normalize_epoch_ms,
    now_ms,
)
from portal.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class CredentialStore:
    """Loads and saves decrypted ``Credential`` objects for one provider."""

    def __init__(
        self,
        store: SQLiteStore,
        token_cipher: TokenCipherService,
        *,
        provider_id: str,
    ) -> None:
        self._store = store
        self._cipher = token_cipher
        self._provider_id = provider_id

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def load(self, user_id: str) -> Optional[Credential]:
        record = self._store.get_credential(
            user_id=user_id, provider_id=self._provider_id
        )
        if not record:
            return None

        expires_at = int(record["expires_at"])
        if 0 < expires_at < EPOCH_MS_THRESHOLD:
            # Rows written by older builds stored seconds.
            expires_at = normalize_epoch_ms(expires_at)
            record["expires_at"] = expires_at
            record["updated_at"] = now_ms()
            self._store.update_credential_tokens(
                user_id=user_id,
                provider_id=self._provider_id,
                access_token_encrypted=record["access_token_encrypted"],
                refresh_token_encrypted=record["refresh_token_encrypted"],
                expires_at=expires_at,
                updated_at=record["updated_at"],
            )
            logger.info("Migrated second-based token expiry for user %s", user_id)

        refresh_encrypted = record.get("refresh_token_encrypted")
        return Credential(
            user_id=user_id,
            provider_id=self._provider_id,
            access_token=self._cipher.decrypt(record["access_token_encrypted"]),
            refresh_token=(
                self._cipher.decrypt(refresh_encrypted) if refresh_encrypted else None
            ),
            expires_at=expires_at,
            created_at=int(record["created_at"]),
            updated_at=int(record["updated_at"]),
        )

    def save(self, user_id: str, tokens: TokenSet) -> Credential:
        """Create or replace the credential, e.g. after sign-in."""
        timestamp = now_ms()
        credential = Credential(
            user_id=user_id,
            provider_id=self._provider_id,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at,
            created_at=timestamp,
            updated_at=timestamp,
        )
        self._store.put_credential(
            {
                "user_id": user_id,
                "provider_id": self._provider_id,
                "access_token_encrypted": self._cipher.encrypt(credential.access_token),
                "refresh_token_encrypted": self._encrypt_optional(
                    credential.refresh_token
                ),
                "expires_at": credential.expires_at,
                "created_at": credential.created_at,
                "updated_at": credential.updated_at,
            }
        )
        return credential

    def update_tokens(
        self,
        credential: Credential,
        *,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: int,
    ) -> Credential:
        """Persist a refreshed token triple as one update."""
        updated = credential.model_copy(
            update={
                "access_token": access_token,
                "refresh_token": refresh_token,
                "expires_at": expires_at,
                "updated_at": now_ms(),
            }
        )
        # model_copy skips validation, so check the unit explicitly.
        Credential.model_validate(updated.model_dump())
        written = self._store.update_credential_tokens(
            user_id=credential.user_id,
            provider_id=self._provider_id,
            access_token_encrypted=self._cipher.encrypt(access_token),
            refresh_token_encrypted=self._encrypt_optional(refresh_token),
            expires_at=expires_at,
            updated_at=updated.updated_at,
        )
        if not written:
            logger.warning(
                "Credential for user %s vanished before refresh could be stored",
                credential.user_id,
            )
        return updated

    def delete(self, user_id: str) -> bool:
        return self._store.delete_credential(
            user_id=user_id, provider_id=self._provider_id
        )

    def _encrypt_optional(self, value: Optional[str]) -> Optional[str]:
        return self._cipher.encrypt(value) if value else None


__all__ = ["CredentialStore"]
