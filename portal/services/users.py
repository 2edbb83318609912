"""Access to the authoritative user records."""

from __future__ import annotations

import logging
import uuid
from typing import Optional

from portal.clients.sqlite_store import SQLiteStore
from portal.models.identity import UserRecord, UserRole

logger = logging.getLogger(__name__)


class UserService:
    """Thin typed wrapper over the ``users`` table."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    def get(self, user_id: str) -> Optional[UserRecord]:
        row = self._store.get_user(user_id)
        return UserRecord(**row) if row else None

    def get_by_email(self, email: str) -> Optional[UserRecord]:
        row = self._store.get_user_by_email(email)
        return UserRecord(**row) if row else None

    def upsert_signed_in_user(
        self,
        *,
        email: str,
        name: Optional[str],
        aad_object_id: Optional[str],
    ) -> UserRecord:
        """
        Find the user for a completed sign-in, creating it when absent.

        Existing roles are never touched here; new users start as USER.
        """
        existing = self.get_by_email(email)
        if existing:
            record = existing.model_copy(
                update={
                    "name": name or existing.name,
                    "aad_object_id": aad_object_id or existing.aad_object_id,
                }
            )
        else:
            record = UserRecord(
                id=uuid.uuid4().hex,
                email=email,
                name=name,
                role=UserRole.USER,
                aad_object_id=aad_object_id,
            )
            logger.info("Creating user record for %s", email)
        self._store.put_user(
            {**record.model_dump(), "role": record.role.value}
        )
        return record

    def set_role(self, user_id: str, role: UserRole) -> bool:
        return self._store.set_user_role(user_id, role.value)


__all__ = ["UserService"]
