"""SQLite-backed record storage for users and their Microsoft credentials."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional


class SQLiteStore:
    """Row store for the two entities the token lifecycle needs."""

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT NOT NULL UNIQUE,
                    name TEXT,
                    role TEXT NOT NULL DEFAULT 'USER',
                    aad_object_id TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS credentials (
                    user_id TEXT NOT NULL
                        REFERENCES users(id) ON DELETE CASCADE,
                    provider_id TEXT NOT NULL,
                    access_token_encrypted TEXT NOT NULL,
                    refresh_token_encrypted TEXT,
                    expires_at INTEGER NOT NULL,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    PRIMARY KEY (user_id, provider_id)
                )
                """
            )

    # users

    def put_user(self, user: Dict[str, Any]) -> None:
        if not user.get("id") or not user.get("email"):
            raise ValueError("User must include 'id' and 'email' keys")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, email, name, role, aad_object_id)
                VALUES (:id, :email, :name, :role, :aad_object_id)
                ON CONFLICT(id) DO UPDATE SET
                    email = excluded.email,
                    name = excluded.name,
                    role = excluded.role,
                    aad_object_id = excluded.aad_object_id
                """,
                {
                    "id": user["id"],
                    "email": user["email"],
                    "name": user.get("name"),
                    "role": user.get("role") or "USER",
                    "aad_object_id": user.get("aad_object_id"),
                },
            )

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return dict(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE lower(email) = lower(?)", (email,)
            ).fetchone()
        return dict(row) if row else None

    def set_user_role(self, user_id: str, role: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET role = ? WHERE id = ?", (role, user_id)
            )
        return cursor.rowcount > 0

    def delete_user(self, user_id: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))

    # credentials

    def put_credential(self, item: Dict[str, Any]) -> None:
        if not item.get("user_id") or not item.get("provider_id"):
            raise ValueError("Credential must include 'user_id' and 'provider_id' keys")
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO credentials (
                    user_id, provider_id, access_token_encrypted,
                    refresh_token_encrypted, expires_at, created_at, updated_at
                )
                VALUES (
                    :user_id, :provider_id, :access_token_encrypted,
                    :refresh_token_encrypted, :expires_at, :created_at, :updated_at
                )
                ON CONFLICT(user_id, provider_id) DO UPDATE SET
                    access_token_encrypted = excluded.access_token_encrypted,
                    refresh_token_encrypted = excluded.refresh_token_encrypted,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                item,
            )

    def get_credential(
        self, *, user_id: str, provider_id: str
    ) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM credentials WHERE user_id = ? AND provider_id = ?",
                (user_id, provider_id),
            ).fetchone()
        return dict(row) if row else None

    def update_credential_tokens(
        self,
        *,
        user_id: str,
        provider_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: Optional[str],
        expires_at: int,
        updated_at: int,
    ) -> bool:
        """Replace the token triple in a single statement."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE credentials
                SET access_token_encrypted = ?,
                    refresh_token_encrypted = ?,
                    expires_at = ?,
                    updated_at = ?
                WHERE user_id = ? AND provider_id = ?
                """,
                (
                    access_token_encrypted,
                    refresh_token_encrypted,
                    expires_at,
                    updated_at,
                    user_id,
                    provider_id,
                ),
            )
        return cursor.rowcount > 0

    def delete_credential(self, *, user_id: str, provider_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM credentials WHERE user_id = ? AND provider_id = ?",
                (user_id, provider_id),
            )
        return cursor.rowcount > 0


__all__ = ["SQLiteStore"]
