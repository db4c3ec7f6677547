"""SQLite-backed token store with tokens encrypted at rest."""

from __future__ import annotations

import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Optional

from graph_bridge.models.token import TokenRecord
from graph_bridge.services.token_cipher import TokenCipherService


class SQLiteTokenStore:
    """One row per principal in ``oauth_tokens``; writes replace the whole row."""

    def __init__(self, db_path: str, cipher: TokenCipherService) -> None:
        self._db_path = Path(db_path)
        self._cipher = cipher
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS oauth_tokens (
                    principal_id TEXT PRIMARY KEY,
                    access_token_encrypted TEXT NOT NULL,
                    refresh_token_encrypted TEXT,
                    expires_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def put(self, principal_id: str, record: TokenRecord) -> None:
        if not principal_id:
            raise ValueError("principal_id must be non-empty")

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO oauth_tokens (
                    principal_id, access_token_encrypted, refresh_token_encrypted,
                    expires_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(principal_id) DO UPDATE SET
                    access_token_encrypted = excluded.access_token_encrypted,
                    refresh_token_encrypted = excluded.refresh_token_encrypted,
                    expires_at = excluded.expires_at,
                    updated_at = excluded.updated_at
                """,
                (
                    principal_id,
                    self._cipher.encrypt(record.access_token),
                    self._cipher.encrypt_optional(record.refresh_token),
                    record.expires_at.isoformat(),
                    record.updated_at.isoformat(),
                ),
            )

    def get(self, principal_id: str) -> Optional[TokenRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_tokens WHERE principal_id = ?",
                (principal_id,),
            ).fetchone()
        if not row:
            return None
        return TokenRecord(
            access_token=self._cipher.decrypt(row["access_token_encrypted"]),
            refresh_token=self._cipher.decrypt_optional(row["refresh_token_encrypted"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def close(self) -> None:
        # Connections are opened per operation.
        return None


__all__ = ["SQLiteTokenStore"]
