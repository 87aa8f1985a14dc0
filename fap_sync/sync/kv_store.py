"""Durable string key/value store backed by SQLite."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

__all__ = ["KeyValueStore", "StorageError"]

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Local store read or write failed."""

    pass


class KeyValueStore:
    """SQLite-based key/value store for JSON text values."""

    def __init__(self, db_path: Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._local = threading.local()
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if not hasattr(self._local, "connection"):
            self._local.connection = sqlite3.connect(str(self.db_path))
        return self._local.connection

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database cursor.

        Any sqlite3 failure surfaces as StorageError.
        """
        try:
            conn = self._get_connection()
            cursor = conn.cursor()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open store {self.db_path}: {e}") from e
        try:
            yield cursor
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    def _init_db(self) -> None:
        """Initialize the database schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._cursor() as cursor:
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_items (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )

    def get_item(self, key: str) -> Optional[str]:
        """Get the raw value stored under key, or None."""
        with self._cursor() as cursor:
            cursor.execute("SELECT value FROM kv_items WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO kv_items (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )

    def remove_item(self, key: str) -> None:
        """Delete key. Missing keys are ignored."""
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM kv_items WHERE key = ?", (key,))

    def multi_remove(self, keys: list[str]) -> int:
        """Delete several keys in one transaction.

        Returns:
            Number of keys that existed and were removed
        """
        if not keys:
            return 0

        with self._cursor() as cursor:
            placeholders = ",".join("?" * len(keys))
            cursor.execute(
                f"DELETE FROM kv_items WHERE key IN ({placeholders})",
                keys,
            )
            return cursor.rowcount

    def keys(self) -> list[str]:
        """List all stored keys."""
        with self._cursor() as cursor:
            cursor.execute("SELECT key FROM kv_items ORDER BY key")
            return [row[0] for row in cursor.fetchall()]

    def close(self) -> None:
        """Close the database connection."""
        if hasattr(self._local, "connection"):
            self._local.connection.close()
            del self._local.connection
