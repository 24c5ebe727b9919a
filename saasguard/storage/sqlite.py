"""SQLite-backed record storage."""

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from saasguard.storage.base import Storage, StorageError, utc_now

logger = structlog.get_logger(__name__)


class SQLiteStorage(Storage):
    """Store records as JSON documents in a single SQLite table."""

    def __init__(self, db_path: str = "saasguard.db"):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path)
        self._init_db()

        logger.info("sqlite_storage_initialized", db_path=str(self.db_path))

    def _init_db(self) -> None:
        """Initialize database schema."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    UNIQUE (collection, id)
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_records_collection
                ON records(collection)
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Get database connection context manager."""
        try:
            conn = sqlite3.connect(str(self.db_path))
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.db_path}: {e}")
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageError(f"Database error: {e}")
        finally:
            conn.close()

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? AND id = ?",
                (collection, record_id),
            ).fetchone()

        return json.loads(row["data"]) if row else None

    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT data FROM records WHERE collection = ? ORDER BY seq",
                (collection,),
            ).fetchall()

        records = [json.loads(row["data"]) for row in rows]
        return [record for record in records if self._matches(record, filters)]

    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = self._prepare_new(record)

        with self._get_connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO records (collection, id, data, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (collection, prepared["id"], json.dumps(prepared, default=str), prepared["created_at"]),
                )
            except sqlite3.IntegrityError:
                raise StorageError(f"Record {prepared['id']} already exists in {collection}")
            conn.commit()

        return json.loads(json.dumps(prepared, default=str))

    def update(
        self, collection: str, record_id: str, changes: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? AND id = ?",
                (collection, record_id),
            ).fetchone()
            if row is None:
                return None

            record = json.loads(row["data"])
            record.update(changes)
            record["updated_at"] = utc_now()
            data = json.dumps(record, default=str)

            conn.execute(
                "UPDATE records SET data = ?, updated_at = ? WHERE collection = ? AND id = ?",
                (data, record["updated_at"], collection, record_id),
            )
            conn.commit()

        return json.loads(data)

    def delete(self, collection: str, record_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE collection = ? AND id = ?",
                (collection, record_id),
            )
            conn.commit()
            deleted = cursor.rowcount > 0

        return deleted
