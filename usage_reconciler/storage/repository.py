"""
Repository pattern for data access.

The record store adapter: inserts, the alias dual-write, bulk clear and
the two indexed read paths (by time window, by identifier + time window).
Driver failures never leak out as ``sqlite3`` errors; they surface as
``StoreUnavailable`` so callers can tell the operation did not happen.
"""

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

from usage_reconciler.core.errors import StoreUnavailable
from usage_reconciler.core.identifiers import DEFAULT_POLICY, IdentityPolicy

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageRecord

logger = logging.getLogger(__name__)

_COLUMNS = "id, model_name, image_count, timestamp, user_id"


def _row_to_record(row: Tuple) -> UsageRecord:
    return UsageRecord(
        record_id=row[0],
        model_name=row[1],
        image_count=row[2],
        timestamp=row[3],
        user_id=row[4],
    )


class UsageRepository:
    """Repository for stored usage records.

    Each public method opens its own connection, so every write commits
    independently. The alias dual-write is two commits, not one
    transaction: a failure between them leaves only the canonical row.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH, policy: IdentityPolicy = DEFAULT_POLICY):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            policy: Identifier rules used to derive alias rows
        """
        self.db_path = db_path
        self.policy = policy

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = get_connection(self.db_path)
        except sqlite3.Error as e:
            logger.error("Cannot open record store %s: %s", self.db_path, e)
            raise StoreUnavailable(str(e)) from e
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("Record store error on %s: %s", self.db_path, e)
            raise StoreUnavailable(str(e)) from e
        finally:
            conn.close()

    def initialize_schema(self) -> None:
        """Create the usage_record table and its indexes if missing."""
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_record (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    model_name TEXT NOT NULL CHECK (length(model_name) > 0),
                    image_count INTEGER NOT NULL CHECK (image_count > 0),
                    timestamp INTEGER NOT NULL,
                    user_id TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS by_timestamp ON usage_record (timestamp)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS by_user ON usage_record (user_id, timestamp)"
            )
            conn.commit()

    def insert(self, record: UsageRecord) -> UsageRecord:
        """Insert one record and return it with its assigned id."""
        if record.synthetic:
            raise ValueError("synthetic records are never persisted")
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT INTO usage_record (model_name, image_count, timestamp, user_id)
                VALUES (?, ?, ?, ?)
                """,
                (record.model_name, record.image_count, record.timestamp, record.user_id),
            )
            conn.commit()
            return UsageRecord(
                model_name=record.model_name,
                image_count=record.image_count,
                timestamp=record.timestamp,
                user_id=record.user_id,
                record_id=cursor.lastrowid,
            )

    def write_with_aliases(self, record: UsageRecord) -> Tuple[UsageRecord, Optional[UsageRecord]]:
        """Write the canonical record, then its alias copy when one applies.

        The alias shares model, count and timestamp and differs only in
        ``user_id`` (the opposite prefix-form of the canonical identifier).

        Returns:
            (canonical record, alias record or None)
        """
        canonical = self.insert(record)
        alias_id = self.policy.alias_form(record.user_id)
        if alias_id is None:
            return canonical, None

        logger.debug("Writing alias row %s -> %s", record.user_id, alias_id)
        alias = self.insert(record.with_user(alias_id))
        return canonical, alias

    def delete_all(self) -> int:
        """Remove every stored record. Returns the number deleted."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM usage_record")
            conn.commit()
            deleted = cursor.rowcount
        logger.info("Cleared %d usage records", deleted)
        return deleted

    def fetch_window(self, since_ms: int, limit: Optional[int] = None) -> List[UsageRecord]:
        """Records with ``timestamp > since_ms``, oldest first.

        Args:
            since_ms: Exclusive lower bound in epoch milliseconds
            limit: Optional cap on rows read
        """
        query = f"SELECT {_COLUMNS} FROM usage_record WHERE timestamp > ? ORDER BY timestamp, id"
        params: list = [since_ms]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            return [_row_to_record(row) for row in conn.execute(query, params).fetchall()]

    def fetch_for_identifier(self, user_id: str, since_ms: int) -> List[UsageRecord]:
        """Records stored under exactly ``user_id`` with ``timestamp > since_ms``."""
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT {_COLUMNS} FROM usage_record
                WHERE user_id = ? AND timestamp > ?
                ORDER BY timestamp, id
                """,
                (user_id, since_ms),
            )
            return [_row_to_record(row) for row in cursor.fetchall()]

    def count(self) -> int:
        """Total number of stored records."""
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM usage_record").fetchone()[0]
