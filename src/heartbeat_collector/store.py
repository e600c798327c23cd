"""Durable heartbeat storage.

A heartbeat store is a map from identifier to the last record written
for it. Writes are upserts: the whole record is replaced, never merged.
Reads always see the latest committed write for an identifier.

Two implementations:
- SQLiteHeartbeatStore: the production store, survives restarts
- MemoryHeartbeatStore: dict behind a lock, for tests
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when the underlying store fails to read or write a record."""


@dataclass(frozen=True)
class HeartbeatRecord:
    """The stored state of one heartbeat."""
    id: str
    last_seen: datetime
    expiry: datetime | None = None  # explicit-expiry model only
    label: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    def to_row(self) -> tuple[str, str, str | None, str | None, str]:
        """Serialize for the heartbeats table."""
        return (
            self.id,
            self.last_seen.isoformat(),
            self.expiry.isoformat() if self.expiry else None,
            self.label,
            json.dumps(self.metadata, sort_keys=True),
        )

    @classmethod
    def from_row(cls, row: tuple[Any, ...]) -> "HeartbeatRecord":
        """Rebuild a record from a heartbeats row.

        Raises StorageError if the stored values cannot be decoded.
        """
        try:
            metadata = json.loads(row[4]) if row[4] else {}
            if not isinstance(metadata, dict):
                raise ValueError(f"metadata is not an object: {row[4]!r}")
            return cls(
                id=row[0],
                last_seen=_to_utc(datetime.fromisoformat(row[1])),
                expiry=_to_utc(datetime.fromisoformat(row[2])) if row[2] else None,
                label=row[3],
                metadata={str(k): str(v) for k, v in metadata.items()},
            )
        except (TypeError, ValueError) as e:
            raise StorageError(f"Corrupt heartbeat row for {row[0]!r}: {e}") from e


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class HeartbeatStore(ABC):
    """Contract every heartbeat store satisfies.

    Implementations serialize concurrent writes to the same identifier
    and give read-committed isolation: a get() that starts after a put()
    returns must observe that put().
    """

    @abstractmethod
    def put(self, record: HeartbeatRecord) -> None:
        """Insert or fully replace the record for record.id."""

    @abstractmethod
    def get(self, heartbeat_id: str) -> HeartbeatRecord | None:
        """Return the record, or None if the identifier was never stored."""

    @abstractmethod
    def delete(self, heartbeat_id: str) -> bool:
        """Remove a record. Returns True if one existed."""

    @abstractmethod
    def all(self) -> list[HeartbeatRecord]:
        """All stored records, ordered by identifier."""

    def close(self) -> None:
        """Release any resources held by the store."""


class SQLiteHeartbeatStore(HeartbeatStore):
    """Heartbeat store backed by a single SQLite table.

    Every call opens its own connection, so one instance can be shared
    by any number of request threads. SQLite's write lock serializes
    writers; INSERT OR REPLACE makes each upsert atomic.
    """

    def __init__(self, db_path: Path | str, timeout: float = 5.0):
        self.db_path = Path(db_path).expanduser()
        self.timeout = timeout
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=self.timeout)

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open database {self.db_path}: {e}") from e
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS heartbeats (
                    id TEXT PRIMARY KEY,
                    last_seen TEXT NOT NULL,
                    expiry TEXT,
                    label TEXT,
                    metadata TEXT NOT NULL DEFAULT '{}'
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to create heartbeats table: {e}") from e
        finally:
            conn.close()
        logger.info(f"Heartbeat database opened at {self.db_path}")

    def put(self, record: HeartbeatRecord) -> None:
        try:
            conn = self._connect()
            try:
                with conn:
                    conn.execute(
                        """INSERT OR REPLACE INTO heartbeats
                           (id, last_seen, expiry, label, metadata)
                           VALUES (?, ?, ?, ?, ?)""",
                        record.to_row(),
                    )
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to store heartbeat {record.id!r}: {e}") from e

    def get(self, heartbeat_id: str) -> HeartbeatRecord | None:
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    """SELECT id, last_seen, expiry, label, metadata
                       FROM heartbeats WHERE id = ?""",
                    (heartbeat_id,),
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to query heartbeat {heartbeat_id!r}: {e}") from e

        if row is None:
            return None
        return HeartbeatRecord.from_row(row)

    def delete(self, heartbeat_id: str) -> bool:
        try:
            conn = self._connect()
            try:
                with conn:
                    cursor = conn.execute(
                        "DELETE FROM heartbeats WHERE id = ?", (heartbeat_id,))
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete heartbeat {heartbeat_id!r}: {e}") from e
        return cursor.rowcount > 0

    def all(self) -> list[HeartbeatRecord]:
        try:
            conn = self._connect()
            try:
                rows = conn.execute(
                    """SELECT id, last_seen, expiry, label, metadata
                       FROM heartbeats ORDER BY id"""
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list heartbeats: {e}") from e
        return [HeartbeatRecord.from_row(row) for row in rows]


class MemoryHeartbeatStore(HeartbeatStore):
    """Non-durable store for tests."""

    def __init__(self):
        self._records: dict[str, HeartbeatRecord] = {}
        self._lock = threading.Lock()

    def put(self, record: HeartbeatRecord) -> None:
        with self._lock:
            self._records[record.id] = record

    def get(self, heartbeat_id: str) -> HeartbeatRecord | None:
        with self._lock:
            return self._records.get(heartbeat_id)

    def delete(self, heartbeat_id: str) -> bool:
        with self._lock:
            return self._records.pop(heartbeat_id, None) is not None

    def all(self) -> list[HeartbeatRecord]:
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]
