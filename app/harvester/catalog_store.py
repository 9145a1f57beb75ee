"""Durable keyed storage for catalog records.

``CatalogStore`` owns a single SQLite connection for the lifetime of the
process. Every operation takes the store lock, so worker threads may call it
concurrently; writes are scoped in a transaction that is committed or rolled
back on every exit path.
"""
from __future__ import annotations

import sqlite3
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterator, Optional

from . import db
from .error_codes import ErrorCode
from .logging_utils import _harvest_event
from .records import SENTINEL_ID, Record, sentinel_record
from .utils import log_line


class StoreInitError(Exception):
    """Raised when the catalog database cannot be created or seeded."""


class StoreWriteError(Exception):
    """Raised when an insert or update against the catalog fails."""

    def __init__(self, message: str, *, record_id: int) -> None:
        super().__init__(message)
        self.record_id = record_id
        self.error_code = ErrorCode.STORE_WRITE


@dataclass
class CatalogSummary:
    total_rows: int
    indexed: int
    retrieved: int
    pending_download: int


def _utc_now() -> str:
    """Return a UTC timestamp formatted as ISO8601 without fractional seconds."""

    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class CatalogStore:
    def __init__(self, db_path: Path, *, timeout: float | None = None) -> None:
        self.db_path = Path(db_path)
        self._timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def __enter__(self) -> "CatalogStore":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        self.close()

    @property
    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreInitError(f"catalog store {self.db_path} is not initialised")
        return self._conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connection
        with self._lock:
            with conn:
                yield conn

    def initialize(self) -> None:
        """Open the database, create the schema and seed the sentinel record."""

        if self._conn is not None:
            return

        try:
            self._conn = db.get_connection(self.db_path, timeout=self._timeout)
            db.initialize_schema(self._conn)
            sentinel = sentinel_record()
            with self._transaction() as conn:
                cursor = conn.execute(
                    "SELECT 1 FROM records WHERE id = ? LIMIT 1", (SENTINEL_ID,)
                )
                if cursor.fetchone() is None:
                    self._insert(conn, sentinel)
        except (sqlite3.Error, OSError) as exc:
            self.close()
            _harvest_event("error", phase="store_init", db_path=str(self.db_path), error=str(exc))
            raise StoreInitError(f"cannot initialise catalog store {self.db_path}: {exc}") from exc

        if not self.exists(SENTINEL_ID):
            self.close()
            raise StoreInitError(f"sentinel record missing from {self.db_path} after seeding")

        log_line(f"[DB] Catalog store ready at {self.db_path}")

    def open_read_only(self) -> None:
        """Open an existing catalog for queries; nothing is created or seeded."""

        if self._conn is not None:
            return

        try:
            self._conn = db.get_read_only_connection(self.db_path, timeout=self._timeout)
            self._conn.execute("SELECT 1 FROM records LIMIT 1").fetchall()
        except sqlite3.Error as exc:
            self.close()
            raise StoreInitError(f"cannot open catalog store {self.db_path}: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    @staticmethod
    def _insert(conn: sqlite3.Connection, record: Record) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO records (
                id, name, author, size, category, upload_date, rating,
                download_count, artifact_url, retrieved, indexed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.id,
                record.name,
                record.author,
                record.size,
                record.category,
                record.upload_date,
                record.rating,
                int(record.download_count),
                record.artifact_url,
                1 if record.retrieved else 0,
                _utc_now(),
            ),
        )
        return cursor.rowcount > 0

    def exists(self, record_id: int) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                "SELECT 1 FROM records WHERE id = ? LIMIT 1", (record_id,)
            )
            return cursor.fetchone() is not None

    def is_downloaded(self, record_id: int) -> bool:
        """Return True when there is nothing left to download for ``record_id``.

        IDs with no record count as satisfied so the download phase skips
        entries that were never indexed.
        """

        with self._lock:
            cursor = self._connection.execute(
                "SELECT retrieved FROM records WHERE id = ? LIMIT 1", (record_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return True
        return bool(row["retrieved"])

    def upsert_indexed(self, record: Record) -> bool:
        """Insert ``record``; return False when a row with its id already exists.

        An existing row is never overwritten and new rows always start out
        not retrieved.
        """

        try:
            with self._transaction() as conn:
                inserted = self._insert(conn, replace(record, retrieved=False))
        except sqlite3.Error as exc:
            raise StoreWriteError(
                f"cannot add record {record.id} to index: {exc}", record_id=record.id
            ) from exc

        if not inserted:
            _harvest_event("state", phase="store", kind="duplicate_insert", id=record.id)
        return inserted

    def mark_retrieved(self, record_id: int) -> bool:
        """Flag ``record_id`` as retrieved.

        Returns False when no such record exists or it has no artifact URL.
        """

        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    """
                    UPDATE records
                    SET retrieved = 1, retrieved_at = ?
                    WHERE id = ? AND artifact_url != ''
                    """,
                    (_utc_now(), record_id),
                )
        except sqlite3.Error as exc:
            raise StoreWriteError(
                f"cannot mark record {record_id} as retrieved: {exc}", record_id=record_id
            ) from exc
        return cursor.rowcount > 0

    def read_by_id(self, record_id: int) -> Record:
        """Return the stored record, or a blank ``Record(id=record_id)``."""

        with self._lock:
            cursor = self._connection.execute(
                "SELECT * FROM records WHERE id = ? LIMIT 1", (record_id,)
            )
            row = cursor.fetchone()
        if row is None:
            return Record(id=record_id)
        return Record.from_row(row)

    def summary(self) -> CatalogSummary:
        with self._lock:
            row = self._connection.execute(
                """
                SELECT
                    COUNT(*) AS total_rows,
                    COALESCE(SUM(CASE WHEN id != ? THEN 1 ELSE 0 END), 0) AS indexed,
                    COALESCE(SUM(CASE WHEN id != ? AND retrieved = 1 THEN 1 ELSE 0 END), 0)
                        AS retrieved
                FROM records
                """,
                (SENTINEL_ID, SENTINEL_ID),
            ).fetchone()
        indexed = int(row["indexed"])
        retrieved = int(row["retrieved"])
        return CatalogSummary(
            total_rows=int(row["total_rows"]),
            indexed=indexed,
            retrieved=retrieved,
            pending_download=indexed - retrieved,
        )


__all__ = [
    "CatalogStore",
    "CatalogSummary",
    "StoreInitError",
    "StoreWriteError",
]
