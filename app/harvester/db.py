"""SQLite helpers for the catalog harvester.

This module owns the connection helper and schema initialisation for the
per-collection catalog database. Query helpers live on ``CatalogStore``.
"""
from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Iterable

from . import config


def get_connection(db_path: Path, *, timeout: float | None = None) -> sqlite3.Connection:
    """Return a SQLite connection to the catalog database at ``db_path``.

    The parent directory is created if missing and ``check_same_thread`` is
    disabled so one connection can be shared by worker threads. Callers must
    serialise access themselves.
    """

    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(
        db_path,
        timeout=config.STORE_TIMEOUT_S if timeout is None else timeout,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def get_read_only_connection(db_path: Path, *, timeout: float | None = None) -> sqlite3.Connection:
    """Open an existing catalog database without write access."""

    uri = Path(db_path).resolve().as_uri() + "?mode=ro"
    conn = sqlite3.connect(
        uri,
        uri=True,
        timeout=config.STORE_TIMEOUT_S if timeout is None else timeout,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    """Create the ``records`` table if it does not yet exist.

    Safe to call multiple times; each statement uses ``IF NOT EXISTS``.
    """

    statements: Iterable[str] = (
        """
        CREATE TABLE IF NOT EXISTS records (
            id              INTEGER PRIMARY KEY,
            name            TEXT NOT NULL DEFAULT '',
            author          TEXT NOT NULL DEFAULT '',
            size            TEXT NOT NULL DEFAULT '',
            category        TEXT NOT NULL DEFAULT '',
            upload_date     TEXT NOT NULL DEFAULT '',
            rating          TEXT NOT NULL DEFAULT '',
            download_count  INTEGER NOT NULL DEFAULT 0,
            artifact_url    TEXT NOT NULL DEFAULT '',
            retrieved       INTEGER NOT NULL DEFAULT 0,
            indexed_at      TEXT NOT NULL,
            retrieved_at    TEXT
        );
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_records_retrieved
            ON records(retrieved);
        """,
    )

    with conn:
        for statement in statements:
            conn.execute(statement)


__all__ = ["get_connection", "get_read_only_connection", "initialize_schema"]
