# src/kanban_sync/tasks/snapshot_store.py

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import time
from pathlib import Path

from .task_codec import record_to_task, task_to_record
from .task_models import Task, epoch_ms

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    SQLite store for the last authoritative snapshot of each query.

    Only read when the remote store reports a subscription error and the
    in-memory cache has nothing for that query. It is never merged with
    live data.

    The schema is intentionally simple and migration-safe:
    - create table if missing
    - use PRAGMA table_info to detect missing columns
    - add columns with ALTER TABLE only when needed

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "snapshots.sqlite3") -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()
        logger.info("SnapshotStore ready db=%s", self._db_path)

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS snapshots (
                    query_key TEXT PRIMARY KEY,
                    saved_at REAL NOT NULL,
                    task_count INTEGER NOT NULL DEFAULT 0,
                    payload TEXT NOT NULL DEFAULT '[]'
                )
                """
            )

            cur.execute("PRAGMA table_info(snapshots)")
            cols = {row["name"] for row in cur.fetchall()}

            def add_col(name: str, decl: str) -> None:
                if name in cols:
                    return
                cur.execute(f"ALTER TABLE snapshots ADD COLUMN {name} {decl}")
                logger.info("SnapshotStore migration: added column %s", name)

            add_col("task_count", "INTEGER NOT NULL DEFAULT 0")

            conn.commit()
        finally:
            conn.close()

    # ---- public API ----

    def save(self, query_key: str, tasks: list[Task]) -> None:
        payload = json.dumps([task_to_record(t) for t in tasks], ensure_ascii=False)
        conn = self._get_conn()
        try:
            conn.execute(
                """
                INSERT INTO snapshots(query_key, saved_at, task_count, payload)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(query_key) DO UPDATE SET
                    saved_at = excluded.saved_at,
                    task_count = excluded.task_count,
                    payload = excluded.payload
                """,
                (query_key, time.time(), len(tasks), payload),
            )
            conn.commit()
            logger.debug("Snapshot saved key=%s tasks=%d", query_key, len(tasks))
        finally:
            conn.close()

    def load(self, query_key: str) -> list[Task] | None:
        """Last saved snapshot for query_key, or None if nothing usable is stored."""
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute("SELECT payload FROM snapshots WHERE query_key = ?", (query_key,))
            row = cur.fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        try:
            records = json.loads(row["payload"] or "[]")
        except ValueError:
            logger.warning("Corrupt snapshot payload for key=%s; ignoring", query_key)
            return None
        if not isinstance(records, list):
            return None

        now = epoch_ms()
        return [record_to_task(r, now_ms=now) for r in records if isinstance(r, dict)]

    def clear(self, query_key: str | None = None) -> None:
        conn = self._get_conn()
        try:
            if query_key is None:
                conn.execute("DELETE FROM snapshots")
            else:
                conn.execute("DELETE FROM snapshots WHERE query_key = ?", (query_key,))
            conn.commit()
        finally:
            conn.close()
