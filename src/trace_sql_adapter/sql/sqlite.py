"""SQLite executor for embedded use and tests.

Keeps the column contract of the PostgreSQL schema with SQLite storage
classes: identifiers are BLOBs, timestamps are fixed-width ISO text (UTC, so
text order is time order), intervals are integer microseconds, JSON payloads
and the warnings array are JSON text.
"""

import asyncio
import json
import logging
import os
import tempfile
from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import aiosqlite

from trace_sql_adapter.models import StorageSpanKind

logger = logging.getLogger(__name__)

_KINDS = ", ".join(f"'{kind.value}'" for kind in StorageSpanKind)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS services (
        id   INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS operations (
        id         INTEGER PRIMARY KEY AUTOINCREMENT,
        name       TEXT NOT NULL,
        service_id INTEGER NOT NULL REFERENCES services(id),
        kind       TEXT NOT NULL CHECK (kind IN ({_KINDS})),
        UNIQUE (name, service_id, kind)
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS spans (
        span_id      BLOB NOT NULL,
        trace_id     BLOB NOT NULL,
        operation_id INTEGER NOT NULL REFERENCES operations(id),
        flags        INTEGER NOT NULL,
        start_time   TEXT NOT NULL,
        duration     INTEGER NOT NULL,
        tags         TEXT NOT NULL,
        service_id   INTEGER NOT NULL REFERENCES services(id),
        process_id   TEXT NOT NULL,
        process_tags TEXT NOT NULL,
        warnings     TEXT NOT NULL,
        kind         TEXT NOT NULL CHECK (kind IN ({_KINDS})),
        logs         TEXT NOT NULL,
        refs         TEXT NOT NULL,
        UNIQUE (trace_id, span_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_spans_trace_id ON spans(trace_id)",
    "CREATE INDEX IF NOT EXISTS idx_spans_start_time ON spans(start_time)",
)


def adapt(value: Any) -> Any:
    """Convert a bound argument to a SQLite storage class."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.strftime("%Y-%m-%dT%H:%M:%S.%f")
    if isinstance(value, timedelta):
        return value // timedelta(microseconds=1)
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    if isinstance(value, Enum):
        return value.value
    return value


class SqliteExecutor:
    """Runs statements on a single persistent SQLite connection.

    The connection is opened lazily on first use, creates the schema if it
    is missing, and is closed explicitly via :meth:`close`.
    """

    dialect = "sqlite"

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            db_dir = os.path.expanduser("~/.trace-sql-adapter")
            if not os.path.exists(db_dir):
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except (OSError, PermissionError):
                    db_dir = tempfile.gettempdir()
            db_path = os.path.join(db_dir, "spans.db")
        elif db_path != ":memory:":
            db_path = os.path.expanduser(db_path)
            db_dir = os.path.dirname(db_path)
            if db_dir and not os.path.exists(db_dir):
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except (OSError, PermissionError) as exc:
                    logger.warning("Failed to create directory %s: %s", db_dir, exc)

        self.db_path = db_path
        self._busy_timeout_ms = 20_000
        self._conn: aiosqlite.Connection | None = None
        self._init_lock = asyncio.Lock()
        # Serializes write + commit on the shared connection.
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _get_conn(self) -> aiosqlite.Connection:
        """Return the persistent connection, initializing on first call."""
        if self._conn is None:
            async with self._init_lock:
                if self._conn is None:
                    self._conn = await self._open()
        return self._conn

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path, timeout=self._busy_timeout_ms / 1000.0)
        conn.row_factory = aiosqlite.Row
        for pragma in (
            "PRAGMA journal_mode=DELETE",
            "PRAGMA synchronous=NORMAL",
            f"PRAGMA busy_timeout={self._busy_timeout_ms}",
            "PRAGMA temp_store=MEMORY",
        ):
            try:
                await conn.execute(pragma)
            except Exception as exc:  # noqa: BLE001
                logger.warning("SQLite pragma failed (%s): %s", pragma, exc)

        await conn.execute("PRAGMA foreign_keys = ON")
        for statement in _SCHEMA:
            await conn.execute(statement)
        await conn.commit()
        return conn

    async def close(self) -> None:
        """Close the persistent connection."""
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    # ------------------------------------------------------------------
    # Executor protocol
    # ------------------------------------------------------------------

    async def execute(self, query: str, *args: Any) -> int:
        conn = await self._get_conn()
        async with self._write_lock:
            try:
                cursor = await conn.execute(query, [adapt(a) for a in args])
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()
        return cursor.rowcount

    async def fetchrow(self, query: str, *args: Any) -> dict[str, Any] | None:
        conn = await self._get_conn()
        async with conn.execute(query, [adapt(a) for a in args]) as cur:
            row = await cur.fetchone()
        return None if row is None else {key: row[key] for key in row.keys()}

    async def iterate(self, query: str, *args: Any) -> AsyncIterator[dict[str, Any]]:
        conn = await self._get_conn()
        async with conn.execute(query, [adapt(a) for a in args]) as cur:
            async for row in cur:
                yield {key: row[key] for key in row.keys()}
