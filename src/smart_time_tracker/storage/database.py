"""Client SQLite database with WAL mode and schema bootstrap."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite

logger = logging.getLogger(__name__)

# Schema version for migrations
SCHEMA_VERSION = 1

SCHEMA = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Committed log records awaiting upload, in append order
CREATE TABLE IF NOT EXISTS log_queue (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    domain TEXT NOT NULL,
    start_time TEXT NOT NULL,
    duration REAL NOT NULL,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- Small key/value store: active session slot, credentials
CREATE TABLE IF NOT EXISTS client_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


class Database:
    """SQLite database manager with WAL mode.

    Statements are serialized with an asyncio lock. A transaction holds the
    lock for its whole body; statements issued by the task that owns the
    transaction run inside it without re-acquiring the lock.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        self._connection: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._tx_owner: asyncio.Task | None = None

    async def connect(self) -> None:
        """Initialize database connection with WAL mode."""
        if self._connection is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(
            self.db_path,
            isolation_level=None,  # Autocommit mode, we handle transactions manually
        )

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA busy_timeout=5000")

        self._connection.row_factory = aiosqlite.Row

        await self._init_schema()

        logger.info(f"Database connected: {self.db_path}")

    async def _init_schema(self) -> None:
        """Initialize database schema."""
        conn = self._require_connection()

        await conn.executescript(SCHEMA)

        async with conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0

        if current_version < SCHEMA_VERSION:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            logger.info(f"Schema updated to version {SCHEMA_VERSION}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    def _require_connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError("Database not connected")
        return self._connection

    def _in_own_transaction(self) -> bool:
        return self._tx_owner is not None and self._tx_owner is asyncio.current_task()

    @asynccontextmanager
    async def _statement_lock(self) -> AsyncIterator[None]:
        if self._in_own_transaction():
            yield
            return
        async with self._lock:
            yield

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Context manager for database transactions."""
        conn = self._require_connection()

        async with self._lock:
            self._tx_owner = asyncio.current_task()
            await conn.execute("BEGIN")
            try:
                yield
                await conn.execute("COMMIT")
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            finally:
                self._tx_owner = None

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        """Execute a query and return last row ID."""
        conn = self._require_connection()

        async with self._statement_lock():
            cursor = await conn.execute(query, params)
            return cursor.lastrowid or 0

    async def fetch_one(self, query: str, params: tuple[Any, ...] = ()) -> dict[str, Any] | None:
        """Fetch a single row."""
        conn = self._require_connection()

        async with self._statement_lock():
            async with conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
                if row:
                    return dict(row)
                return None

    async def fetch_all(self, query: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        """Fetch all rows."""
        conn = self._require_connection()

        async with self._statement_lock():
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [dict(row) for row in rows]

    async def insert(self, table: str, data: dict[str, Any]) -> int:
        """Insert a row into a table."""
        columns = ", ".join(data.keys())
        placeholders = ", ".join("?" * len(data))
        query = f"INSERT INTO {table} ({columns}) VALUES ({placeholders})"
        return await self.execute(query, tuple(data.values()))

    async def check_integrity(self) -> bool:
        """Check database integrity."""
        row = await self.fetch_one("PRAGMA integrity_check")
        is_ok = row is not None and next(iter(row.values())) == "ok"

        if not is_ok:
            logger.error("Database integrity check failed!")
        return is_ok

    async def get_size_mb(self) -> float:
        """Get database file size in MB."""
        if isinstance(self.db_path, Path) and self.db_path.exists():
            return self.db_path.stat().st_size / (1024 * 1024)
        return 0.0


async def init_database(db_path: Path | str) -> Database:
    """Create and connect a database."""
    db = Database(db_path)
    await db.connect()
    return db
