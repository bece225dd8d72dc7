"""Snapshot stores for exported engine state."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from strata.core.errors import SnapshotIOError
from strata.core.logging import get_logger
from strata.core.typing import JSONDict

logger = get_logger("memory.snapshot")

SCHEMA = """
CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    created_at TEXT NOT NULL,
    payload TEXT NOT NULL  -- JSON object
);

CREATE INDEX IF NOT EXISTS idx_snapshots_name
    ON snapshots(name, id DESC);
"""


@runtime_checkable
class SnapshotStore(Protocol):
    """Load and save opaque JSON-compatible state by name."""

    async def load(self, name: str) -> JSONDict | None: ...

    async def save(self, name: str, data: JSONDict) -> None: ...


class InMemorySnapshotStore:
    """Process-local store, keeps a JSON copy so callers cannot alias state."""

    def __init__(self):
        self._snapshots: dict[str, str] = {}
        self.saves = 0

    async def load(self, name: str) -> JSONDict | None:
        payload = self._snapshots.get(name)
        return json.loads(payload) if payload is not None else None

    async def save(self, name: str, data: JSONDict) -> None:
        try:
            self._snapshots[name] = json.dumps(data)
        except (TypeError, ValueError) as e:
            raise SnapshotIOError(f"Snapshot '{name}' is not JSON-serializable: {e}") from e
        self.saves += 1


class SQLiteSnapshotStore:
    """SQLite-backed snapshot store keeping the last few snapshots per name."""

    def __init__(self, db_path: Path, backups: int = 5):
        self.db_path = db_path
        self.backups = backups
        self._conn: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open the database and create the schema."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self.db_path)
            await self._conn.executescript(SCHEMA)
            await self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            await self.close()
            raise SnapshotIOError(f"Cannot open snapshot store {self.db_path}: {e}") from e
        logger.info(f"Connected to snapshot store: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise SnapshotIOError("Snapshot store not connected. Call connect() first.")
        return self._conn

    async def load(self, name: str) -> JSONDict | None:
        """Newest readable snapshot for name.

        A corrupt row is skipped in favour of the next older backup.
        """
        try:
            async with self.conn.execute(
                "SELECT id, payload FROM snapshots WHERE name = ? ORDER BY id DESC",
                (name,),
            ) as cursor:
                rows = await cursor.fetchall()
        except sqlite3.Error as e:
            raise SnapshotIOError(f"Failed to load snapshot '{name}': {e}") from e

        for row_id, payload in rows:
            try:
                return json.loads(payload)
            except json.JSONDecodeError:
                logger.warning(f"Snapshot '{name}' row {row_id} is corrupt, trying older backup")
        return None

    async def save(self, name: str, data: JSONDict) -> None:
        """Insert a new snapshot and drop backups beyond the limit."""
        try:
            payload = json.dumps(data)
        except (TypeError, ValueError) as e:
            raise SnapshotIOError(f"Snapshot '{name}' is not JSON-serializable: {e}") from e

        try:
            await self.conn.execute(
                "INSERT INTO snapshots (name, created_at, payload) VALUES (?, ?, ?)",
                (name, datetime.now().isoformat(), payload),
            )
            await self.conn.execute(
                """DELETE FROM snapshots
                   WHERE name = ? AND id NOT IN (
                       SELECT id FROM snapshots WHERE name = ? ORDER BY id DESC LIMIT ?
                   )""",
                (name, name, self.backups),
            )
            await self.conn.commit()
        except sqlite3.Error as e:
            raise SnapshotIOError(f"Failed to save snapshot '{name}': {e}") from e
        logger.debug(f"Saved snapshot '{name}' ({len(payload)} bytes)")

    async def count(self, name: str) -> int:
        """Number of stored snapshots for name."""
        async with self.conn.execute(
            "SELECT COUNT(*) FROM snapshots WHERE name = ?", (name,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else 0
