"""
Metadata index for snapshots.

Records per URI the ordered history of (timestamp, content hash) pairs in
SQLite. Rows are append-only; nothing is ever updated or deleted.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite

from snapstore.exceptions import IndexFailureError
from snapstore.logging import get_logger
from snapstore.types import HASH_LENGTH, now

logger = get_logger(__name__)


class SnapIndex:
    """SQLite index mapping URIs to their snapshot history.

    Two tables: uri (id, unique value) and snap (uri_id, timestamp,
    content_hash) with an index on (uri_id, timestamp DESC), so latest and
    point-in-time lookups are index seeks instead of scans.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the index.

        Args:
            db_path: Path of the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the schema."""
        try:
            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA foreign_keys = ON")
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS uri (
                    id INTEGER PRIMARY KEY,
                    value TEXT NOT NULL UNIQUE
                )
            """)
            await self._db.execute(f"""
                CREATE TABLE IF NOT EXISTS snap (
                    uri_id INTEGER NOT NULL REFERENCES uri(id),
                    timestamp INTEGER NOT NULL,
                    content_hash CHAR({HASH_LENGTH}) NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_snap_uri_timestamp "
                "ON snap(uri_id, timestamp DESC)"
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise IndexFailureError(
                "Failed to initialize snapshot index",
                {"db_path": str(self.db_path), "error": str(e)},
            ) from e

        logger.debug("Snapshot index initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise IndexFailureError("SnapIndex not initialized. Call init() first.")
        return self._db

    async def upsert_uri(self, value: str) -> int:
        """Get the ID of a URI, creating its row if it is unknown.

        A single INSERT ... ON CONFLICT statement, so concurrent callers
        cannot race between lookup and insert.
        """
        db = self._conn()
        try:
            # Executed and drained in one step, no statement stays open until commit
            rows = await db.execute_fetchall(
                """
                INSERT INTO uri (value) VALUES (?)
                ON CONFLICT (value) DO UPDATE SET value = excluded.value
                RETURNING id
                """,
                (value,),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise IndexFailureError(
                "Failed to upsert URI", {"uri": value, "error": str(e)}
            ) from e

        rows = list(rows)
        if not rows:
            raise IndexFailureError("URI upsert returned no row", {"uri": value})
        return int(rows[0][0])

    async def record_snap(self, uri_id: int, timestamp: int, content_hash: str) -> None:
        """Append a snapshot row for a URI."""
        db = self._conn()
        try:
            await db.execute(
                "INSERT INTO snap (uri_id, timestamp, content_hash) VALUES (?, ?, ?)",
                (uri_id, timestamp, content_hash),
            )
            await db.commit()
        except aiosqlite.Error as e:
            raise IndexFailureError(
                "Failed to record snapshot",
                {"uri_id": uri_id, "content_hash": content_hash, "error": str(e)},
            ) from e

    async def latest_snap(
        self, uri: str, max_timestamp: int | None = None
    ) -> tuple[int, str] | None:
        """Get the latest snapshot of a URI taken at or before max_timestamp.

        Args:
            uri: The URI to look up.
            max_timestamp: Upper bound in seconds since the epoch, defaults to now.
                Snapshots from the same second are returned in no particular order.

        Returns:
            Tuple of (timestamp, content_hash) or None if there is no such snapshot.
        """
        if max_timestamp is None:
            max_timestamp = now()

        row = await self._fetchone(
            """
            SELECT snap.timestamp, snap.content_hash FROM snap
            JOIN uri ON uri.id = snap.uri_id
            WHERE uri.value = ? AND snap.timestamp <= ?
            ORDER BY snap.timestamp DESC
            LIMIT 1
            """,
            (uri, max_timestamp),
        )
        if not row:
            return None
        return row["timestamp"], row["content_hash"]

    async def history(
        self, uri: str, max_timestamp: int | None = None
    ) -> list[tuple[int, str]]:
        """List all snapshots of a URI, newest first."""
        if max_timestamp is None:
            max_timestamp = now()

        rows = await self._fetchall(
            """
            SELECT snap.timestamp, snap.content_hash FROM snap
            JOIN uri ON uri.id = snap.uri_id
            WHERE uri.value = ? AND snap.timestamp <= ?
            ORDER BY snap.timestamp DESC
            """,
            (uri, max_timestamp),
        )
        return [(row["timestamp"], row["content_hash"]) for row in rows]

    async def uris(self) -> list[str]:
        """List all known URIs in insertion order."""
        rows = await self._fetchall("SELECT value FROM uri ORDER BY id")
        return [row["value"] for row in rows]

    async def count(self) -> int:
        """Get total count of snapshot records."""
        row = await self._fetchone("SELECT COUNT(*) FROM snap")
        return row[0] if row else 0

    async def stats(self) -> dict[str, Any]:
        """Get statistics about the index.

        Returns:
            Dict with URI, snapshot and distinct content counts.
        """
        stats: dict[str, Any] = {}

        row = await self._fetchone("SELECT COUNT(*) FROM uri")
        stats["uris"] = row[0] if row else 0

        stats["snapshots"] = await self.count()

        row = await self._fetchone("SELECT COUNT(DISTINCT content_hash) FROM snap")
        stats["distinct_contents"] = row[0] if row else 0

        return stats

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Row | None:
        db = self._conn()
        try:
            async with db.execute(sql, params) as cursor:
                return await cursor.fetchone()
        except aiosqlite.Error as e:
            raise IndexFailureError("Snapshot index query failed", {"error": str(e)}) from e

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        db = self._conn()
        try:
            async with db.execute(sql, params) as cursor:
                return list(await cursor.fetchall())
        except aiosqlite.Error as e:
            raise IndexFailureError("Snapshot index query failed", {"error": str(e)}) from e
