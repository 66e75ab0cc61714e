"""
This module provides the SQLite Snapshot Store. Snapshots are cached fold
results; states are zlib-compressed at rest and never overwritten. A new
snapshot is only stored if it is ahead of every existing one for the same
stream and projection.
"""
from typing import List
import logging
import zlib
from datetime import datetime, timezone

from ...errors import NotFound
from ...models import Snapshot
from .event_log import fetch_head, fetch_stream_exists
from .handle import DatabaseHandle

SNAPSHOT_COLUMNS = "stream_id, projection_name, sequence, state, schema_version, created_at"


def _to_snapshot(row) -> Snapshot:
    stream_id, projection_name, sequence, state, schema_version, created_at = row
    try:
        state = zlib.decompress(state)
    except zlib.error:
        # Stored uncompressed
        pass
    return Snapshot(
        stream_id=stream_id,
        projection_name=projection_name,
        sequence=sequence,
        state=state,
        schema_version=schema_version,
        created_at=datetime.fromisoformat(created_at),
    )


class SQLiteSnapshotStore:
    def __init__(self, handle: DatabaseHandle):
        self.handle = handle

    async def save(
        self,
        stream_id: str,
        sequence: int,
        state_blob: bytes,
        schema_version: int,
        *,
        projection_name: str = "default",
    ) -> Snapshot | None:
        """
        Stores a snapshot of the `projection_name` fold of `stream_id` as of
        `sequence`. Returns `None` without writing if that projection already
        has a snapshot at the same or a later sequence.
        """
        if sequence < 1:
            raise ValueError("Snapshot sequence must be >= 1")
        if not isinstance(state_blob, bytes):
            raise TypeError("state_blob must be bytes")
        self.handle.require_schema()

        snapshot = Snapshot(
            stream_id=stream_id,
            projection_name=projection_name,
            sequence=sequence,
            state=state_blob,
            schema_version=schema_version,
            created_at=datetime.now(timezone.utc),
        )
        async with self.handle.transaction() as conn:
            if not await fetch_stream_exists(conn, stream_id):
                raise NotFound(f"Stream {stream_id!r} does not exist")
            head = await fetch_head(conn, stream_id)
            if sequence > head:
                raise ValueError(
                    f"Cannot snapshot stream {stream_id!r} at sequence {sequence}; head is {head}"
                )
            async with conn.execute(
                "SELECT MAX(sequence) FROM snapshots WHERE stream_id = ? AND projection_name = ?",
                (stream_id, projection_name),
            ) as cursor:
                row = await cursor.fetchone()
            newest = row[0] if row and row[0] is not None else 0
            if newest >= sequence:
                logging.info(
                    f"Skipping {projection_name} snapshot of {stream_id} at {sequence}; one already exists at {newest}"
                )
                return None

            await conn.execute(
                f"INSERT INTO snapshots ({SNAPSHOT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (
                    stream_id,
                    projection_name,
                    sequence,
                    zlib.compress(state_blob),
                    schema_version,
                    snapshot.created_at.isoformat(),
                ),
            )

        logging.info(f"Saved {projection_name} snapshot of {stream_id} at sequence {sequence}")
        return snapshot

    async def latest(
        self,
        stream_id: str,
        *,
        projection_name: str = "default",
        max_sequence: int | None = None,
        schema_version: int | None = None,
    ) -> Snapshot | None:
        """
        Returns the snapshot of `projection_name` with the highest sequence, optionally
        no later than `max_sequence` and restricted to one state schema version.
        """
        self.handle.require_schema()
        query = f"SELECT {SNAPSHOT_COLUMNS} FROM snapshots WHERE stream_id = ? AND projection_name = ?"
        params: list = [stream_id, projection_name]
        if max_sequence is not None:
            query += " AND sequence <= ?"
            params.append(max_sequence)
        if schema_version is not None:
            query += " AND schema_version = ?"
            params.append(schema_version)
        query += " ORDER BY sequence DESC LIMIT 1"

        async with self.handle.read() as conn:
            async with conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
        return _to_snapshot(row) if row else None

    async def history(self, stream_id: str, projection_name: str = "default") -> List[Snapshot]:
        """All retained snapshots of one projection of the stream, oldest first."""
        self.handle.require_schema()
        async with self.handle.read() as conn:
            async with conn.execute(
                f"SELECT {SNAPSHOT_COLUMNS} FROM snapshots WHERE stream_id = ? AND projection_name = ? ORDER BY sequence",
                (stream_id, projection_name),
            ) as cursor:
                rows = await cursor.fetchall()
        return [_to_snapshot(row) for row in rows]

    async def prune(self, stream_id: str, projection_name: str = "default", keep: int = 1) -> int:
        """Deletes all but the newest `keep` snapshots of the projection; returns how many were removed."""
        if keep < 1:
            raise ValueError("keep must be >= 1")
        self.handle.require_schema()
        async with self.handle.transaction() as conn:
            cursor = await conn.execute(
                """
                DELETE FROM snapshots WHERE stream_id = ? AND projection_name = ? AND sequence NOT IN (
                    SELECT sequence FROM snapshots WHERE stream_id = ? AND projection_name = ?
                    ORDER BY sequence DESC LIMIT ?
                )
                """,
                (stream_id, projection_name, stream_id, projection_name, keep),
            )
            removed = cursor.rowcount
            await cursor.close()
        return removed
