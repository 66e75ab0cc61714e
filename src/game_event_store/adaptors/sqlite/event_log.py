"""
This module provides the SQLite Event Log: an append-only, per-stream ordered
table of immutable events.

Appending is the single serialization point per stream. The optimistic
concurrency check (current head == expected_sequence - 1) and the insert run
in one `BEGIN IMMEDIATE` transaction on the write connection, and the
`UNIQUE (stream_id, sequence)` constraint rejects anything that slips past.
"""
from typing import Any, AsyncIterator, Dict, List
import aiosqlite
import json
import logging
import pydantic_core
import sqlite3
import uuid
from datetime import datetime, timezone

from ...errors import ConcurrencyConflict, EventStoreError, NotFound
from ...models import CandidateEvent, StoredEvent
from .handle import DatabaseHandle

EVENT_COLUMNS = "event_id, stream_id, sequence, event_type, payload, payload_version, metadata, recorded_at"


async def fetch_head(conn: aiosqlite.Connection, stream_id: str) -> int:
    """Returns the highest sequence of the stream, 0 when it has no events."""
    async with conn.execute(
        "SELECT MAX(sequence) FROM events WHERE stream_id = ?", (stream_id,)
    ) as cursor:
        row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0


async def fetch_stream_exists(conn: aiosqlite.Connection, stream_id: str) -> bool:
    async with conn.execute(
        "SELECT 1 FROM streams WHERE stream_id = ?", (stream_id,)
    ) as cursor:
        return await cursor.fetchone() is not None


class SQLiteEventLog:
    def __init__(self, handle: DatabaseHandle):
        self.handle = handle

    async def append(
        self,
        stream_id: str,
        expected_sequence: int,
        event_type: str,
        payload: bytes,
        *,
        metadata: Dict[str, Any] | None = None,
        payload_version: int = 1,
    ) -> int:
        """Appends one event and returns the sequence assigned to it."""
        event = CandidateEvent(
            event_type=event_type,
            payload=payload,
            payload_version=payload_version,
            metadata=metadata,
        )
        return await self.append_batch(stream_id, expected_sequence, [event])

    async def append_batch(
        self, stream_id: str, expected_sequence: int, events: List[CandidateEvent]
    ) -> int:
        """
        Appends `events` atomically at `expected_sequence`, `expected_sequence + 1`, ...
        and returns the last sequence written. Raises `ConcurrencyConflict`
        without writing anything if the stream head is not `expected_sequence - 1`.
        """
        if not stream_id:
            raise ValueError("stream_id must be a non-empty string")
        if expected_sequence < 1:
            raise ValueError("expected_sequence must be >= 1")
        if not all(isinstance(e, CandidateEvent) for e in events):
            raise TypeError("All items in events list must be CandidateEvent objects")
        self.handle.require_schema()

        async with self.handle.transaction() as conn:
            current = await fetch_head(conn, stream_id)
            if current != expected_sequence - 1:
                raise ConcurrencyConflict(stream_id, expected_sequence, current)
            if not events:
                return current

            recorded_at = datetime.now(timezone.utc).isoformat()
            await conn.execute(
                "INSERT OR IGNORE INTO streams (stream_id, created_at) VALUES (?, ?)",
                (stream_id, recorded_at),
            )
            rows = [
                (
                    uuid.uuid4().hex,
                    stream_id,
                    current + i + 1,
                    event.event_type,
                    event.payload,
                    event.payload_version,
                    json.dumps(event.metadata) if event.metadata is not None else None,
                    recorded_at,
                )
                for i, event in enumerate(events)
            ]
            try:
                await conn.executemany(
                    f"INSERT INTO events ({EVENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    rows,
                )
            except sqlite3.IntegrityError as e:
                raise ConcurrencyConflict(stream_id, expected_sequence, current) from e

        return current + len(events)

    async def read_range(
        self, stream_id: str, from_sequence: int = 1, to_sequence: int | None = None
    ) -> AsyncIterator[StoredEvent]:
        """
        Yields the stream's events with `from_sequence <= sequence <= to_sequence`
        in ascending order (`to_sequence=None` reads to the end). Rows are
        fetched in batches, so no connection is held while the caller consumes
        them and each call re-reads storage from scratch.

        Raises `NotFound` on first iteration if the stream was never created.
        """
        if from_sequence < 1:
            raise ValueError("from_sequence must be >= 1")
        self.handle.require_schema()

        batch_size = self.handle.read_batch_size
        # SQLite's largest integer stands in for an open upper bound.
        upper = to_sequence if to_sequence is not None else 2**63 - 1
        query = (
            f"SELECT {EVENT_COLUMNS} FROM events WHERE stream_id = ? "
            f"AND sequence >= ? AND sequence <= ? ORDER BY sequence LIMIT ?"
        )

        next_sequence = from_sequence
        first_batch = True
        while next_sequence <= upper:
            async with self.handle.read() as conn:
                if first_batch and not await fetch_stream_exists(conn, stream_id):
                    raise NotFound(f"Stream {stream_id!r} does not exist")
                async with conn.execute(query, (stream_id, next_sequence, upper, batch_size)) as cursor:
                    rows = await cursor.fetchall()
            first_batch = False

            for row in rows:
                yield self._to_event(row)
            if len(rows) < batch_size:
                break
            next_sequence = rows[-1][2] + 1

        if first_batch:
            # Empty range requested; still report unknown streams.
            async with self.handle.read() as conn:
                if not await fetch_stream_exists(conn, stream_id):
                    raise NotFound(f"Stream {stream_id!r} does not exist")

    def _to_event(self, row) -> StoredEvent:
        event_id, stream_id, sequence, event_type, payload, payload_version, metadata_json, recorded_at = row
        try:
            return StoredEvent(
                event_id=event_id,
                stream_id=stream_id,
                sequence=sequence,
                event_type=event_type,
                payload=payload,
                payload_version=payload_version,
                metadata=json.loads(metadata_json) if metadata_json else None,
                recorded_at=datetime.fromisoformat(recorded_at),
            )
        except (json.JSONDecodeError, pydantic_core.ValidationError, ValueError) as e:
            logging.error(f"Invalid event row at sequence {sequence} of stream {stream_id}: {e}")
            raise EventStoreError(f"Corrupt event at sequence {sequence} of stream {stream_id!r}") from e

    async def latest_sequence(self, stream_id: str) -> int:
        self.handle.require_schema()
        async with self.handle.read() as conn:
            return await fetch_head(conn, stream_id)

    async def stream_exists(self, stream_id: str) -> bool:
        self.handle.require_schema()
        async with self.handle.read() as conn:
            return await fetch_stream_exists(conn, stream_id)

    async def list_streams(self) -> List[str]:
        self.handle.require_schema()
        async with self.handle.read() as conn:
            async with conn.execute("SELECT stream_id FROM streams ORDER BY stream_id") as cursor:
                return [row[0] async for row in cursor]

    async def stream_info(self, stream_id: str) -> Dict[str, Any]:
        self.handle.require_schema()
        async with self.handle.read() as conn:
            async with conn.execute(
                "SELECT created_at FROM streams WHERE stream_id = ?", (stream_id,)
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise NotFound(f"Stream {stream_id!r} does not exist")
            created_at = datetime.fromisoformat(row[0])

            async with conn.execute(
                "SELECT COUNT(*), MAX(sequence) FROM events WHERE stream_id = ?", (stream_id,)
            ) as cursor:
                event_count, latest = await cursor.fetchone()
            async with conn.execute(
                "SELECT recorded_at FROM events WHERE stream_id = ? ORDER BY sequence DESC LIMIT 1",
                (stream_id,),
            ) as cursor:
                row = await cursor.fetchone()

        return {
            "latest_sequence": latest or 0,
            "event_count": event_count,
            "last_recorded_at": datetime.fromisoformat(row[0]) if row else None,
            "created_at": created_at,
        }

    async def purge_stream(self, stream_id: str) -> int:
        """
        Deletes a stream with its events, snapshots and save games. This is an
        explicit operator retention action, never part of normal operation.
        Returns the number of events removed.
        """
        self.handle.require_schema()
        async with self.handle.transaction() as conn:
            if not await fetch_stream_exists(conn, stream_id):
                raise NotFound(f"Stream {stream_id!r} does not exist")
            await conn.execute("DELETE FROM save_games WHERE stream_id = ?", (stream_id,))
            await conn.execute("DELETE FROM snapshots WHERE stream_id = ?", (stream_id,))
            cursor = await conn.execute("DELETE FROM events WHERE stream_id = ?", (stream_id,))
            removed = cursor.rowcount
            await cursor.close()
            await conn.execute("DELETE FROM streams WHERE stream_id = ?", (stream_id,))

        logging.warning(f"Purged stream {stream_id}: {removed} events removed")
        return removed
