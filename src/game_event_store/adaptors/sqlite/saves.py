"""Named save games: bookmarks that pin a stream at the sequence it had when saved."""
from typing import Any, Dict, List
import json
from datetime import datetime, timezone

from ...errors import NotFound
from ...models import SaveGame
from .event_log import fetch_head, fetch_stream_exists
from .handle import DatabaseHandle


def _to_save_game(row) -> SaveGame:
    save_name, stream_id, sequence, preview, saved_at = row
    return SaveGame(
        save_name=save_name,
        stream_id=stream_id,
        sequence=sequence,
        preview=json.loads(preview),
        saved_at=datetime.fromisoformat(saved_at),
    )


class SQLiteSaveGameStore:
    def __init__(self, handle: DatabaseHandle):
        self.handle = handle

    async def save(
        self, save_name: str, stream_id: str, preview: Dict[str, Any] | None = None
    ) -> SaveGame:
        """Creates or replaces `save_name`, pointing at the stream's current head."""
        if not save_name:
            raise ValueError("save_name must be a non-empty string")
        self.handle.require_schema()
        saved_at = datetime.now(timezone.utc)
        async with self.handle.transaction() as conn:
            if not await fetch_stream_exists(conn, stream_id):
                raise NotFound(f"Stream {stream_id!r} does not exist")
            sequence = await fetch_head(conn, stream_id)
            await conn.execute(
                """
                INSERT OR REPLACE INTO save_games (save_name, stream_id, sequence, preview, saved_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (save_name, stream_id, sequence, json.dumps(preview or {}), saved_at.isoformat()),
            )
        return SaveGame(
            save_name=save_name,
            stream_id=stream_id,
            sequence=sequence,
            preview=preview or {},
            saved_at=saved_at,
        )

    async def get(self, save_name: str) -> SaveGame:
        self.handle.require_schema()
        async with self.handle.read() as conn:
            async with conn.execute(
                "SELECT save_name, stream_id, sequence, preview, saved_at FROM save_games WHERE save_name = ?",
                (save_name,),
            ) as cursor:
                row = await cursor.fetchone()
        if row is None:
            raise NotFound(f"Save game {save_name!r} does not exist")
        return _to_save_game(row)

    async def list_saves(self) -> List[SaveGame]:
        """Newest first."""
        self.handle.require_schema()
        async with self.handle.read() as conn:
            async with conn.execute(
                "SELECT save_name, stream_id, sequence, preview, saved_at FROM save_games "
                "ORDER BY saved_at DESC, save_name"
            ) as cursor:
                rows = await cursor.fetchall()
        return [_to_save_game(row) for row in rows]

    async def delete(self, save_name: str) -> bool:
        self.handle.require_schema()
        async with self.handle.transaction() as conn:
            cursor = await conn.execute("DELETE FROM save_games WHERE save_name = ?", (save_name,))
            deleted = cursor.rowcount > 0
            await cursor.close()
        return deleted
