"""
This module implements the Store Facade, the single entry point game logic
uses once the bootstrap has migrated the database.

`EventStore` holds no state of its own beyond the components it composes; all
of them share the one `DatabaseHandle` it was constructed with.
"""
import logging
from typing import Any, AsyncIterable, Dict, List

from .adaptors.sqlite.event_log import SQLiteEventLog
from .adaptors.sqlite.handle import DatabaseHandle
from .adaptors.sqlite.saves import SQLiteSaveGameStore
from .adaptors.sqlite.snapshots import SQLiteSnapshotStore
from .models import CandidateEvent, ReplayResult, SaveGame, Snapshot, StoredEvent
from .protocols import Reducer
from .replay import ReplayEngine


class EventStore:
    def __init__(self, handle: DatabaseHandle, *, snapshot_interval: int | None = None):
        if snapshot_interval is not None and snapshot_interval < 1:
            raise ValueError("snapshot_interval must be >= 1")
        self.handle = handle
        self.snapshot_interval = snapshot_interval
        self.events = SQLiteEventLog(handle)
        self.snapshots = SQLiteSnapshotStore(handle)
        self.saves = SQLiteSaveGameStore(handle)
        self.replay_engine = ReplayEngine(self.events, self.snapshots)

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
        return await self.events.append(
            stream_id,
            expected_sequence,
            event_type,
            payload,
            metadata=metadata,
            payload_version=payload_version,
        )

    async def append_batch(
        self, stream_id: str, expected_sequence: int, events: List[CandidateEvent]
    ) -> int:
        return await self.events.append_batch(stream_id, expected_sequence, events)

    def read_range(
        self, stream_id: str, from_sequence: int = 1, to_sequence: int | None = None
    ) -> AsyncIterable[StoredEvent]:
        return self.events.read_range(stream_id, from_sequence, to_sequence)

    async def latest_sequence(self, stream_id: str) -> int:
        return await self.events.latest_sequence(stream_id)

    async def replay(
        self, stream_id: str, reducer: Reducer, up_to_sequence: int | None = None
    ) -> ReplayResult:
        """
        Rebuilds state via the Replay Engine. With a `snapshot_interval`
        configured, a replay to the head that folded at least that many events
        leaves a snapshot of the reducer's projection behind for the next
        caller. A checkpoint that cannot be written is logged and skipped.
        """
        result = await self.replay_engine.replay(stream_id, reducer, up_to_sequence)
        if (
            self.snapshot_interval is not None
            and up_to_sequence is None
            and result.events_applied >= self.snapshot_interval
        ):
            try:
                await self.snapshots.save(
                    stream_id,
                    result.sequence,
                    reducer.serialize(result.state),
                    reducer.state_version,
                    projection_name=reducer.name,
                )
            except Exception as e:
                logging.warning(
                    f"Skipping {reducer.name} checkpoint of {stream_id} at sequence {result.sequence}: {e}"
                )
        return result

    async def rebuild(
        self, stream_id: str, reducer: Reducer, up_to_sequence: int | None = None
    ):
        result = await self.replay(stream_id, reducer, up_to_sequence)
        return result.state

    async def snapshot_now(self, stream_id: str, reducer: Reducer) -> Snapshot | None:
        """
        Rebuilds the stream to its head and stores the result as a snapshot of
        the reducer's projection. Returns `None` if the stream is empty or the
        projection already has an equal or newer snapshot.
        """
        result = await self.replay_engine.replay(stream_id, reducer)
        if result.sequence == 0:
            logging.info(f"Not snapshotting empty stream {stream_id}")
            return None
        return await self.snapshots.save(
            stream_id,
            result.sequence,
            reducer.serialize(result.state),
            reducer.state_version,
            projection_name=reducer.name,
        )

    async def latest_snapshot(
        self, stream_id: str, projection_name: str = "default"
    ) -> Snapshot | None:
        return await self.snapshots.latest(stream_id, projection_name=projection_name)

    async def metrics(self, stream_id: str, projection_name: str = "default") -> Dict[str, Any]:
        info = await self.events.stream_info(stream_id)
        snapshot = await self.snapshots.latest(stream_id, projection_name=projection_name)
        info["snapshot_sequence"] = snapshot.sequence if snapshot else None
        return info

    async def list_streams(self) -> List[str]:
        return await self.events.list_streams()

    async def purge_stream(self, stream_id: str) -> int:
        return await self.events.purge_stream(stream_id)

    async def save_game(
        self, save_name: str, stream_id: str, preview: Dict[str, Any] | None = None
    ) -> SaveGame:
        return await self.saves.save(save_name, stream_id, preview)

    async def load_game(self, save_name: str, reducer: Reducer):
        """Returns the save game and the state of its stream as of the save."""
        save = await self.saves.get(save_name)
        state = await self.rebuild(save.stream_id, reducer, save.sequence)
        return save, state

    async def list_save_games(self) -> List[SaveGame]:
        return await self.saves.list_saves()

    async def delete_save_game(self, save_name: str) -> bool:
        return await self.saves.delete(save_name)
