"""
The Replay Engine folds a stream's events through a caller-supplied reducer.

Replay optionally starts from the latest compatible snapshot of the reducer's
projection at or before the target sequence. Snapshots are an optimization
only: one that cannot be decoded is logged and ignored, and the fold falls back
to sequence 1, so the result is the same with or without snapshots. Events
are always folded in ascending sequence order because reducers need not be
commutative.
"""
import logging
from typing import Any

from .errors import ReplayError
from .models import ReplayResult
from .protocols import EventSource, Reducer, SnapshotSource


class ReplayEngine:
    def __init__(self, events: EventSource, snapshots: SnapshotSource):
        self.events = events
        self.snapshots = snapshots

    async def replay(
        self,
        stream_id: str,
        reducer: Reducer,
        up_to_sequence: int | None = None,
        *,
        use_snapshots: bool = True,
    ) -> ReplayResult:
        """
        Rebuilds the state of `stream_id` as of `up_to_sequence` (the head when
        None). Raises `ReplayError` if the reducer rejects an event, `NotFound`
        if the stream does not exist.
        """
        if up_to_sequence is not None and up_to_sequence < 0:
            raise ValueError("up_to_sequence must be >= 0")

        state: Any = None
        start = 1
        snapshot_sequence = None

        if use_snapshots:
            snapshot = await self.snapshots.latest(
                stream_id,
                projection_name=reducer.name,
                max_sequence=up_to_sequence,
                schema_version=reducer.state_version,
            )
            if snapshot is not None:
                try:
                    state = reducer.deserialize(snapshot.state)
                    start = snapshot.sequence + 1
                    snapshot_sequence = snapshot.sequence
                except Exception as e:
                    logging.warning(
                        f"Ignoring unreadable snapshot of {stream_id} at sequence {snapshot.sequence}: {e}"
                    )

        if snapshot_sequence is None:
            state = reducer.initial_state()

        sequence = snapshot_sequence or 0
        applied = 0
        async for event in self.events.read_range(stream_id, start, up_to_sequence):
            try:
                state = reducer.apply(state, event)
            except Exception as e:
                raise ReplayError(stream_id, event.sequence, event.event_type, str(e)) from e
            sequence = event.sequence
            applied += 1

        return ReplayResult(
            state=state,
            sequence=sequence,
            snapshot_sequence=snapshot_sequence,
            events_applied=applied,
        )

    async def rebuild(
        self, stream_id: str, reducer: Reducer, up_to_sequence: int | None = None
    ):
        result = await self.replay(stream_id, reducer, up_to_sequence)
        return result.state
