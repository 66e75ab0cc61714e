"""
This module defines the abstract protocols the core components depend on.

The Replay Engine and the Migrator only see these interfaces, never the SQLite
adaptor. Game logic plugs in through `Reducer`, one implementation per entity
type; the engine is generic over it.
"""
from typing import AsyncIterator, List, Protocol, TypeVar

from .models import Migration, SchemaVersion, Snapshot, StoredEvent

S = TypeVar("S")


class Reducer(Protocol[S]):
    """
    A pure fold over a stream. `apply` must not depend on anything but its
    arguments; it signals a rejected event by raising.
    """
    # Identifies the projection; snapshots are stored and looked up per name.
    name: str
    # Bumped whenever the serialized state format changes, so snapshots taken
    # with an older format are ignored instead of misread.
    state_version: int

    def initial_state(self) -> S:
        ...

    def apply(self, state: S, event: StoredEvent) -> S:
        ...

    def serialize(self, state: S) -> bytes:
        ...

    def deserialize(self, blob: bytes) -> S:
        ...


class EventSource(Protocol):
    def read_range(
        self, stream_id: str, from_sequence: int = 1, to_sequence: int | None = None
    ) -> AsyncIterator[StoredEvent]:
        ...

    async def latest_sequence(self, stream_id: str) -> int:
        ...


class SnapshotSource(Protocol):
    async def latest(
        self,
        stream_id: str,
        *,
        projection_name: str = "default",
        max_sequence: int | None = None,
        schema_version: int | None = None,
    ) -> Snapshot | None:
        ...

    async def save(
        self,
        stream_id: str,
        sequence: int,
        state_blob: bytes,
        schema_version: int,
        *,
        projection_name: str = "default",
    ) -> Snapshot | None:
        ...


class MigrationTarget(Protocol):
    """
    A storage engine the Migrator can drive. Each `apply`/`revert` call must be
    atomic: either the schema change and its version bookkeeping both commit,
    or neither does.
    """
    async def prepare(self):
        ...

    async def current_version(self) -> int:
        ...

    async def applied(self) -> List[SchemaVersion]:
        ...

    async def apply(self, migration: Migration):
        ...

    async def revert(self, migration: Migration):
        ...

    async def mark_ready(self, version: int):
        ...
