"""
This module exports the event store's public API: the bootstrap factory, the
facade and components, the data models and the error taxonomy.
"""
from .errors import (
    ConcurrencyConflict,
    EventStoreError,
    MigrationError,
    NotFound,
    ReplayError,
)
from .migrations import MIGRATIONS
from .migrator import Migrator
from .models import (
    CandidateEvent,
    Migration,
    MigrationKind,
    ReplayResult,
    SaveGame,
    SchemaVersion,
    Snapshot,
    StoredEvent,
)
from .protocols import Reducer
from .replay import ReplayEngine
from .store import EventStore
from .adaptors.sqlite import DatabaseHandle, SQLiteSchemaTarget, open_database
from .factory import sqlite_event_store

__all__ = [
    "CandidateEvent",
    "StoredEvent",
    "Snapshot",
    "SchemaVersion",
    "Migration",
    "MigrationKind",
    "SaveGame",
    "ReplayResult",
    "Reducer",
    "MIGRATIONS",
    "Migrator",
    "ReplayEngine",
    "EventStore",
    "DatabaseHandle",
    "SQLiteSchemaTarget",
    "open_database",
    "sqlite_event_store",
    "EventStoreError",
    "MigrationError",
    "ConcurrencyConflict",
    "NotFound",
    "ReplayError",
]
