"""
The built-in schema history. Applications pass this list (optionally extended
with their own later versions) to the Migrator at startup.
"""
from .models import Migration, MigrationKind

EVENT_STORE_TABLES = """
CREATE TABLE streams (
    stream_id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

-- Core event ledger with guaranteed per-stream ordering
CREATE TABLE events (
    event_id TEXT PRIMARY KEY,
    stream_id TEXT NOT NULL REFERENCES streams (stream_id),
    sequence INTEGER NOT NULL CHECK (sequence >= 1),
    event_type TEXT NOT NULL,
    payload BLOB NOT NULL,
    payload_version INTEGER NOT NULL DEFAULT 1,
    metadata TEXT,
    recorded_at TEXT NOT NULL,
    UNIQUE (stream_id, sequence)
);

CREATE INDEX idx_events_type ON events (event_type);
CREATE INDEX idx_events_recorded ON events (recorded_at);

-- Older snapshots are kept; the highest sequence per stream and projection wins
CREATE TABLE snapshots (
    stream_id TEXT NOT NULL REFERENCES streams (stream_id),
    projection_name TEXT NOT NULL,
    sequence INTEGER NOT NULL,
    state BLOB NOT NULL,
    schema_version INTEGER NOT NULL,
    created_at TEXT NOT NULL,
    PRIMARY KEY (stream_id, projection_name, sequence)
);

-- Save game bookmarks for the UI
CREATE TABLE save_games (
    save_name TEXT PRIMARY KEY,
    stream_id TEXT NOT NULL REFERENCES streams (stream_id),
    sequence INTEGER NOT NULL,
    preview TEXT NOT NULL,
    saved_at TEXT NOT NULL
);
"""

DROP_EVENT_STORE_TABLES = """
DROP TABLE save_games;
DROP TABLE snapshots;
DROP TABLE events;
DROP TABLE streams;
"""

MIGRATIONS = [
    Migration(
        version=1,
        description="create event store tables",
        sql=EVENT_STORE_TABLES,
    ),
    Migration(
        version=1,
        description="drop event store tables",
        sql=DROP_EVENT_STORE_TABLES,
        kind=MigrationKind.DOWN,
    ),
]
