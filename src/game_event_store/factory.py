from typing import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from .migrations import MIGRATIONS
from .migrator import Migrator
from .models import Migration
from .store import EventStore
from .adaptors.sqlite.handle import open_database
from .adaptors.sqlite.schema import SQLiteSchemaTarget


@asynccontextmanager
async def sqlite_event_store(
    db_path: str,
    *,
    migrations: Sequence[Migration] = MIGRATIONS,
    cache_size_kib: int = -16384,
    busy_timeout_ms: int = 5000,
    pool_size: int = 4,
    read_batch_size: int = 256,
    snapshot_interval: int | None = None,
) -> AsyncIterator[EventStore]:
    """
    Bootstraps an event store backed by a SQLite database.

    Opens the database handle, runs the migrations to completion and only then
    yields an `EventStore`. A `MigrationError` aborts startup before any
    storage operation can run. All connections are closed on exit.
    """
    async with open_database(
        db_path,
        cache_size_kib=cache_size_kib,
        busy_timeout_ms=busy_timeout_ms,
        pool_size=pool_size,
        read_batch_size=read_batch_size,
    ) as handle:
        migrator = Migrator(SQLiteSchemaTarget(handle), migrations)
        await migrator.migrate()
        yield EventStore(handle, snapshot_interval=snapshot_interval)
