"""
This module provides the storage context shared by every SQLite component.

A `DatabaseHandle` bundles a dedicated write connection (guarded by an
`asyncio.Lock`) with a pool of read-only connections. It is opened once by the
bootstrap layer and passed explicitly into each component constructor; the
components never open or close connections themselves.
"""
from typing import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
import aiosqlite
import asyncio
import logging
import urllib.parse

from ...errors import EventStoreError, MigrationError

MEMORY_DB = ":memory:"


def resolve_db_path(db_path: str) -> str:
    """
    Accepts a filesystem path, ":memory:", or a `sqlite:` URL such as
    `sqlite:game.db`, `sqlite:///abs/game.db` or `sqlite://` (in-memory).
    """
    if not db_path:
        raise ValueError("`db_path` must be provided in the configuration.")
    if db_path == MEMORY_DB:
        return db_path
    if db_path.startswith("sqlite:"):
        parsed = urllib.parse.urlparse(db_path)
        path = urllib.parse.unquote(parsed.netloc + parsed.path)
        if not path or path == "/":
            return MEMORY_DB
        return path
    if "://" in db_path:
        scheme = db_path.split("://", 1)[0]
        raise ValueError(f"Unsupported scheme: {scheme}. Only 'sqlite' is supported.")
    return db_path


class DatabaseHandle:
    def __init__(
        self,
        db_path: str,
        write_conn: aiosqlite.Connection,
        read_pool: asyncio.Queue | None,
        read_batch_size: int = 256,
    ):
        self.db_path = db_path
        self.write_conn = write_conn
        self.write_lock = asyncio.Lock()
        self.read_pool = read_pool
        self.read_batch_size = read_batch_size
        # Set by the migration target once `Migrator.migrate()` has succeeded.
        self.schema_version: int | None = None

    def require_schema(self):
        """Raises unless migrations have run to completion on this handle."""
        if self.schema_version is None or self.schema_version < 1:
            raise MigrationError(
                f"Storage at {self.db_path} used before schema migrations were applied"
            )

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Provides a connection for a short read. An in-memory database has no
        read pool, so reads share the write connection and take the write lock
        to avoid observing another coroutine's open transaction.
        """
        if self.read_pool is None:
            async with self.write_lock:
                yield self.write_conn
        else:
            conn = await self.read_pool.get()
            try:
                yield conn
            finally:
                await self.read_pool.put(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Serializes writers on the write lock and wraps the block in
        `BEGIN IMMEDIATE ... COMMIT`, rolling back on any exception.
        """
        async with self.write_lock:
            await self.write_conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.write_conn
                await self.write_conn.commit()
            except BaseException as e:
                await self.write_conn.rollback()
                if not isinstance(e, (EventStoreError, ValueError, asyncio.CancelledError)):
                    logging.error(f"Write transaction on {self.db_path} rolled back: {e!r}")
                raise


async def _configure(conn: aiosqlite.Connection, cache_size_kib: int, busy_timeout_ms: int):
    await conn.execute(f"PRAGMA cache_size = {int(cache_size_kib)};")
    await conn.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)};")


@asynccontextmanager
async def open_database(
    db_path: str,
    *,
    cache_size_kib: int = -16384,
    busy_timeout_ms: int = 5000,
    pool_size: int = 4,
    read_batch_size: int = 256,
) -> AsyncIterator[DatabaseHandle]:
    """
    Opens the write connection and read pool for `db_path` and closes them all
    on exit. The returned handle is not usable for storage operations until
    the Migrator has run against it.
    """
    if pool_size < 0:
        raise ValueError("pool_size must be >= 0")
    if read_batch_size < 1:
        raise ValueError("read_batch_size must be >= 1")

    path = resolve_db_path(db_path)
    is_memory_db = path == MEMORY_DB

    write_conn = await aiosqlite.connect(path)
    read_pool: asyncio.Queue | None = None
    try:
        await write_conn.execute("PRAGMA journal_mode=WAL;")
        await write_conn.execute("PRAGMA synchronous = NORMAL;")
        await write_conn.execute("PRAGMA foreign_keys = ON;")
        await _configure(write_conn, cache_size_kib, busy_timeout_ms)

        # A private in-memory database is only reachable through the
        # connection that created it.
        if not is_memory_db and pool_size > 0:
            read_pool = asyncio.Queue(maxsize=pool_size)
            read_connect_string = f"{Path(path).resolve().as_uri()}?mode=ro"
            for _ in range(pool_size):
                conn = await aiosqlite.connect(read_connect_string, uri=True)
                await read_pool.put(conn)
                await _configure(conn, cache_size_kib, busy_timeout_ms)

        logging.info(f"Opened event store database {path} (read pool: {pool_size if read_pool else 0})")
        yield DatabaseHandle(path, write_conn, read_pool, read_batch_size)
    finally:
        connection_tasks = [write_conn.close()]
        if read_pool is not None:
            while not read_pool.empty():
                conn = await read_pool.get()
                connection_tasks.append(conn.close())
        await asyncio.gather(*connection_tasks)
