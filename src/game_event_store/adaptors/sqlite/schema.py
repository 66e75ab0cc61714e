"""
SQLite implementation of the `MigrationTarget` protocol.

Each migration runs as a script inside one explicit transaction together with
the insert (or delete) of its `schema_versions` row, so a failing statement
halfway through a script leaves no trace.
"""
from typing import List
from datetime import datetime, timezone

from ...models import Migration, SchemaVersion
from .handle import DatabaseHandle


class SQLiteSchemaTarget:
    def __init__(self, handle: DatabaseHandle):
        self.handle = handle

    async def prepare(self):
        """Creates the version bookkeeping table if it does not exist yet."""
        async with self.handle.write_lock:
            await self.handle.write_conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_versions (
                    version INTEGER PRIMARY KEY,
                    description TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
                """
            )
            await self.handle.write_conn.commit()

    async def current_version(self) -> int:
        async with self.handle.write_lock:
            async with self.handle.write_conn.execute("SELECT MAX(version) FROM schema_versions") as cursor:
                row = await cursor.fetchone()
                return row[0] if row and row[0] is not None else 0

    async def applied(self) -> List[SchemaVersion]:
        async with self.handle.write_lock:
            async with self.handle.write_conn.execute(
                "SELECT version, description, applied_at FROM schema_versions ORDER BY version"
            ) as cursor:
                return [
                    SchemaVersion(
                        version=version,
                        description=description,
                        applied_at=datetime.fromisoformat(applied_at),
                    )
                    async for version, description, applied_at in cursor
                ]

    async def apply(self, migration: Migration):
        await self._run_script(
            migration.sql,
            "INSERT INTO schema_versions (version, description, applied_at) VALUES (?, ?, ?)",
            (migration.version, migration.description, datetime.now(timezone.utc).isoformat()),
        )

    async def revert(self, migration: Migration):
        await self._run_script(
            migration.sql,
            "DELETE FROM schema_versions WHERE version = ?",
            (migration.version,),
        )

    async def mark_ready(self, version: int):
        self.handle.schema_version = version

    async def _run_script(self, script: str, bookkeeping_sql: str, params: tuple):
        conn = self.handle.write_conn
        async with self.handle.write_lock:
            try:
                # executescript() commits any pending transaction first, then
                # leaves ours open because the script carries no COMMIT.
                await conn.executescript(f"BEGIN IMMEDIATE;\n{script}")
                await conn.execute(bookkeeping_sql, params)
                await conn.commit()
            except BaseException:
                if conn.in_transaction:
                    await conn.rollback()
                raise
