"""
The Schema Migrator applies an ordered list of versioned schema changes exactly
once each. It is engine independent: all SQL and transaction handling lives in
a `MigrationTarget` implementation, the Migrator only validates the list,
decides what to run and in which order, and turns failures into
`MigrationError`.
"""
import logging
from typing import Dict, List, Sequence

from .errors import MigrationError
from .models import Migration, MigrationKind, SchemaVersion
from .protocols import MigrationTarget


class Migrator:
    def __init__(self, target: MigrationTarget, migrations: Sequence[Migration]):
        self.target = target
        self.up: List[Migration] = []
        self.down: Dict[int, Migration] = {}

        for migration in migrations:
            if migration.kind == MigrationKind.UP:
                if self.up and migration.version <= self.up[-1].version:
                    raise MigrationError(
                        f"Migration versions must be strictly increasing: "
                        f"{migration.version} listed after {self.up[-1].version}"
                    )
                self.up.append(migration)
            else:
                if migration.version in self.down:
                    raise MigrationError(f"Duplicate down migration for version {migration.version}")
                self.down[migration.version] = migration

        known = {m.version for m in self.up}
        orphans = sorted(set(self.down) - known)
        if orphans:
            raise MigrationError(f"Down migrations without a matching up migration: {orphans}")

    @property
    def latest_version(self) -> int:
        return self.up[-1].version if self.up else 0

    async def migrate(self) -> int:
        """
        Applies every pending up migration in ascending order and returns the
        resulting schema version. Stops at the first failure, leaving the
        database at the last committed version.
        """
        current = await self._read_version()
        if current > self.latest_version:
            logging.warning(
                f"Database schema is at version {current}, newer than the latest known migration {self.latest_version}"
            )

        for migration in self.up:
            if migration.version <= current:
                continue
            try:
                await self.target.apply(migration)
            except Exception as e:
                logging.error(f"Migration {migration.version} ({migration.description}) failed: {e}")
                raise MigrationError(
                    f"Migration {migration.version} ({migration.description}) failed; "
                    f"schema left at version {current}"
                ) from e
            current = migration.version
            logging.info(f"Applied migration {migration.version}: {migration.description}")

        await self.target.mark_ready(current)
        return current

    async def revert(self, to_version: int) -> int:
        """Undoes applied migrations above `to_version`, newest first."""
        if to_version < 0:
            raise ValueError("to_version must be >= 0")
        applied = [v.version for v in await self.applied() if v.version > to_version]
        missing = [v for v in applied if v not in self.down]
        if missing:
            raise MigrationError(f"Migrations {missing} are irreversible; cannot revert to {to_version}")

        for version in sorted(applied, reverse=True):
            migration = self.down[version]
            try:
                await self.target.revert(migration)
            except Exception as e:
                logging.error(f"Reverting migration {version} failed: {e}")
                raise MigrationError(f"Reverting migration {version} ({migration.description}) failed") from e
            logging.info(f"Reverted migration {version}: {migration.description}")

        current = await self._read_version()
        await self.target.mark_ready(current)
        return current

    async def applied(self) -> List[SchemaVersion]:
        try:
            await self.target.prepare()
            return await self.target.applied()
        except Exception as e:
            logging.error(f"Reading applied migrations failed: {e}")
            raise MigrationError("Could not read the applied migrations") from e

    async def _read_version(self) -> int:
        try:
            await self.target.prepare()
            return await self.target.current_version()
        except Exception as e:
            logging.error(f"Reading the schema version failed: {e}")
            raise MigrationError("Could not read the schema version") from e
