from .handle import DatabaseHandle, open_database, resolve_db_path
from .schema import SQLiteSchemaTarget

__all__ = ["DatabaseHandle", "open_database", "resolve_db_path", "SQLiteSchemaTarget"]
