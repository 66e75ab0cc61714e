"""
This module defines the core data models for the event store using Pydantic.
These models serve as the data transfer objects (DTOs) and ensure that all
event, snapshot and schema data is well-structured and validated.
"""
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Any, Dict, Optional


class CandidateEvent(BaseModel):
    """An event that has not been appended yet."""
    event_type: str = Field(min_length=1)
    payload: bytes  # Serialized event data
    payload_version: int = Field(default=1, ge=1)
    metadata: Optional[Dict[str, Any]] = None


class StoredEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str
    stream_id: str
    sequence: int = Field(ge=1)
    event_type: str
    payload: bytes
    payload_version: int = 1
    metadata: Optional[Dict[str, Any]] = None
    recorded_at: datetime


class Snapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    stream_id: str
    projection_name: str = "default"
    sequence: int = Field(ge=1)
    state: bytes  # Serialized state, uncompressed
    # Version of the reducer's state format, not of the database schema.
    schema_version: int
    created_at: datetime


class MigrationKind(str, Enum):
    UP = "up"
    DOWN = "down"


class Migration(BaseModel):
    """
    One versioned schema change. An UP migration moves the schema to `version`;
    a DOWN migration with the same version undoes it.
    """
    model_config = ConfigDict(frozen=True)

    version: int = Field(ge=1)
    description: str
    sql: str
    kind: MigrationKind = MigrationKind.UP


class SchemaVersion(BaseModel):
    version: int
    description: str
    applied_at: datetime


class SaveGame(BaseModel):
    save_name: str
    stream_id: str
    sequence: int
    preview: Dict[str, Any] = Field(default_factory=dict)
    saved_at: datetime


class ReplayResult(BaseModel):
    state: Any
    # Sequence of the last event folded into `state`, 0 for an empty fold.
    sequence: int
    snapshot_sequence: Optional[int] = None
    events_applied: int = 0
