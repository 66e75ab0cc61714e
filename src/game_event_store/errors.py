"""
Error taxonomy for the event store. Every public operation either succeeds or
raises one of these (argument errors aside, which are plain `ValueError`).
"""


class EventStoreError(Exception):
    """Base class for all event store errors."""


class MigrationError(EventStoreError):
    """Schema migration failed, or storage was used before migrations ran."""


class ConcurrencyConflict(EventStoreError):
    """An append presented a stale expected sequence."""

    def __init__(self, stream_id: str, expected_sequence: int, actual_sequence: int):
        self.stream_id = stream_id
        self.expected_sequence = expected_sequence
        self.actual_sequence = actual_sequence
        super().__init__(
            f"Concurrency conflict on stream {stream_id!r}: expected sequence "
            f"{expected_sequence}, but stream is at {actual_sequence}"
        )


class NotFound(EventStoreError):
    """The referenced stream (or save game) has never been created."""


class ReplayError(EventStoreError):
    """The reducer rejected an event during replay."""

    def __init__(self, stream_id: str, sequence: int, event_type: str, reason: str = ""):
        self.stream_id = stream_id
        self.sequence = sequence
        self.event_type = event_type
        message = f"Reducer rejected {event_type} at sequence {sequence} of stream {stream_id!r}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
