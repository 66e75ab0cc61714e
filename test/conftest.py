import json
import os
import tempfile

import pytest
from pytest_asyncio import fixture

from game_event_store import StoredEvent, sqlite_event_store


class InventoryReducer:
    """Tracks a character's inventory as a set of item names."""
    name = "inventory"
    state_version = 1

    def initial_state(self):
        return set()

    def apply(self, state, event: StoredEvent):
        item = event.payload.decode()
        if event.event_type == "CreateCharacter":
            return set()
        if event.event_type == "AddItem":
            return state | {item}
        if event.event_type == "RemoveItem":
            if item not in state:
                raise ValueError(f"{item} is not in the inventory")
            return state - {item}
        raise ValueError(f"Unknown event type {event.event_type}")

    def serialize(self, state) -> bytes:
        return json.dumps(sorted(state)).encode()

    def deserialize(self, blob: bytes):
        return set(json.loads(blob))


class InventoryReducerV2(InventoryReducer):
    state_version = 2


class ItemLogReducer:
    """Every item ever picked up, in order; removals are ignored."""
    name = "item_log"
    state_version = 1

    def initial_state(self):
        return []

    def apply(self, state, event: StoredEvent):
        if event.event_type == "AddItem":
            return [*state, event.payload.decode()]
        return state

    def serialize(self, state) -> bytes:
        return json.dumps(state).encode()

    def deserialize(self, blob: bytes):
        return json.loads(blob)


class ScoreReducer:
    """Non-commutative: SetScore overrides whatever AddScore accumulated."""
    name = "score"
    state_version = 1

    def initial_state(self):
        return 0

    def apply(self, state, event: StoredEvent):
        value = int(event.payload)
        if event.event_type == "AddScore":
            return state + value
        if event.event_type == "SetScore":
            return value
        raise ValueError(f"Unknown event type {event.event_type}")

    def serialize(self, state) -> bytes:
        return str(state).encode()

    def deserialize(self, blob: bytes):
        return int(blob)


@fixture
def db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield os.path.join(tmpdir, "game.db")


@fixture
async def store(db_path):
    """Provides a migrated store over a fresh database file for each test."""
    async with sqlite_event_store(db_path) as event_store:
        yield event_store


@fixture
def inventory():
    return InventoryReducer()


@fixture
def inventory_v2():
    return InventoryReducerV2()


@fixture
def score():
    return ScoreReducer()


@fixture
def item_log():
    return ItemLogReducer()


@fixture
async def game_42(store):
    """Stream 'game-42' holding the four events of the inventory example."""
    await store.append("game-42", 1, "CreateCharacter", b"hero")
    await store.append("game-42", 2, "AddItem", b"sword")
    await store.append("game-42", 3, "AddItem", b"shield")
    await store.append("game-42", 4, "RemoveItem", b"sword")
    return store
