import logging

import pytest

from game_event_store import ConcurrencyConflict, EventStore, NotFound, sqlite_event_store
from game_event_store.adaptors.sqlite import resolve_db_path


@pytest.mark.asyncio
async def test_open_close(store):
    assert store.handle.schema_version == 1
    assert await store.list_streams() == []


@pytest.mark.asyncio
async def test_optimistic_append_example(store):
    assert await store.append("s1", 1, "Created", b"") == 1
    with pytest.raises(ConcurrencyConflict):
        await store.append("s1", 1, "Created", b"")


@pytest.mark.asyncio
async def test_file_persistence(db_path, inventory):
    # Session 1: write events and a snapshot
    async with sqlite_event_store(db_path) as store:
        await store.append("game-1", 1, "AddItem", b"sword")
        await store.append("game-1", 2, "AddItem", b"shield")
        await store.snapshot_now("game-1", inventory)

    # Session 2: migrations are a no-op and everything is still there
    async with sqlite_event_store(db_path) as store:
        assert await store.latest_sequence("game-1") == 2
        result = await store.replay("game-1", inventory)
        assert result.state == {"sword", "shield"}
        assert result.snapshot_sequence == 2


@pytest.mark.asyncio
async def test_snapshot_now(game_42, inventory):
    snapshot = await game_42.snapshot_now("game-42", inventory)
    assert snapshot.sequence == 4
    assert inventory.deserialize(snapshot.state) == {"shield"}
    assert (await game_42.latest_snapshot("game-42", "inventory")).sequence == 4
    # Nothing new since the last snapshot
    assert await game_42.snapshot_now("game-42", inventory) is None


@pytest.mark.asyncio
async def test_snapshot_now_unknown_stream(store, inventory):
    with pytest.raises(NotFound):
        await store.snapshot_now("missing", inventory)


@pytest.mark.asyncio
async def test_snapshot_interval(db_path, inventory):
    async with sqlite_event_store(db_path, snapshot_interval=3) as store:
        await store.append("s", 1, "AddItem", b"a")
        await store.append("s", 2, "AddItem", b"b")
        await store.rebuild("s", inventory)
        assert await store.latest_snapshot("s", "inventory") is None

        await store.append("s", 3, "AddItem", b"c")
        await store.rebuild("s", inventory, 3)
        assert await store.latest_snapshot("s", "inventory") is None

        assert await store.rebuild("s", inventory) == {"a", "b", "c"}
        assert (await store.latest_snapshot("s", "inventory")).sequence == 3

        await store.append("s", 4, "AddItem", b"d")
        result = await store.replay("s", inventory)
        assert result.snapshot_sequence == 3
        assert result.events_applied == 1
        assert (await store.latest_snapshot("s", "inventory")).sequence == 3


@pytest.mark.asyncio
async def test_snapshot_interval_must_be_positive(store):
    with pytest.raises(ValueError):
        EventStore(store.handle, snapshot_interval=0)


class UnserializableInventory:
    name = "unserializable"
    state_version = 1

    def initial_state(self):
        return set()

    def apply(self, state, event):
        return state | {event.payload.decode()}

    def serialize(self, state) -> bytes:
        raise RuntimeError("disk full")

    def deserialize(self, blob: bytes):
        return set()


@pytest.mark.asyncio
async def test_failed_checkpoint_does_not_fail_rebuild(db_path, caplog):
    async with sqlite_event_store(db_path, snapshot_interval=1) as store:
        await store.append("s", 1, "AddItem", b"a")
        with caplog.at_level(logging.WARNING):
            assert await store.rebuild("s", UnserializableInventory()) == {"a"}
        assert "Skipping unserializable checkpoint of s at sequence 1" in caplog.text
        assert await store.latest_snapshot("s", "unserializable") is None


@pytest.mark.asyncio
async def test_metrics(store, inventory):
    with pytest.raises(NotFound):
        await store.metrics("s")

    await store.append("s", 1, "AddItem", b"a")
    metrics = await store.metrics("s")
    assert metrics["latest_sequence"] == 1
    assert metrics["event_count"] == 1
    assert metrics["snapshot_sequence"] is None
    first_recorded = metrics["last_recorded_at"]

    await store.append("s", 2, "AddItem", b"b")
    await store.snapshot_now("s", inventory)
    assert (await store.metrics("s"))["snapshot_sequence"] is None
    metrics = await store.metrics("s", "inventory")
    assert metrics["latest_sequence"] == 2
    assert metrics["event_count"] == 2
    assert metrics["snapshot_sequence"] == 2
    assert metrics["last_recorded_at"] >= first_recorded
    assert metrics["created_at"] <= first_recorded


@pytest.mark.asyncio
async def test_save_games(game_42, inventory):
    store = game_42
    save = await store.save_game("before-bow", "game-42", {"phase": "camp", "bounty": 10})
    assert save.sequence == 4
    await store.append("game-42", 5, "AddItem", b"bow")
    await store.save_game("with-bow", "game-42")

    loaded, state = await store.load_game("before-bow", inventory)
    assert loaded.preview == {"phase": "camp", "bounty": 10}
    assert state == {"shield"}
    _, state = await store.load_game("with-bow", inventory)
    assert state == {"shield", "bow"}

    assert {s.save_name for s in await store.list_save_games()} == {"before-bow", "with-bow"}
    assert await store.delete_save_game("with-bow") is True
    assert await store.delete_save_game("with-bow") is False
    assert [s.save_name for s in await store.list_save_games()] == ["before-bow"]
    with pytest.raises(NotFound):
        await store.load_game("with-bow", inventory)


@pytest.mark.asyncio
async def test_save_game_overwrites_by_name(game_42):
    await game_42.save_game("slot-1", "game-42")
    await game_42.append("game-42", 5, "AddItem", b"bow")
    save = await game_42.save_game("slot-1", "game-42", {"note": "later"})
    assert save.sequence == 5
    saves = await game_42.list_save_games()
    assert len(saves) == 1
    assert saves[0].preview == {"note": "later"}


@pytest.mark.asyncio
async def test_save_game_unknown_stream(store):
    with pytest.raises(NotFound):
        await store.save_game("slot-1", "missing")


@pytest.mark.asyncio
async def test_purge_removes_snapshots_and_saves(game_42, inventory):
    await game_42.snapshot_now("game-42", inventory)
    await game_42.save_game("slot-1", "game-42")
    await game_42.purge_stream("game-42")

    assert await game_42.latest_snapshot("game-42", "inventory") is None
    assert await game_42.list_save_games() == []


@pytest.mark.parametrize(
    "url, expected",
    [
        ("game.db", "game.db"),
        (":memory:", ":memory:"),
        ("sqlite:game.db", "game.db"),
        ("sqlite:///tmp/game.db", "/tmp/game.db"),
        ("sqlite://", ":memory:"),
        ("sqlite::memory:", ":memory:"),
    ],
)
def test_resolve_db_path(url, expected):
    assert resolve_db_path(url) == expected


def test_unsupported_scheme():
    with pytest.raises(ValueError, match="Unsupported scheme: file. Only 'sqlite' is supported."):
        resolve_db_path("file:///tmp/game.db")


@pytest.mark.asyncio
async def test_missing_db_path():
    with pytest.raises(ValueError, match="db_path"):
        async with sqlite_event_store(""):
            pass
