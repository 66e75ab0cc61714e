import zlib

import pytest

from game_event_store import NotFound


@pytest.mark.asyncio
async def test_latest_when_none_exists(store):
    await store.append("s1", 1, "Created", b"")
    assert await store.snapshots.latest("s1") is None
    assert await store.snapshots.latest("missing") is None


@pytest.mark.asyncio
async def test_save_and_load(game_42):
    saved = await game_42.snapshots.save("game-42", 3, b'["shield","sword"]', 1)
    assert saved is not None

    latest = await game_42.snapshots.latest("game-42")
    assert latest.sequence == 3
    assert latest.state == b'["shield","sword"]'
    assert latest.schema_version == 1
    assert latest.created_at == saved.created_at


@pytest.mark.asyncio
async def test_state_is_compressed_at_rest(game_42):
    state = b"inventory " * 100
    await game_42.snapshots.save("game-42", 4, state, 1)
    async with game_42.handle.write_conn.execute(
        "SELECT state FROM snapshots WHERE stream_id = 'game-42'"
    ) as cursor:
        (stored,) = await cursor.fetchone()
    assert stored != state
    assert zlib.decompress(stored) == state
    assert (await game_42.snapshots.latest("game-42")).state == state


@pytest.mark.asyncio
async def test_snapshots_never_move_backward(game_42):
    snapshots = game_42.snapshots
    assert await snapshots.save("game-42", 3, b"at-3", 1) is not None
    assert await snapshots.save("game-42", 2, b"at-2", 1) is None
    assert await snapshots.save("game-42", 3, b"again-3", 1) is None

    latest = await snapshots.latest("game-42")
    assert latest.sequence == 3
    assert latest.state == b"at-3"


@pytest.mark.asyncio
async def test_older_snapshots_are_retained(game_42):
    snapshots = game_42.snapshots
    await snapshots.save("game-42", 2, b"at-2", 1)
    await snapshots.save("game-42", 4, b"at-4", 1)

    assert [s.sequence for s in await snapshots.history("game-42")] == [2, 4]
    assert (await snapshots.latest("game-42")).sequence == 4
    assert (await snapshots.latest("game-42", max_sequence=3)).sequence == 2
    assert await snapshots.latest("game-42", max_sequence=1) is None


@pytest.mark.asyncio
async def test_latest_filters_by_schema_version(game_42):
    snapshots = game_42.snapshots
    await snapshots.save("game-42", 2, b"v1", 1)
    await snapshots.save("game-42", 3, b"v2", 2)

    assert (await snapshots.latest("game-42", schema_version=1)).state == b"v1"
    assert (await snapshots.latest("game-42", schema_version=2)).state == b"v2"
    assert await snapshots.latest("game-42", schema_version=3) is None


@pytest.mark.asyncio
async def test_projections_are_independent(game_42):
    snapshots = game_42.snapshots
    assert await snapshots.save("game-42", 4, b"inventory-4", 1, projection_name="inventory") is not None
    # An older snapshot of another projection is not blocked
    assert await snapshots.save("game-42", 2, b"log-2", 1, projection_name="item_log") is not None

    assert (await snapshots.latest("game-42", projection_name="inventory")).state == b"inventory-4"
    latest_log = await snapshots.latest("game-42", projection_name="item_log")
    assert latest_log.sequence == 2
    assert latest_log.projection_name == "item_log"
    assert await snapshots.latest("game-42") is None

    await snapshots.save("game-42", 3, b"log-3", 1, projection_name="item_log")
    assert await snapshots.prune("game-42", "item_log", keep=1) == 1
    assert [s.sequence for s in await snapshots.history("game-42", "item_log")] == [3]
    assert [s.sequence for s in await snapshots.history("game-42", "inventory")] == [4]


@pytest.mark.asyncio
async def test_prune(game_42):
    snapshots = game_42.snapshots
    for sequence in (1, 2, 3, 4):
        await snapshots.save("game-42", sequence, f"at-{sequence}".encode(), 1)

    assert await snapshots.prune("game-42", keep=2) == 2
    assert [s.sequence for s in await snapshots.history("game-42")] == [3, 4]
    with pytest.raises(ValueError):
        await snapshots.prune("game-42", keep=0)


@pytest.mark.asyncio
async def test_save_validates_sequence(game_42):
    with pytest.raises(ValueError, match="head is 4"):
        await game_42.snapshots.save("game-42", 5, b"future", 1)
    with pytest.raises(ValueError):
        await game_42.snapshots.save("game-42", 0, b"zero", 1)
    assert await game_42.snapshots.history("game-42") == []


@pytest.mark.asyncio
async def test_save_unknown_stream(store):
    with pytest.raises(NotFound):
        await store.snapshots.save("missing", 1, b"state", 1)
