import sqlite3

import pytest

from pipeweave.errors import SectionError
from pipeweave.sqlite_storage import (
    SqliteState,
    SqliteStateError,
    SqliteStorage,
    open_storage,
)


def test_sqlite_state():
    state = SqliteState()

    state.set("key", "value")
    assert state.get("key", str) == "value"
    assert state.get("key", int) is None

    state.set("key", 64)
    assert state.get("key", int) == 64
    assert state.get("key", str) is None

    state.set("key", -64)
    assert state.get("key", int) == -64
    assert state.get("key", str) is None


def test_missing_key_is_none():
    assert SqliteState().get("absent", str) is None


@pytest.mark.parametrize("value", [1.5, True, [1, 2], {"a": 1}, None, b"x"])
def test_unsupported_types_raise(value):
    state = SqliteState()
    with pytest.raises(SqliteStateError):
        state.set("key", value)
    assert state.get("key", str) is None


@pytest.mark.parametrize("value", [2**64, -(2**63) - 1])
def test_out_of_range_ints_raise(value):
    with pytest.raises(SqliteStateError):
        SqliteState().set("key", value)


def test_integer_bounds_accepted():
    state = SqliteState()
    state.set("max", 2**64 - 1)
    state.set("min", -(2**63))
    assert state.get("max", int) == 2**64 - 1
    assert state.get("min", int) == -(2**63)


def test_nested_state_round_trip():
    inner = SqliteState()
    inner.set("offset", 10)
    outer = SqliteState()
    outer.set("0", inner)
    got = outer.get("0", SqliteState)
    assert got == inner
    assert got.get("offset", int) == 10
    assert outer.get("0", str) is None


def test_json_round_trip_and_invalid_json():
    state = SqliteState()
    state.set("a", "b")
    state.set("n", 3)
    assert SqliteState.from_json(state.to_json()) == state
    assert SqliteState.from_json("not json") == SqliteState()
    assert SqliteState.from_json("[1, 2]") == SqliteState()


@pytest.mark.asyncio
async def test_store_and_retrieve(tmp_path):
    storage = await open_storage(str(tmp_path / "state.db"))
    try:
        assert await storage.retrieve_state(1) is None
        state = SqliteState()
        state.set("cursor", "abc")
        await storage.store_state(1, state)
        got = await storage.retrieve_state(1)
        assert got == state
        assert got.get("cursor", str) == "abc"
    finally:
        await storage.close()


@pytest.mark.asyncio
async def test_store_overwrites(tmp_path):
    async with await SqliteStorage.open(str(tmp_path / "state.db")) as storage:
        first = SqliteState()
        first.set("k", 1)
        second = SqliteState()
        second.set("k", 2)
        await storage.store_state(5, first)
        await storage.store_state(5, second)
        got = await storage.retrieve_state(5)
        assert got.get("k", int) == 2


@pytest.mark.asyncio
async def test_persists_across_reopen(tmp_path):
    path = str(tmp_path / "state.db")
    async with await open_storage(path) as storage:
        state = SqliteState()
        state.set("k", "v")
        await storage.store_state(3, state)
    async with await open_storage(path) as storage:
        got = await storage.retrieve_state(3)
        assert got.get("k", str) == "v"


@pytest.mark.asyncio
async def test_sqlite_url_prefix(tmp_path):
    path = tmp_path / "url.db"
    async with await open_storage(f"sqlite://{path}") as storage:
        await storage.store_state(1, SqliteState({"x": 1}))
    assert path.exists()


@pytest.mark.asyncio
async def test_invalid_stored_json_gives_empty_state(tmp_path):
    path = str(tmp_path / "state.db")
    storage = await open_storage(path)
    await storage.close()
    connection = sqlite3.connect(path)
    connection.execute("INSERT INTO state VALUES(7, 'not json')")
    connection.commit()
    connection.close()
    async with await open_storage(path) as storage:
        assert await storage.retrieve_state(7) == SqliteState()


@pytest.mark.asyncio
async def test_large_pipe_id(tmp_path):
    async with await open_storage(str(tmp_path / "state.db")) as storage:
        await storage.store_state(2**64 - 1, SqliteState({"k": "big"}))
        got = await storage.retrieve_state(2**64 - 1)
        assert got.get("k", str) == "big"


@pytest.mark.asyncio
async def test_closed_storage_raises(tmp_path):
    storage = await open_storage(str(tmp_path / "state.db"))
    await storage.close()
    with pytest.raises(SectionError):
        await storage.retrieve_state(1)


@pytest.mark.asyncio
async def test_store_rejects_foreign_state(tmp_path):
    async with await open_storage(str(tmp_path / "state.db")) as storage:
        with pytest.raises(SectionError):
            await storage.store_state(1, {"k": "v"})