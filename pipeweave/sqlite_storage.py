"""SQLite-backed pipe state storage."""

from __future__ import annotations

import asyncio
import copy
import json
import sqlite3
from typing import Any

from pipeweave.errors import SectionError
from pipeweave.storage import Storage

_I64_MIN = -(2**63)
_U64_MAX = 2**64 - 1

_CREATE_TABLE = (
    "CREATE TABLE IF NOT EXISTS state ("
    "id INTEGER PRIMARY KEY NOT NULL, "
    "state TEXT NOT NULL)"
)
_UPSERT = (
    "INSERT INTO state VALUES(?, ?) "
    "ON CONFLICT (id) DO UPDATE SET state = excluded.state"
)
_SELECT = "SELECT state FROM state WHERE id = ?"


class SqliteStateError(SectionError):
    """Raised when a value of an unsupported type is stored in a state."""

    def __init__(self, type_name: str) -> None:
        super().__init__(f"UnsupportedType {{ type_name: {type_name!r} }}")
        self.type_name = type_name


class SqliteState:
    """JSON-serialisable key/value state holding strings, integers and nested states."""

    __slots__ = ("_map",)

    def __init__(self, values: dict[str, Any] | None = None) -> None:
        self._map: dict[str, Any] = dict(values or {})

    def get(self, key: str, kind: type) -> Any:
        """Return the value under ``key`` if it is of ``kind`` (str, int or SqliteState).

        Missing keys and values of another kind give None.
        """
        value = self._map.get(key)
        if kind is str and isinstance(value, str):
            return value
        if kind is int and isinstance(value, int) and not isinstance(value, bool):
            return value
        if kind is SqliteState and isinstance(value, dict):
            return SqliteState(copy.deepcopy(value))
        return None

    def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``; raise SqliteStateError for unsupported types."""
        if isinstance(value, bool):
            raise SqliteStateError(type(value).__name__)
        if isinstance(value, str):
            stored: Any = value
        elif isinstance(value, int):
            if not _I64_MIN <= value <= _U64_MAX:
                raise SqliteStateError(type(value).__name__)
            stored = value
        elif isinstance(value, SqliteState):
            stored = copy.deepcopy(value._map)
        else:
            raise SqliteStateError(type(value).__name__)
        self._map[key] = stored

    def to_json(self) -> str:
        """Serialise the state as a JSON object."""
        return json.dumps(self._map)

    @classmethod
    def from_json(cls, text: str) -> SqliteState:
        """Parse a JSON object; anything else yields an empty state."""
        try:
            value = json.loads(text)
        except (json.JSONDecodeError, TypeError):
            return cls()
        if isinstance(value, dict):
            return cls(value)
        return cls()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SqliteState):
            return NotImplemented
        return self._map == other._map

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"SqliteState({self._map!r})"


def _filename(path: str) -> str:
    for prefix in ("sqlite://", "sqlite:"):
        if path.startswith(prefix):
            return path[len(prefix):]
    return path


def _as_i64(pipe_id: int) -> int:
    if not _I64_MIN <= pipe_id <= _U64_MAX:
        raise SectionError(f"pipe id out of range: {pipe_id}")
    return pipe_id - 2**64 if pipe_id > 2**63 - 1 else pipe_id


def _connect(path: str) -> sqlite3.Connection:
    connection = sqlite3.connect(_filename(path), check_same_thread=False)
    try:
        connection.execute(_CREATE_TABLE)
        connection.commit()
    except sqlite3.Error:
        connection.close()
        raise
    return connection


class SqliteStorage(Storage):
    """Per-pipe state persisted in an SQLite database."""

    def __init__(self, path: str, connection: sqlite3.Connection) -> None:
        self.path = path
        self._connection: sqlite3.Connection | None = connection
        self._lock = asyncio.Lock()

    @classmethod
    async def open(cls, path: str) -> SqliteStorage:
        """Open (creating if missing) the database at ``path``."""
        try:
            connection = await asyncio.to_thread(_connect, path)
        except sqlite3.Error as exc:
            raise SectionError(str(exc)) from exc
        return cls(path, connection)

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise SectionError("storage closed")
        return self._connection

    async def store_state(self, pipe_id: int, state: SqliteState) -> None:
        """Insert or replace the state of ``pipe_id``."""
        if not isinstance(state, SqliteState):
            raise SectionError(f"unsupported state type: {type(state).__name__}")
        row_id = _as_i64(pipe_id)
        payload = state.to_json()

        def run(connection: sqlite3.Connection) -> None:
            connection.execute(_UPSERT, (row_id, payload))
            connection.commit()

        async with self._lock:
            connection = self._conn()
            try:
                await asyncio.to_thread(run, connection)
            except sqlite3.Error as exc:
                raise SectionError(str(exc)) from exc

    async def retrieve_state(self, pipe_id: int) -> SqliteState | None:
        """Return the state of ``pipe_id``, or None when nothing is stored."""
        row_id = _as_i64(pipe_id)

        def run(connection: sqlite3.Connection) -> Any:
            return connection.execute(_SELECT, (row_id,)).fetchone()

        async with self._lock:
            connection = self._conn()
            try:
                row = await asyncio.to_thread(run, connection)
            except sqlite3.Error as exc:
                raise SectionError(str(exc)) from exc
        if row is None:
            return None
        return SqliteState.from_json(row[0])

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            if self._connection is not None:
                connection, self._connection = self._connection, None
                await asyncio.to_thread(connection.close)

    async def __aenter__(self) -> SqliteStorage:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def open_storage(path: str) -> SqliteStorage:
    """Open the SQLite storage at ``path``."""
    return await SqliteStorage.open(path)