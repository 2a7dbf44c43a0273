from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

import aiosqlite


logger = logging.getLogger(__name__)


@dataclass
class MirrorObject:
    id: str
    type: str
    common: dict[str, Any] = field(default_factory=dict)
    native: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class State:
    val: Any
    ack: bool
    ts: float


StateListener = Callable[[str, State], Awaitable[None]]

# Matches `id` itself and everything below it without LIKE wildcards.
_SUBTREE = "(id = ? OR substr(id, 1, ?) = ?)"


def _subtree_args(prefix: str) -> tuple[str, int, str]:
    return prefix, len(prefix) + 1, prefix + "."


class ObjectTree:
    """
    Object and state store backed by sqlite.

    Objects are `device`, `channel`, `state` or `enum` nodes addressed by dotted
    ids. States carry a value plus an `ack` flag: True for values confirmed by
    the hub, False for writes that still have to be applied. Listeners are
    awaited for every unconfirmed write.
    """

    supports_recursive_delete = True

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._listeners: list[StateListener] = []

    async def connect(self) -> None:
        dir_name = os.path.dirname(self._db_path)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._conn.execute("PRAGMA synchronous=NORMAL;")
        await self._init_schema()
        await self._conn.commit()

    @property
    def conn(self) -> aiosqlite.Connection:
        if not self._conn:
            raise RuntimeError("ObjectTree not connected")
        return self._conn

    async def _init_schema(self) -> None:
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS settings (
              key TEXT PRIMARY KEY,
              value TEXT NOT NULL,
              updated_at INTEGER NOT NULL
            );
            """
        )
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS objects (
              id TEXT PRIMARY KEY,
              type TEXT NOT NULL,
              common TEXT NOT NULL,
              native TEXT NOT NULL
            );
            """
        )
        await self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS states (
              id TEXT PRIMARY KEY,
              val TEXT,
              ack INTEGER NOT NULL,
              ts REAL NOT NULL
            );
            """
        )

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    async def get_setting(self, key: str) -> str | None:
        async with self.conn.execute("SELECT value FROM settings WHERE key = ?", (key,)) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return str(row[0])

    async def set_setting(self, key: str, value: str) -> None:
        now = int(time.time())
        await self.conn.execute(
            """
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
            """,
            (key, value, now),
        )
        await self.conn.commit()

    @staticmethod
    def _row_to_object(row: Any) -> MirrorObject:
        obj_id, obj_type, common, native = row
        return MirrorObject(id=obj_id, type=obj_type, common=json.loads(common), native=json.loads(native))

    async def get_object(self, obj_id: str) -> MirrorObject | None:
        async with self.conn.execute(
            "SELECT id, type, common, native FROM objects WHERE id = ?",
            (obj_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        return self._row_to_object(row)

    async def exists(self, obj_id: str) -> bool:
        async with self.conn.execute("SELECT 1 FROM objects WHERE id = ?", (obj_id,)) as cursor:
            return await cursor.fetchone() is not None

    async def set_object(self, obj: MirrorObject) -> None:
        await self.conn.execute(
            """
            INSERT INTO objects (id, type, common, native)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET type=excluded.type, common=excluded.common, native=excluded.native
            """,
            (obj.id, obj.type, json.dumps(obj.common), json.dumps(obj.native)),
        )
        await self.conn.commit()

    async def upsert_object(self, obj: MirrorObject) -> bool:
        """
        Creates `obj` or extends the existing object with its metadata.

        An existing display name is kept and `native` is replaced. Returns
        True when the object did not exist before.
        """
        existing = await self.get_object(obj.id)
        if existing is None:
            await self.set_object(obj)
            return True

        common = {**existing.common, **obj.common}
        if "name" in existing.common:
            common["name"] = existing.common["name"]
        await self.set_object(MirrorObject(id=obj.id, type=obj.type, common=common, native=dict(obj.native)))
        return False

    async def add_enum_member(self, enum_id: str, member: str) -> None:
        enum = await self.get_object(enum_id)
        if enum is None:
            enum = MirrorObject(id=enum_id, type="enum", common={"name": enum_id.rsplit(".", 1)[-1], "members": []})
        members = enum.common.setdefault("members", [])
        if member in members:
            return
        members.append(member)
        await self.set_object(enum)

    async def delete_recursive(self, obj_id: str) -> None:
        args = _subtree_args(obj_id)
        await self.conn.execute(f"DELETE FROM objects WHERE {_SUBTREE}", args)
        await self.conn.execute(f"DELETE FROM states WHERE {_SUBTREE}", args)
        await self.conn.commit()

    async def query_by_prefix(self, prefix: str) -> list[MirrorObject]:
        if not prefix:
            sql, args = "SELECT id, type, common, native FROM objects ORDER BY id", ()
        else:
            sql = f"SELECT id, type, common, native FROM objects WHERE {_SUBTREE} ORDER BY id"
            args = _subtree_args(prefix)
        async with self.conn.execute(sql, args) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_object(row) for row in rows]

    async def get_state(self, state_id: str) -> State | None:
        async with self.conn.execute("SELECT val, ack, ts FROM states WHERE id = ?", (state_id,)) as cursor:
            row = await cursor.fetchone()
        if not row:
            return None
        val, ack, ts = row
        return State(val=json.loads(val) if val is not None else None, ack=bool(ack), ts=float(ts))

    async def get_states(self, prefix: str = "") -> dict[str, State]:
        if not prefix:
            sql, args = "SELECT id, val, ack, ts FROM states ORDER BY id", ()
        else:
            sql = "SELECT id, val, ack, ts FROM states WHERE substr(id, 1, ?) = ? ORDER BY id"
            args = (len(prefix) + 1, prefix + ".")
        async with self.conn.execute(sql, args) as cursor:
            rows = await cursor.fetchall()
        return {
            state_id: State(val=json.loads(val) if val is not None else None, ack=bool(ack), ts=float(ts))
            for state_id, val, ack, ts in rows
        }

    async def set_state(self, state_id: str, val: Any, *, ack: bool, notify: bool = True) -> State:
        state = State(val=val, ack=ack, ts=time.time())
        await self.conn.execute(
            """
            INSERT INTO states (id, val, ack, ts)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET val=excluded.val, ack=excluded.ack, ts=excluded.ts
            """,
            (state_id, json.dumps(val), int(ack), state.ts),
        )
        await self.conn.commit()
        if not ack and notify:
            await self._notify(state_id, state)
        return state

    async def set_state_changed(self, state_id: str, val: Any, *, ack: bool) -> bool:
        """Writes only when value or ack differ from what is stored; returns True on write."""
        current = await self.get_state(state_id)
        if current is not None and current.val == val and current.ack == ack:
            return False
        await self.set_state(state_id, val, ack=ack)
        return True

    async def _notify(self, state_id: str, state: State) -> None:
        for listener in list(self._listeners):
            try:
                await listener(state_id, state)
            except Exception:
                logger.exception("State listener failed for %s", state_id)

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
