"""
Host record storage.

Every binding implements the same three calls. ``upsert`` is insert-or-update
keyed on the host name and must be atomic for a single key; the engine adds
per-name serialization on top, so nothing here needs cross-key coordination.
"""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Mapping, Protocol

from heartbeat_monitor.errors import StoreError
from heartbeat_monitor.models import HostRecord


SCHEMA_VERSION = 1
HOST_FIELDS = ("last_ping_ts", "interval", "alarmed_ts")


class HostStore(Protocol):
    async def get(self, name: str) -> HostRecord | None: ...

    async def upsert(self, name: str, fields: Mapping[str, Any]) -> HostRecord: ...

    async def list_all(self) -> list[HostRecord]: ...


def _clean_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(fields) - set(HOST_FIELDS)
    if unknown:
        raise ValueError(f"Unknown host fields: {sorted(unknown)}")
    out: dict[str, Any] = {}
    if "last_ping_ts" in fields:
        out["last_ping_ts"] = float(fields["last_ping_ts"])
    if "interval" in fields:
        raw = fields["interval"]
        out["interval"] = (str(raw).strip() or None) if raw is not None else None
    if "alarmed_ts" in fields:
        raw = fields["alarmed_ts"]
        out["alarmed_ts"] = float(raw) if raw is not None else None
    return out


class MemoryHostStore:
    """Process-local store. Loses everything on restart; meant for tests and single-shot runs."""

    def __init__(self) -> None:
        self._rows: dict[str, HostRecord] = {}
        self._lock = asyncio.Lock()

    async def get(self, name: str) -> HostRecord | None:
        return self._rows.get(name)

    async def upsert(self, name: str, fields: Mapping[str, Any]) -> HostRecord:
        cleaned = _clean_fields(fields)
        async with self._lock:
            current = self._rows.get(name)
            if current is None:
                if "last_ping_ts" not in cleaned:
                    raise StoreError(f"Cannot create host {name!r} without last_ping_ts")
                rec = HostRecord(
                    name=name,
                    last_ping_ts=cleaned["last_ping_ts"],
                    interval=cleaned.get("interval"),
                    alarmed_ts=cleaned.get("alarmed_ts"),
                )
            else:
                rec = HostRecord(
                    name=name,
                    last_ping_ts=cleaned.get("last_ping_ts", current.last_ping_ts),
                    interval=cleaned["interval"] if "interval" in cleaned else current.interval,
                    alarmed_ts=cleaned["alarmed_ts"] if "alarmed_ts" in cleaned else current.alarmed_ts,
                )
            self._rows[name] = rec
            return rec

    async def list_all(self) -> list[HostRecord]:
        return list(self._rows.values())


# -----------------
# SQLite binding
# -----------------


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000;")
    # WAL lets the status listing read while a sweep writes.
    try:
        conn.execute("PRAGMA journal_mode = WAL;")
    except sqlite3.Error:
        pass
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);")
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return
    if cur == 0:
        _apply_v1(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return
    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS hosts (
          name TEXT PRIMARY KEY,
          last_ping_ts REAL NOT NULL,
          interval TEXT,
          alarmed_ts REAL
        );
        """
    )


def _row_to_record(row: sqlite3.Row) -> HostRecord:
    return HostRecord(
        name=str(row["name"]),
        last_ping_ts=float(row["last_ping_ts"]),
        interval=(str(row["interval"]) if row["interval"] else None),
        alarmed_ts=(float(row["alarmed_ts"]) if row["alarmed_ts"] is not None else None),
    )


class SqliteHostStore:
    """
    SQLite-backed store. Each call opens its own connection on a worker thread so the
    event loop never blocks on disk I/O.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._schema_ready = False

    def ensure_schema(self) -> None:
        conn = _connect(self.db_path)
        try:
            _ensure_schema_conn(conn)
            self._schema_ready = True
        finally:
            conn.close()

    def _open(self) -> sqlite3.Connection:
        conn = _connect(self.db_path)
        if not self._schema_ready:
            _ensure_schema_conn(conn)
            self._schema_ready = True
        return conn

    def _get_sync(self, name: str) -> HostRecord | None:
        conn = self._open()
        try:
            row = conn.execute(
                "SELECT name, last_ping_ts, interval, alarmed_ts FROM hosts WHERE name=?",
                (name,),
            ).fetchone()
            return _row_to_record(row) if row else None
        finally:
            conn.close()

    def _upsert_sync(self, name: str, fields: dict[str, Any]) -> HostRecord:
        cols = [c for c in HOST_FIELDS if c in fields]
        if not cols:
            raise ValueError("upsert needs at least one field")
        if "last_ping_ts" in cols:
            insert_cols = ["name", *cols]
            placeholders = ", ".join("?" for _ in insert_cols)
            updates = ", ".join(f"{c}=excluded.{c}" for c in cols)
            sql = (
                f"INSERT INTO hosts ({', '.join(insert_cols)}) VALUES ({placeholders}) "
                f"ON CONFLICT(name) DO UPDATE SET {updates}"
            )
            params: tuple[Any, ...] = (name, *(fields[c] for c in cols))
        else:
            # NOT NULL on last_ping_ts is checked before ON CONFLICT, so partial writes update in place.
            sql = f"UPDATE hosts SET {', '.join(f'{c}=?' for c in cols)} WHERE name=?"
            params = (*(fields[c] for c in cols), name)

        conn = self._open()
        try:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                cur = conn.execute(sql, params)
                if cur.rowcount == 0:
                    raise StoreError(f"Cannot create host {name!r} without last_ping_ts")
                row = conn.execute(
                    "SELECT name, last_ping_ts, interval, alarmed_ts FROM hosts WHERE name=?",
                    (name,),
                ).fetchone()
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
            return _row_to_record(row)
        finally:
            conn.close()

    def _list_all_sync(self) -> list[HostRecord]:
        conn = self._open()
        try:
            rows = conn.execute("SELECT name, last_ping_ts, interval, alarmed_ts FROM hosts ORDER BY name").fetchall()
            return [_row_to_record(r) for r in rows]
        finally:
            conn.close()

    async def get(self, name: str) -> HostRecord | None:
        try:
            return await asyncio.to_thread(self._get_sync, name)
        except sqlite3.Error as exc:
            raise StoreError(f"get {name!r} failed: {exc}") from exc

    async def upsert(self, name: str, fields: Mapping[str, Any]) -> HostRecord:
        cleaned = _clean_fields(fields)
        try:
            return await asyncio.to_thread(self._upsert_sync, name, cleaned)
        except sqlite3.Error as exc:
            raise StoreError(f"upsert {name!r} failed: {exc}") from exc

    async def list_all(self) -> list[HostRecord]:
        try:
            return await asyncio.to_thread(self._list_all_sync)
        except sqlite3.Error as exc:
            raise StoreError(f"list hosts failed: {exc}") from exc


def build_store(backend: str, *, db_path: str) -> HostStore:
    kind = str(backend or "sqlite").strip().lower()
    if kind == "memory":
        return MemoryHostStore()
    if kind == "sqlite":
        return SqliteHostStore(db_path)
    raise ValueError(f"Unknown store backend: {backend!r}")
