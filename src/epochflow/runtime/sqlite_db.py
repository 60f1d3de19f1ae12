# src/epochflow/runtime/sqlite_db.py
from __future__ import annotations

import json
import os
import random
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List

Json = Dict[str, Any]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _canon_json(obj: Any) -> str:
    """Canonical JSON encoding.

    Do not coerce unknown types (e.g. default=str): non-JSON values leaking into
    persisted state must fail fast.
    """
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _env_int(name: str, default: int) -> int:
    try:
        raw = str(os.environ.get(name, "")).strip()
        return int(raw) if raw else int(default)
    except Exception:
        return int(default)


class SqliteDB:
    """SQLite manager for the engine.

    Design goals:
      - single durable DB file for engine state + op journal
      - cross-process safe (SQLite locks)
      - cross-thread safe by never sharing connections
    """

    SCHEMA_VERSION = 1

    def __init__(self, *, path: str) -> None:
        self.path = str(path)

    @staticmethod
    def _sqlite_synchronous_pragma() -> str:
        """Return a safe PRAGMA synchronous value.

        Defaults:
          - prod        -> FULL
          - dev/testnet -> NORMAL

        Override with EPOCHFLOW_SQLITE_SYNCHRONOUS in {OFF,NORMAL,FULL,EXTRA}.
        """
        mode = (os.environ.get("EPOCHFLOW_MODE") or "prod").strip().lower()
        default = "FULL" if mode == "prod" else "NORMAL"
        raw = (os.environ.get("EPOCHFLOW_SQLITE_SYNCHRONOUS") or default).strip().upper()
        if raw not in {"OFF", "NORMAL", "FULL", "EXTRA"}:
            raw = default
        return raw

    def ensure_parent_dir(self) -> None:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)

    def _connect(self) -> sqlite3.Connection:
        self.ensure_parent_dir()
        connect_timeout_s = float(_env_int("EPOCHFLOW_SQLITE_CONNECT_TIMEOUT_MS", 30_000)) / 1000.0

        con = sqlite3.connect(
            self.path,
            timeout=connect_timeout_s,
            isolation_level=None,  # we manage BEGIN/COMMIT ourselves
            check_same_thread=False,
        )
        con.row_factory = sqlite3.Row

        allow_non_wal = (os.environ.get("EPOCHFLOW_SQLITE_ALLOW_NON_WAL") or "").strip().lower() in {"1", "true"}
        row = con.execute("PRAGMA journal_mode=WAL;").fetchone()
        mode = str(row[0]).strip().lower() if row is not None else ""
        if mode and mode != "wal" and not allow_non_wal:
            con.close()
            raise RuntimeError(f"sqlite journal_mode is '{mode}', expected 'wal'")

        con.execute(f"PRAGMA synchronous={self._sqlite_synchronous_pragma()};")
        con.execute("PRAGMA foreign_keys=ON;")
        con.execute("PRAGMA temp_store=MEMORY;")

        busy_ms = max(0, _env_int("EPOCHFLOW_SQLITE_BUSY_TIMEOUT_MS", int(connect_timeout_s * 1000)))
        con.execute(f"PRAGMA busy_timeout={busy_ms};")
        return con

    def init_schema(self) -> None:
        with self.write_tx() as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS meta (
                  key TEXT PRIMARY KEY,
                  value TEXT NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS engine_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  op_seq INTEGER NOT NULL,
                  state_json TEXT NOT NULL,
                  updated_ts_ms INTEGER NOT NULL
                );
                """
            )
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS op_journal (
                  seq INTEGER PRIMARY KEY,
                  op TEXT NOT NULL,
                  caller TEXT NOT NULL,
                  op_ts INTEGER NOT NULL,
                  envelope_json TEXT NOT NULL,
                  receipt_json TEXT NOT NULL
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_op_journal_caller ON op_journal(caller);")

            row = con.execute("SELECT value FROM meta WHERE key='schema_version' LIMIT 1;").fetchone()
            if row is None:
                con.execute("INSERT INTO meta(key, value) VALUES('schema_version', ?);", (str(self.SCHEMA_VERSION),))
            else:
                try:
                    v = int(str(row["value"]))
                except Exception:
                    v = 0
                if v != self.SCHEMA_VERSION:
                    raise RuntimeError(
                        f"sqlite schema_version mismatch: have={v} want={self.SCHEMA_VERSION}. "
                        "Refuse to start to avoid corrupting data."
                    )

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        con = self._connect()
        try:
            yield con
        finally:
            con.close()

    @staticmethod
    def _is_locked_error(e: Exception) -> bool:
        msg = str(e).lower()
        return ("database is locked" in msg) or ("database is busy" in msg)

    @contextmanager
    def write_tx(self) -> Iterator[sqlite3.Connection]:
        """Open a write transaction with bounded retry on writer-lock contention.

        Policy:
          - retry BEGIN IMMEDIATE until a deadline
          - exponential backoff with jitter
          - then raise (fail closed)
        """
        deadline_ts = _now_ms() + max(250, _env_int("EPOCHFLOW_SQLITE_WRITE_DEADLINE_MS", 30_000))
        base_sleep = max(0.001, float(_env_int("EPOCHFLOW_SQLITE_WRITE_BACKOFF_BASE_MS", 5)) / 1000.0)
        max_sleep = max(base_sleep, float(_env_int("EPOCHFLOW_SQLITE_WRITE_BACKOFF_MAX_MS", 250)) / 1000.0)

        with self.connection() as con:
            attempt = 0
            while True:
                try:
                    con.execute("BEGIN IMMEDIATE;")
                    break
                except sqlite3.OperationalError as e:
                    if not self._is_locked_error(e) or _now_ms() >= deadline_ts:
                        raise
                    sleep_s = min(max_sleep, base_sleep * (2.0 ** min(attempt, 8)))
                    time.sleep(sleep_s * (0.5 + random.random()))
                    attempt += 1

            try:
                yield con
                con.execute("COMMIT;")
            except BaseException:
                con.execute("ROLLBACK;")
                raise


class SqliteStateStore:
    """Engine state snapshot + op journal persisted in SQLite.

    The authoritative snapshot is a single row; every applied op appends one
    journal row in the same write transaction as the snapshot update.
    """

    def __init__(self, *, db: SqliteDB) -> None:
        self._db = db
        self._db.init_schema()

    @property
    def db(self) -> SqliteDB:
        return self._db

    def exists(self) -> bool:
        with self._db.connection() as con:
            return con.execute("SELECT 1 FROM engine_state WHERE id=1;").fetchone() is not None

    def read(self) -> Json:
        with self._db.connection() as con:
            row = con.execute("SELECT state_json FROM engine_state WHERE id=1;").fetchone()
        if row is None:
            raise FileNotFoundError("sqlite engine_state is missing")
        st = json.loads(str(row["state_json"]))
        if not isinstance(st, dict):
            raise ValueError("engine_state is not a JSON object")
        return st

    def write(self, st: Json) -> None:
        if not isinstance(st, dict):
            raise ValueError("state write expects dict")
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            self._upsert(con, st, payload)

    @staticmethod
    def _upsert(con: sqlite3.Connection, st: Json, payload: str) -> None:
        con.execute(
            """
            INSERT INTO engine_state(id, op_seq, state_json, updated_ts_ms)
            VALUES(1, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
              op_seq=excluded.op_seq,
              state_json=excluded.state_json,
              updated_ts_ms=excluded.updated_ts_ms;
            """,
            (int(st.get("op_seq", 0)), payload, _now_ms()),
        )

    def commit_op(self, st: Json, *, envelope: Json, receipt: Json) -> None:
        """Persist the new snapshot and its journal row atomically."""
        payload = _canon_json(st)
        with self._db.write_tx() as con:
            con.execute(
                "INSERT INTO op_journal(seq, op, caller, op_ts, envelope_json, receipt_json) VALUES(?, ?, ?, ?, ?, ?);",
                (
                    int(st.get("op_seq", 0)),
                    str(envelope.get("op") or ""),
                    str(envelope.get("caller") or ""),
                    int(receipt.get("ts", 0)),
                    _canon_json(envelope),
                    _canon_json(receipt),
                ),
            )
            self._upsert(con, st, payload)

    def recent_ops(self, limit: int = 50) -> List[Json]:
        n = max(1, min(int(limit), 1000))
        with self._db.connection() as con:
            rows = con.execute(
                "SELECT seq, op, caller, op_ts, receipt_json FROM op_journal ORDER BY seq DESC LIMIT ?;", (n,)
            ).fetchall()
        return [
            {
                "seq": int(r["seq"]),
                "op": str(r["op"]),
                "caller": str(r["caller"]),
                "ts": int(r["op_ts"]),
                "receipt": json.loads(str(r["receipt_json"])),
            }
            for r in rows
        ]
