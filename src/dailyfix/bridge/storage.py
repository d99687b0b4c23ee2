# DailyFix Bridge
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of DailyFix Bridge.
#
# DailyFix Bridge is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
DailyFix Bridge -- Record Storage (v1.0.0)

Key/value upsert + query over two record kinds, both keyed by
(user_id, platform):

    accounts       -- linked platform accounts (status, credentials, connected_at)
    bridge_states  -- last recorded connect state (state, error, updated_at)

Upserts merge: columns present in the record overwrite, the rest are kept.
"""

from __future__ import annotations

import asyncio
import copy
import functools
import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger("dailyfix.bridge.storage")

ACCOUNTS = "accounts"
BRIDGE_STATES = "bridge_states"

KIND_COLUMNS: dict[str, tuple[str, ...]] = {
    ACCOUNTS: ("status", "credentials", "connected_at", "updated_at"),
    BRIDGE_STATES: ("state", "error", "updated_at"),
}
JSON_COLUMNS = frozenset({"credentials"})
KEY_COLUMNS = ("user_id", "platform")


def _check_kind(kind: str) -> tuple[str, ...]:
    try:
        return KIND_COLUMNS[kind]
    except KeyError:
        raise ValueError(f"Unknown record kind: {kind}") from None


def _check_record(kind: str, record: dict[str, Any]) -> None:
    columns = _check_kind(kind)
    for key in KEY_COLUMNS:
        if not record.get(key):
            raise ValueError(f"{kind} record is missing '{key}'")
    unknown = set(record) - set(columns) - set(KEY_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown {kind} field(s): {', '.join(sorted(unknown))}")


class RecordStore(ABC):
    """Async persistence interface used by the bridge state store."""

    @abstractmethod
    async def upsert(self, kind: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert or merge a record keyed by (user_id, platform). Returns the stored row."""
        ...

    @abstractmethod
    async def get(self, kind: str, user_id: str, platform: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def query(self, kind: str, **filters: Any) -> list[dict[str, Any]]:
        """Return every record of ``kind`` whose columns equal ``filters``."""
        ...


class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Single process, no durability."""

    def __init__(self):
        self._tables: dict[str, dict[tuple[str, str], dict[str, Any]]] = {
            kind: {} for kind in KIND_COLUMNS
        }
        self.write_count: dict[str, int] = {kind: 0 for kind in KIND_COLUMNS}

    async def upsert(self, kind: str, record: dict[str, Any]) -> dict[str, Any]:
        _check_record(kind, record)
        key = (record["user_id"], record["platform"])
        row = self._tables[kind].setdefault(key, {})
        row.update(copy.deepcopy(record))
        self.write_count[kind] += 1
        return copy.deepcopy(row)

    async def get(self, kind: str, user_id: str, platform: str) -> dict[str, Any] | None:
        _check_kind(kind)
        row = self._tables[kind].get((user_id, platform))
        return copy.deepcopy(row) if row is not None else None

    async def query(self, kind: str, **filters: Any) -> list[dict[str, Any]]:
        _check_kind(kind)
        return [
            copy.deepcopy(row)
            for row in self._tables[kind].values()
            if all(row.get(k) == v for k, v in filters.items())
        ]


class SQLiteRecordStore(RecordStore):
    """SQLite-backed store. Blocking calls run in the loop's default executor."""

    def __init__(self, db_path: str | None = None):
        self.db_path = db_path or str(Path.home() / ".dailyfix" / "bridge.db")
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Create the accounts and bridge_states tables if they don't exist."""
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    user_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    credentials TEXT NOT NULL DEFAULT '{}',
                    connected_at TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, platform)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS bridge_states (
                    user_id TEXT NOT NULL,
                    platform TEXT NOT NULL,
                    state TEXT NOT NULL,
                    error TEXT,
                    updated_at TEXT,
                    PRIMARY KEY (user_id, platform)
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_accounts_status
                ON accounts (platform, status)
            """)
            conn.commit()
        finally:
            conn.close()

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args, **kwargs))

    @staticmethod
    def _encode(record: dict[str, Any]) -> dict[str, Any]:
        return {
            k: json.dumps(v) if k in JSON_COLUMNS else v for k, v in record.items()
        }

    @staticmethod
    def _decode(row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        for col in JSON_COLUMNS:
            if col in data and data[col] is not None:
                data[col] = json.loads(data[col])
        return data

    def _upsert_sync(self, kind: str, record: dict[str, Any]) -> dict[str, Any]:
        encoded = self._encode(record)
        cols = list(encoded)
        updates = [c for c in cols if c not in KEY_COLUMNS]
        sql = (
            f"INSERT INTO {kind} ({', '.join(cols)}) "
            f"VALUES ({', '.join('?' for _ in cols)}) "
            f"ON CONFLICT (user_id, platform) DO "
        )
        if updates:
            sql += "UPDATE SET " + ", ".join(f"{c} = excluded.{c}" for c in updates)
        else:
            sql += "NOTHING"

        conn = self._connect()
        try:
            conn.execute(sql, [encoded[c] for c in cols])
            conn.commit()
            row = conn.execute(
                f"SELECT * FROM {kind} WHERE user_id = ? AND platform = ?",
                (record["user_id"], record["platform"]),
            ).fetchone()
        finally:
            conn.close()
        return self._decode(row)

    def _query_sync(self, kind: str, filters: dict[str, Any]) -> list[dict[str, Any]]:
        allowed = set(KIND_COLUMNS[kind]) | set(KEY_COLUMNS)
        unknown = set(filters) - allowed
        if unknown:
            raise ValueError(f"Unknown {kind} filter(s): {', '.join(sorted(unknown))}")
        sql = f"SELECT * FROM {kind}"
        params: list[Any] = []
        if filters:
            clauses = []
            for col, value in filters.items():
                if value is None:
                    clauses.append(f"{col} IS NULL")
                else:
                    clauses.append(f"{col} = ?")
                    params.append(json.dumps(value) if col in JSON_COLUMNS else value)
            sql += " WHERE " + " AND ".join(clauses)

        conn = self._connect()
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()
        return [self._decode(r) for r in rows]

    async def upsert(self, kind: str, record: dict[str, Any]) -> dict[str, Any]:
        _check_record(kind, record)
        return await self._run(self._upsert_sync, kind, record)

    async def get(self, kind: str, user_id: str, platform: str) -> dict[str, Any] | None:
        _check_kind(kind)
        rows = await self._run(
            self._query_sync, kind, {"user_id": user_id, "platform": platform}
        )
        return rows[0] if rows else None

    async def query(self, kind: str, **filters: Any) -> list[dict[str, Any]]:
        _check_kind(kind)
        return await self._run(self._query_sync, kind, filters)
