"""Async SQLite store for sync checkpoints.

Only continuation tokens and pull bookkeeping are kept here; synchronized
entities are left to the caller.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from deltasync.storage.models import Checkpoint, PullRun

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS sync_checkpoint (
    client_name TEXT PRIMARY KEY,
    sync_token TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pull_runs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    client_name TEXT NOT NULL,
    started_at TEXT NOT NULL,
    finished_at TEXT,
    status TEXT NOT NULL CHECK(status IN (
        'running', 'completed', 'limited', 'failed', 'cancelled'
    )),
    pages_fetched INTEGER NOT NULL DEFAULT 0,
    error_message TEXT
);
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async SQLite wrapper holding checkpoints and pull history."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn: aiosqlite.Connection | None = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            msg = "Database not connected. Call connect() first."
            raise RuntimeError(msg)
        return self._conn

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self.path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> Database:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- sync_checkpoint ------------------------------------------------------

    async def save_checkpoint(self, client_name: str, sync_token: str) -> Checkpoint:
        if not sync_token.strip():
            msg = "Refusing to store a blank sync token"
            raise ValueError(msg)
        cur = await self.conn.execute(
            """
            INSERT INTO sync_checkpoint (client_name, sync_token, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT (client_name) DO UPDATE SET
                sync_token = excluded.sync_token,
                updated_at = excluded.updated_at
            RETURNING *
            """,
            (client_name, sync_token, _now_iso()),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_checkpoint(row)

    async def get_checkpoint(self, client_name: str) -> Checkpoint | None:
        cur = await self.conn.execute(
            "SELECT * FROM sync_checkpoint WHERE client_name = ?", (client_name,)
        )
        row = await cur.fetchone()
        return self._row_to_checkpoint(row) if row else None

    async def list_checkpoints(self) -> list[Checkpoint]:
        cur = await self.conn.execute("SELECT * FROM sync_checkpoint ORDER BY client_name")
        rows = await cur.fetchall()
        return [self._row_to_checkpoint(r) for r in rows]

    async def delete_checkpoint(self, client_name: str) -> bool:
        cur = await self.conn.execute(
            "DELETE FROM sync_checkpoint WHERE client_name = ?", (client_name,)
        )
        await self.conn.commit()
        return cur.rowcount > 0

    # -- pull_runs ------------------------------------------------------------

    async def start_run(self, client_name: str) -> PullRun:
        cur = await self.conn.execute(
            """
            INSERT INTO pull_runs (client_name, started_at, status)
            VALUES (?, ?, 'running')
            RETURNING *
            """,
            (client_name, _now_iso()),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_pull_run(row)

    async def finish_run(
        self,
        run_id: int,
        *,
        status: str,
        pages_fetched: int,
        error_message: str | None = None,
    ) -> PullRun:
        cur = await self.conn.execute(
            """
            UPDATE pull_runs SET finished_at = ?, status = ?, pages_fetched = ?, error_message = ?
            WHERE id = ?
            RETURNING *
            """,
            (_now_iso(), status, pages_fetched, error_message, run_id),
        )
        row = await cur.fetchone()
        await self.conn.commit()
        return self._row_to_pull_run(row)

    async def get_recent_runs(self, client_name: str | None = None, *, limit: int = 20) -> list[PullRun]:
        if client_name is None:
            cur = await self.conn.execute(
                "SELECT * FROM pull_runs ORDER BY id DESC LIMIT ?", (limit,)
            )
        else:
            cur = await self.conn.execute(
                "SELECT * FROM pull_runs WHERE client_name = ? ORDER BY id DESC LIMIT ?",
                (client_name, limit),
            )
        rows = await cur.fetchall()
        return [self._row_to_pull_run(r) for r in rows]

    # -- row → model helpers --------------------------------------------------

    @staticmethod
    def _row_to_checkpoint(row: aiosqlite.Row) -> Checkpoint:
        return Checkpoint(
            client_name=row["client_name"],
            sync_token=row["sync_token"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_pull_run(row: aiosqlite.Row) -> PullRun:
        return PullRun(
            id=row["id"],
            client_name=row["client_name"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            status=row["status"],
            pages_fetched=row["pages_fetched"],
            error_message=row["error_message"],
        )
