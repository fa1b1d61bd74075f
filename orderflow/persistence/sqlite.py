"""SQLite implementation of the orderflow repositories."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

from ..contracts import ProgressRecord, TransitionRecord, WorkflowDefinition
from ..errors import VersionConflict
from .repository import OrderflowRepository


class SQLiteRepository(OrderflowRepository):
    """Persist definitions and progress using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # one connection is shared by worker threads; transactions and reads of a
        # record plus its history must not interleave
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                slug TEXT,
                is_default INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                body TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS progress_records (
                order_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                current_stage_id TEXT NOT NULL,
                auto_sync_enabled INTEGER NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transition_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                order_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                from_stage_id TEXT,
                to_stage_id TEXT NOT NULL,
                source TEXT NOT NULL,
                is_override INTEGER NOT NULL,
                reason TEXT,
                actor_id TEXT,
                notes TEXT,
                occurred_at TEXT NOT NULL,
                UNIQUE (order_id, seq)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    @staticmethod
    def _insert_history(
        cur: sqlite3.Cursor, order_id: str, entries: Iterable[TransitionRecord], start: int
    ) -> None:
        for seq, entry in enumerate(entries, start=start):
            cur.execute(
                """
                INSERT INTO transition_history (
                    order_id, seq, from_stage_id, to_stage_id, source,
                    is_override, reason, actor_id, notes, occurred_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order_id,
                    seq,
                    entry.from_stage_id,
                    entry.to_stage_id,
                    entry.source.value,
                    int(entry.is_override),
                    entry.reason,
                    entry.actor_id,
                    entry.notes,
                    entry.occurred_at.isoformat(),
                ),
            )

    def _insert_if_absent(self, record: ProgressRecord) -> ProgressRecord:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    """
                    INSERT OR IGNORE INTO progress_records
                        (order_id, workflow_id, current_stage_id, auto_sync_enabled, version)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.order_id,
                        record.workflow_id,
                        record.current_stage_id,
                        int(record.auto_sync_enabled),
                        record.version,
                    ),
                )
                if cur.rowcount == 1:
                    self._insert_history(cur, record.order_id, record.history, start=0)
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise
            row = self._fetchone(
                "SELECT * FROM progress_records WHERE order_id = ?", record.order_id
            )
            return self._load_progress(row)

    def _compare_and_swap(self, record: ProgressRecord, expected_version: int) -> None:
        with self._lock:
            cur = self._conn.cursor()
            try:
                cur.execute(
                    """
                    UPDATE progress_records
                    SET workflow_id = ?, current_stage_id = ?, auto_sync_enabled = ?, version = ?
                    WHERE order_id = ? AND version = ?
                    """,
                    (
                        record.workflow_id,
                        record.current_stage_id,
                        int(record.auto_sync_enabled),
                        record.version,
                        record.order_id,
                        expected_version,
                    ),
                )
                if cur.rowcount != 1:
                    raise VersionConflict(record.order_id, expected_version)
                cur.execute(
                    "SELECT COUNT(*) FROM transition_history WHERE order_id = ?",
                    (record.order_id,),
                )
                stored = cur.fetchone()[0]
                self._insert_history(
                    cur, record.order_id, record.history[stored:], start=stored
                )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _load_progress(self, row: sqlite3.Row) -> ProgressRecord:
        history_rows = self._fetchall(
            """
            SELECT from_stage_id, to_stage_id, source, is_override, reason,
                   actor_id, notes, occurred_at
            FROM transition_history WHERE order_id = ? ORDER BY seq
            """,
            row["order_id"],
        )
        history = [
            TransitionRecord(
                from_stage_id=h["from_stage_id"],
                to_stage_id=h["to_stage_id"],
                source=h["source"],
                is_override=bool(h["is_override"]),
                reason=h["reason"],
                actor_id=h["actor_id"],
                notes=h["notes"],
                occurred_at=datetime.fromisoformat(h["occurred_at"]),
            )
            for h in history_rows
        ]
        return ProgressRecord(
            order_id=row["order_id"],
            workflow_id=row["workflow_id"],
            current_stage_id=row["current_stage_id"],
            auto_sync_enabled=bool(row["auto_sync_enabled"]),
            history=history,
            version=row["version"],
        )

    def _get_progress(self, order_id: str) -> ProgressRecord | None:
        with self._lock:
            row = self._fetchone(
                "SELECT * FROM progress_records WHERE order_id = ?", order_id
            )
            return self._load_progress(row) if row else None

    def _list_progress(self, workflow_id: Optional[str]) -> list[ProgressRecord]:
        with self._lock:
            if workflow_id is None:
                rows = self._fetchall("SELECT * FROM progress_records ORDER BY order_id")
            else:
                rows = self._fetchall(
                    "SELECT * FROM progress_records WHERE workflow_id = ? ORDER BY order_id",
                    workflow_id,
                )
            return [self._load_progress(r) for r in rows]

    # ------------------------------------------------------------------
    # Workflow definitions
    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM workflow_definitions WHERE id = ? OR slug = ? ORDER BY id = ? DESC LIMIT 1",
            workflow_id,
            workflow_id,
            workflow_id,
        )
        return WorkflowDefinition.model_validate_json(row["body"]) if row else None

    async def get_default_definition(self) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT body FROM workflow_definitions WHERE is_default = 1 AND is_active = 1 LIMIT 1",
        )
        return WorkflowDefinition.model_validate_json(row["body"]) if row else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT body FROM workflow_definitions ORDER BY id"
        )
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    async def put_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_definitions (id, slug, is_default, is_active, body)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                slug = excluded.slug,
                is_default = excluded.is_default,
                is_active = excluded.is_active,
                body = excluded.body
            """,
            definition.id,
            definition.slug,
            int(definition.is_default),
            int(definition.is_active),
            definition.model_dump_json(),
        )

    async def delete_definition(self, workflow_id: str) -> None:
        await asyncio.to_thread(
            self._execute, "DELETE FROM workflow_definitions WHERE id = ?", workflow_id
        )

    # ------------------------------------------------------------------
    # Progress records
    async def get_progress(self, order_id: str) -> ProgressRecord | None:
        return await asyncio.to_thread(self._get_progress, order_id)

    async def create_progress_if_absent(self, record: ProgressRecord) -> ProgressRecord:
        return await asyncio.to_thread(self._insert_if_absent, record)

    async def save_progress(self, record: ProgressRecord, expected_version: int) -> None:
        await asyncio.to_thread(self._compare_and_swap, record, expected_version)

    async def list_progress(self, workflow_id: Optional[str] = None) -> list[ProgressRecord]:
        return await asyncio.to_thread(self._list_progress, workflow_id)

    async def occupied_stage_ids(self, workflow_id: str) -> set[str]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT DISTINCT current_stage_id FROM progress_records WHERE workflow_id = ?",
            workflow_id,
        )
        return {r["current_stage_id"] for r in rows}

    async def count_progress(self, workflow_id: str) -> int:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT COUNT(*) AS n FROM progress_records WHERE workflow_id = ?",
            workflow_id,
        )
        return int(row["n"]) if row else 0
