"""PostgreSQL implementation of the orderflow repositories."""

from __future__ import annotations

from typing import Iterable, Optional

import asyncpg
from asyncpg.transaction import Transaction

from ..contracts import ProgressRecord, TransitionRecord, WorkflowDefinition
from ..errors import VersionConflict
from .repository import OrderflowRepository


class PostgresRepository(OrderflowRepository):
    """Persist definitions and progress using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                slug TEXT,
                is_default BOOLEAN NOT NULL DEFAULT FALSE,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                body JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS progress_records (
                order_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                current_stage_id TEXT NOT NULL,
                auto_sync_enabled BOOLEAN NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS transition_history (
                id SERIAL PRIMARY KEY,
                order_id TEXT NOT NULL,
                seq INTEGER NOT NULL,
                from_stage_id TEXT,
                to_stage_id TEXT NOT NULL,
                source TEXT NOT NULL,
                is_override BOOLEAN NOT NULL,
                reason TEXT,
                actor_id TEXT,
                notes TEXT,
                occurred_at TIMESTAMPTZ NOT NULL,
                UNIQUE (order_id, seq)
            )
            """
        )

    @staticmethod
    async def _insert_history(
        conn: asyncpg.Connection,
        order_id: str,
        entries: Iterable[TransitionRecord],
        start: int,
    ) -> None:
        await conn.executemany(
            """
            INSERT INTO transition_history (
                order_id, seq, from_stage_id, to_stage_id, source,
                is_override, reason, actor_id, notes, occurred_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
            """,
            [
                (
                    order_id,
                    seq,
                    e.from_stage_id,
                    e.to_stage_id,
                    e.source.value,
                    e.is_override,
                    e.reason,
                    e.actor_id,
                    e.notes,
                    e.occurred_at,
                )
                for seq, e in enumerate(entries, start=start)
            ],
        )

    @staticmethod
    def _snapshot(conn: asyncpg.Connection) -> Transaction:
        # a record row and its history must come from the same snapshot
        return conn.transaction(isolation="repeatable_read", readonly=True)

    @staticmethod
    async def _load_progress(conn: asyncpg.Connection, row: asyncpg.Record) -> ProgressRecord:
        history_rows = await conn.fetch(
            """
            SELECT from_stage_id, to_stage_id, source, is_override, reason,
                   actor_id, notes, occurred_at
            FROM transition_history WHERE order_id = $1 ORDER BY seq
            """,
            row["order_id"],
        )
        return ProgressRecord(
            order_id=row["order_id"],
            workflow_id=row["workflow_id"],
            current_stage_id=row["current_stage_id"],
            auto_sync_enabled=row["auto_sync_enabled"],
            version=row["version"],
            history=[TransitionRecord(**dict(h)) for h in history_rows],
        )

    # ------------------------------------------------------------------
    # Workflow definitions
    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            body = await conn.fetchval(
                """
                SELECT body::text FROM workflow_definitions
                WHERE id = $1 OR slug = $1 ORDER BY (id = $1) DESC LIMIT 1
                """,
                workflow_id,
            )
        finally:
            await conn.close()
        return WorkflowDefinition.model_validate_json(body) if body else None

    async def get_default_definition(self) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            body = await conn.fetchval(
                "SELECT body::text FROM workflow_definitions WHERE is_default AND is_active LIMIT 1"
            )
        finally:
            await conn.close()
        return WorkflowDefinition.model_validate_json(body) if body else None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT body::text AS body FROM workflow_definitions ORDER BY id"
            )
        finally:
            await conn.close()
        return [WorkflowDefinition.model_validate_json(r["body"]) for r in rows]

    async def put_definition(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_definitions (id, slug, is_default, is_active, body)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    slug = EXCLUDED.slug,
                    is_default = EXCLUDED.is_default,
                    is_active = EXCLUDED.is_active,
                    body = EXCLUDED.body
                """,
                definition.id,
                definition.slug,
                definition.is_default,
                definition.is_active,
                definition.model_dump_json(),
            )
        finally:
            await conn.close()

    async def delete_definition(self, workflow_id: str) -> None:
        conn = await self._connect()
        try:
            await conn.execute("DELETE FROM workflow_definitions WHERE id = $1", workflow_id)
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    # Progress records
    async def get_progress(self, order_id: str) -> ProgressRecord | None:
        conn = await self._connect()
        try:
            async with self._snapshot(conn):
                row = await conn.fetchrow(
                    "SELECT * FROM progress_records WHERE order_id = $1", order_id
                )
                if not row:
                    return None
                return await self._load_progress(conn, row)
        finally:
            await conn.close()

    async def create_progress_if_absent(self, record: ProgressRecord) -> ProgressRecord:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    INSERT INTO progress_records
                        (order_id, workflow_id, current_stage_id, auto_sync_enabled, version)
                    VALUES ($1, $2, $3, $4, $5)
                    ON CONFLICT (order_id) DO NOTHING
                    """,
                    record.order_id,
                    record.workflow_id,
                    record.current_stage_id,
                    record.auto_sync_enabled,
                    record.version,
                )
                if status.endswith(" 1"):
                    await self._insert_history(conn, record.order_id, record.history, start=0)
            async with self._snapshot(conn):
                row = await conn.fetchrow(
                    "SELECT * FROM progress_records WHERE order_id = $1", record.order_id
                )
                return await self._load_progress(conn, row)
        finally:
            await conn.close()

    async def save_progress(self, record: ProgressRecord, expected_version: int) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE progress_records
                    SET workflow_id = $1, current_stage_id = $2,
                        auto_sync_enabled = $3, version = $4
                    WHERE order_id = $5 AND version = $6
                    """,
                    record.workflow_id,
                    record.current_stage_id,
                    record.auto_sync_enabled,
                    record.version,
                    record.order_id,
                    expected_version,
                )
                if status != "UPDATE 1":
                    raise VersionConflict(record.order_id, expected_version)
                stored = await conn.fetchval(
                    "SELECT COUNT(*) FROM transition_history WHERE order_id = $1",
                    record.order_id,
                )
                await self._insert_history(
                    conn, record.order_id, record.history[stored:], start=stored
                )
        finally:
            await conn.close()

    async def list_progress(self, workflow_id: Optional[str] = None) -> list[ProgressRecord]:
        conn = await self._connect()
        try:
            async with self._snapshot(conn):
                if workflow_id is None:
                    rows = await conn.fetch("SELECT * FROM progress_records ORDER BY order_id")
                else:
                    rows = await conn.fetch(
                        "SELECT * FROM progress_records WHERE workflow_id = $1 ORDER BY order_id",
                        workflow_id,
                    )
                return [await self._load_progress(conn, r) for r in rows]
        finally:
            await conn.close()

    async def occupied_stage_ids(self, workflow_id: str) -> set[str]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT DISTINCT current_stage_id FROM progress_records WHERE workflow_id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        return {r["current_stage_id"] for r in rows}

    async def count_progress(self, workflow_id: str) -> int:
        conn = await self._connect()
        try:
            count = await conn.fetchval(
                "SELECT COUNT(*) FROM progress_records WHERE workflow_id = $1", workflow_id
            )
        finally:
            await conn.close()
        return int(count or 0)
