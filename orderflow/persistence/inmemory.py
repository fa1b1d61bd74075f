"""In-memory implementation of the orderflow repositories."""

from __future__ import annotations

import asyncio
from typing import Dict, Optional

from ..contracts import ProgressRecord, WorkflowDefinition
from ..errors import VersionConflict
from .repository import OrderflowRepository


class InMemoryRepository(OrderflowRepository):
    """Store definitions and progress in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._progress: Dict[str, ProgressRecord] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Workflow definitions
    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(workflow_id)
        if definition is None:
            definition = next(
                (d for d in self._definitions.values() if d.slug == workflow_id), None
            )
        return definition.model_copy(deep=True) if definition else None

    async def get_default_definition(self) -> WorkflowDefinition | None:
        for definition in self._definitions.values():
            if definition.is_default and definition.is_active:
                return definition.model_copy(deep=True)
        return None

    async def list_definitions(self) -> list[WorkflowDefinition]:
        return [d.model_copy(deep=True) for d in self._definitions.values()]

    async def put_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def delete_definition(self, workflow_id: str) -> None:
        self._definitions.pop(workflow_id, None)

    # ------------------------------------------------------------------
    # Progress records
    async def get_progress(self, order_id: str) -> ProgressRecord | None:
        record = self._progress.get(order_id)
        return record.model_copy(deep=True) if record else None

    async def create_progress_if_absent(self, record: ProgressRecord) -> ProgressRecord:
        async with self._lock:
            existing = self._progress.get(record.order_id)
            if existing is None:
                existing = record.model_copy(deep=True)
                self._progress[record.order_id] = existing
        return existing.model_copy(deep=True)

    async def save_progress(self, record: ProgressRecord, expected_version: int) -> None:
        async with self._lock:
            stored = self._progress.get(record.order_id)
            if stored is None or stored.version != expected_version:
                raise VersionConflict(record.order_id, expected_version)
            self._progress[record.order_id] = record.model_copy(deep=True)

    async def list_progress(self, workflow_id: Optional[str] = None) -> list[ProgressRecord]:
        return [
            r.model_copy(deep=True)
            for r in self._progress.values()
            if workflow_id is None or r.workflow_id == workflow_id
        ]

    async def occupied_stage_ids(self, workflow_id: str) -> set[str]:
        return {
            r.current_stage_id
            for r in self._progress.values()
            if r.workflow_id == workflow_id
        }

    async def count_progress(self, workflow_id: str) -> int:
        return sum(1 for r in self._progress.values() if r.workflow_id == workflow_id)
