"""Repository abstractions for workflow definitions and progress records."""

from __future__ import annotations

from typing import Optional, Protocol

from ..contracts import ProgressRecord, WorkflowDefinition


class WorkflowDefinitionRepository(Protocol):
    """Protocol for workflow definition persistence backends."""

    async def get_definition(self, workflow_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id or slug."""

    async def get_default_definition(self) -> WorkflowDefinition | None:
        """Retrieve the active definition flagged as default."""

    async def list_definitions(self) -> list[WorkflowDefinition]:
        """Return all persisted definitions."""

    async def put_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition."""

    async def delete_definition(self, workflow_id: str) -> None:
        """Remove a definition."""


class ProgressRepository(Protocol):
    """Protocol for progress record persistence backends.

    ``save_progress`` is the only mutation of an existing record and must be a
    compare-and-swap on ``version``.
    """

    async def get_progress(self, order_id: str) -> ProgressRecord | None:
        """Retrieve the progress record of an order."""

    async def create_progress_if_absent(self, record: ProgressRecord) -> ProgressRecord:
        """Insert ``record`` unless one exists; return the stored record."""

    async def save_progress(self, record: ProgressRecord, expected_version: int) -> None:
        """Persist ``record`` if the stored version equals ``expected_version``.

        Raises:
            VersionConflict: If another writer got there first.
        """

    async def list_progress(self, workflow_id: Optional[str] = None) -> list[ProgressRecord]:
        """Return progress records, optionally filtered by workflow."""

    async def occupied_stage_ids(self, workflow_id: str) -> set[str]:
        """Stage ids currently occupied by orders on ``workflow_id``."""

    async def count_progress(self, workflow_id: str) -> int:
        """Number of records referencing ``workflow_id``."""


class OrderflowRepository(WorkflowDefinitionRepository, ProgressRepository, Protocol):
    """A backend storing both definitions and progress records."""
