"""Workflow definition store."""

from __future__ import annotations

import logging
from typing import List

from .contracts import Stage, WorkflowDefinition, utcnow
from .errors import NotFound, StageInUse, UnknownStage, WorkflowExists, WorkflowInUse
from .persistence.repository import ProgressRepository, WorkflowDefinitionRepository
from .templates import default_templates

logger = logging.getLogger(__name__)


class WorkflowCatalog:
    """Named, versioned workflow templates.

    Definitions are read-mostly. Updates are checked against live progress
    records so that no order is left on a stage that disappeared or moved.
    """

    def __init__(
        self,
        definitions: WorkflowDefinitionRepository,
        progress: ProgressRepository,
    ) -> None:
        self._definitions = definitions
        self._progress = progress

    async def get(self, workflow_id: str) -> WorkflowDefinition:
        """Return the definition with id or slug ``workflow_id``."""
        definition = await self._definitions.get_definition(workflow_id)
        if definition is None:
            raise NotFound(f"Workflow {workflow_id!r} not found")
        return definition

    async def get_default(self) -> WorkflowDefinition:
        definition = await self._definitions.get_default_definition()
        if definition is None:
            raise NotFound("No default workflow configured")
        return definition

    async def list(self, include_inactive: bool = False) -> List[WorkflowDefinition]:
        """Definitions ordered default first, then by name."""
        definitions = await self._definitions.list_definitions()
        if not include_inactive:
            definitions = [d for d in definitions if d.is_active]
        return sorted(definitions, key=lambda d: (not d.is_default, d.name))

    async def stage_at(self, workflow_id: str, stage_id: str) -> Stage:
        definition = await self.get(workflow_id)
        stage = definition.stage(stage_id)
        if stage is None:
            raise UnknownStage(definition.id, stage_id)
        return stage

    async def create(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        if await self._definitions.get_definition(definition.id) is not None:
            raise WorkflowExists(f"Workflow {definition.id!r} already exists")
        if definition.is_default:
            await self._clear_default(except_id=definition.id)
        await self._definitions.put_definition(definition)
        logger.info(f"Created workflow {definition.id} with {len(definition.stages)} stages")
        return definition

    async def update(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        """Replace a definition, bumping its revision.

        Raises:
            StageInUse: If a stage occupied by a live order would be removed
                or moved to another index.
        """
        existing = await self.get(definition.id)
        occupied = await self._progress.occupied_stage_ids(existing.id)
        blocked = set()
        for stage_id in occupied:
            old = existing.stage(stage_id)
            new = definition.stage(stage_id)
            if old is None:
                continue
            if new is None or new.index != old.index:
                blocked.add(stage_id)
        if blocked:
            raise StageInUse(existing.id, blocked)

        if definition.is_default and not existing.is_default:
            await self._clear_default(except_id=definition.id)
        updated = definition.model_copy(
            update={
                "revision": existing.revision + 1,
                "created_at": existing.created_at,
                "updated_at": utcnow(),
            }
        )
        await self._definitions.put_definition(updated)
        logger.info(f"Updated workflow {updated.id} to revision {updated.revision}")
        return updated

    async def delete(self, workflow_id: str) -> None:
        definition = await self.get(workflow_id)
        in_use = await self._progress.count_progress(definition.id)
        if in_use:
            raise WorkflowInUse(
                f"Cannot delete workflow {definition.id!r}: {in_use} orders are using it"
            )
        await self._definitions.delete_definition(definition.id)

    async def duplicate(
        self, workflow_id: str, new_id: str, new_name: str, new_slug: str | None = None
    ) -> WorkflowDefinition:
        base = await self.get(workflow_id)
        copy = WorkflowDefinition(
            id=new_id,
            name=new_name,
            slug=new_slug or new_id,
            description=base.description,
            stages=[s.model_copy(deep=True) for s in base.stages],
            is_default=False,
            is_active=True,
            external_sync_enabled=base.external_sync_enabled,
        )
        return await self.create(copy)

    async def seed_defaults(self) -> List[WorkflowDefinition]:
        """Install the built-in templates that are not stored yet."""
        created = []
        has_default = await self._definitions.get_default_definition() is not None
        for template in default_templates():
            if await self._definitions.get_definition(template.id) is not None:
                continue
            if has_default:
                template.is_default = False
            created.append(await self.create(template))
        return created

    async def _clear_default(self, except_id: str) -> None:
        for other in await self._definitions.list_definitions():
            if other.is_default and other.id != except_id:
                other.is_default = False
                await self._definitions.put_definition(other)
