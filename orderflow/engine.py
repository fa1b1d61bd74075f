"""Transition engine: the order progress state machine.

Every change to a progress record goes through ``_guarded_write``: load the
record, plan the change against the workflow definition, then save with the
version that was read. A lost race raises ``VersionConflict`` from the store
and the whole load/plan/save cycle runs again against the fresh record, up to
``max_attempts`` times.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from pydantic import BaseModel

from .catalog import WorkflowCatalog
from .config import EngineConfig
from .constants import DEFAULT_MAX_TRANSITION_ATTEMPTS
from .contracts import (
    ProgressRecord,
    Stage,
    TransitionOptions,
    TransitionRecord,
    TransitionSource,
    WorkflowDefinition,
)
from .directory import OrderDirectory
from .errors import (
    AlreadyTerminal,
    Conflict,
    InvalidTransition,
    MissingReason,
    NoChange,
    NotFound,
    UnknownStage,
    VersionConflict,
    WorkflowLocked,
)
from .persistence.repository import ProgressRepository
from .utils.retry import schedule_retry

logger = logging.getLogger(__name__)

INIT_NOTE = "Order created - workflow initialized"

Plan = Callable[
    [Optional[ProgressRecord]],
    Awaitable[Tuple[ProgressRecord, Optional[ProgressRecord]]],
]
TargetResolver = Callable[[WorkflowDefinition, Stage], Optional[Stage]]


class TransitionKind(str, Enum):
    """Which caller-facing policy a transition request follows."""

    TRANSITION = "transition"
    ADVANCE = "advance"
    SKIP = "skip"
    REVERT = "revert"


class TransitionResult(BaseModel):
    """Record after a request, and whether a transition was appended."""

    record: ProgressRecord
    applied: bool
    previous_stage_id: Optional[str] = None


class TransitionEngine:
    """Validates and applies stage changes for orders."""

    def __init__(
        self,
        repository: ProgressRepository,
        catalog: WorkflowCatalog,
        directory: OrderDirectory,
        max_attempts: int = DEFAULT_MAX_TRANSITION_ATTEMPTS,
        backoff_base: float = 0.0,
        backoff_factor: float = 2.0,
    ) -> None:
        self._repository = repository
        self._catalog = catalog
        self._directory = directory
        self._max_attempts = max_attempts
        self._backoff_base = backoff_base
        self._backoff_factor = backoff_factor

    @classmethod
    def from_config(
        cls,
        repository: ProgressRepository,
        catalog: WorkflowCatalog,
        directory: OrderDirectory,
        config: EngineConfig,
    ) -> "TransitionEngine":
        return cls(
            repository,
            catalog,
            directory,
            max_attempts=config.max_attempts,
            backoff_base=config.backoff_base,
            backoff_factor=config.backoff_factor,
        )

    # ------------------------------------------------------------------
    # Record lifecycle
    async def get(self, order_id: str) -> ProgressRecord:
        record = await self._repository.get_progress(order_id)
        if record is None:
            raise NotFound(f"No progress record for order {order_id!r}")
        return record

    async def initialize(self, order_id: str) -> ProgressRecord:
        """Create the order's progress record at the first stage of its workflow.

        Idempotent: an existing record is returned untouched.
        """
        existing = await self._repository.get_progress(order_id)
        if existing is not None:
            return existing
        if not await self._directory.order_exists(order_id):
            raise NotFound(f"Order {order_id!r} not found")
        workflow_id = await self._directory.get_assigned_or_default_workflow_id(order_id)
        definition = await self._catalog.get(workflow_id)
        record = await self._repository.create_progress_if_absent(
            self._initial_record(order_id, definition, INIT_NOTE)
        )
        logger.info(
            f"Initialized order {order_id} on workflow {record.workflow_id} "
            f"at stage {record.current_stage_id}"
        )
        return record

    async def assign_workflow(self, order_id: str, workflow_id: str) -> ProgressRecord:
        """Put the order on ``workflow_id``.

        Only allowed before the order leaves the first stage of its current
        workflow; afterwards stage ids of the two definitions could collide.
        """
        definition = await self._catalog.get(workflow_id)

        async def plan(record: Optional[ProgressRecord]):
            if record is None:
                if not await self._directory.order_exists(order_id):
                    raise NotFound(f"Order {order_id!r} not found")
                record = await self._repository.create_progress_if_absent(
                    self._initial_record(
                        order_id, definition, f"Workflow {definition.name} assigned"
                    )
                )
            if record.workflow_id == definition.id:
                return record, None
            current_definition = await self._catalog.get(record.workflow_id)
            if record.current_stage_id != current_definition.first_stage.id:
                raise WorkflowLocked(
                    f"Order {order_id!r} already left the first stage of "
                    f"workflow {record.workflow_id!r}"
                )
            entry = TransitionRecord(
                from_stage_id=record.current_stage_id,
                to_stage_id=definition.first_stage.id,
                source=TransitionSource.SYSTEM_INIT,
                notes=f"Workflow reassigned from {record.workflow_id} to {definition.id}",
            )
            return record, self._append(record, entry, workflow_id=definition.id)

        record, _ = await self._guarded_write(order_id, plan, "assign_workflow")
        return record

    async def set_auto_sync(self, order_id: str, enabled: bool) -> ProgressRecord:
        """Toggle carrier auto-sync. Not a transition: history is untouched."""

        async def plan(record: Optional[ProgressRecord]):
            if record is None:
                raise NotFound(f"No progress record for order {order_id!r}")
            if record.auto_sync_enabled == enabled:
                return record, None
            return record, record.model_copy(
                update={"auto_sync_enabled": enabled, "version": record.version + 1}
            )

        record, _ = await self._guarded_write(order_id, plan, "set_auto_sync")
        return record

    # ------------------------------------------------------------------
    # Transitions
    async def apply_transition(
        self,
        order_id: str,
        target_stage_id: str,
        source: TransitionSource,
        options: Optional[TransitionOptions] = None,
    ) -> ProgressRecord:
        """Move the order to ``target_stage_id`` under the policy for ``source``."""
        result = await self.apply(order_id, target_stage_id, source, options)
        return result.record

    async def apply(
        self,
        order_id: str,
        target_stage_id: str,
        source: TransitionSource,
        options: Optional[TransitionOptions] = None,
        kind: TransitionKind = TransitionKind.TRANSITION,
    ) -> TransitionResult:
        return await self._transition(
            order_id,
            source,
            options or TransitionOptions(),
            kind,
            lambda definition, current: self._resolve(definition, target_stage_id),
        )

    async def transition(
        self,
        order_id: str,
        stage_id: str,
        actor_id: Optional[str] = None,
        is_override: bool = False,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        options = TransitionOptions(
            is_override=is_override,
            reason=reason,
            actor_id=actor_id,
            notes=notes,
            initialize=True,
        )
        return await self.apply(order_id, stage_id, TransitionSource.MANUAL, options)

    async def advance(
        self, order_id: str, actor_id: Optional[str] = None, notes: Optional[str] = None
    ) -> TransitionResult:
        """Move to the stage right after the one the first attempt read.

        A retry whose fresh record already sits at or past that stage leaves
        the record alone, so two racing advances move the order once.
        """
        options = TransitionOptions(actor_id=actor_id, notes=notes)
        intended: Optional[Tuple[str, str]] = None

        def resolve(definition: WorkflowDefinition, current: Stage) -> Optional[Stage]:
            nonlocal intended
            if intended is not None and intended[0] == definition.id:
                reached = definition.stage(intended[1])
                if reached is not None and definition.position(current) >= definition.position(
                    reached
                ):
                    logger.info(
                        f"Order {order_id} already at {current.id}; dropping stale advance"
                    )
                    return None
            target = _next_stage(definition, current)
            intended = (definition.id, target.id)
            return target

        return await self._transition(
            order_id, TransitionSource.MANUAL, options, TransitionKind.ADVANCE, resolve
        )

    async def skip(
        self,
        order_id: str,
        target_stage_id: str,
        reason: Optional[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        options = TransitionOptions(
            is_override=True, reason=reason, actor_id=actor_id, notes=notes, initialize=True
        )
        return await self.apply(
            order_id, target_stage_id, TransitionSource.MANUAL, options, TransitionKind.SKIP
        )

    async def revert(
        self,
        order_id: str,
        target_stage_id: str,
        reason: Optional[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        options = TransitionOptions(
            is_override=True, reason=reason, actor_id=actor_id, notes=notes
        )
        return await self.apply(
            order_id, target_stage_id, TransitionSource.MANUAL, options, TransitionKind.REVERT
        )

    async def sync(
        self, order_id: str, target_stage_id: str, notes: Optional[str] = None
    ) -> TransitionResult:
        """Forward-only move requested by the carrier event reconciler."""
        return await self.apply(
            order_id,
            target_stage_id,
            TransitionSource.AUTOMATIC_SYNC,
            TransitionOptions(notes=notes),
        )

    # ------------------------------------------------------------------
    # Internals
    async def _transition(
        self,
        order_id: str,
        source: TransitionSource,
        options: TransitionOptions,
        kind: TransitionKind,
        resolve: TargetResolver,
    ) -> TransitionResult:
        async def plan(record: Optional[ProgressRecord]):
            if record is None:
                if source is TransitionSource.MANUAL and options.initialize:
                    record = await self.initialize(order_id)
                else:
                    raise NotFound(f"No progress record for order {order_id!r}")
            definition = await self._catalog.get(record.workflow_id)
            current = self._resolve(definition, record.current_stage_id)
            target = resolve(definition, current)
            if target is None:
                return record, None
            entry = self._plan_entry(kind, source, options, record, definition, current, target)
            if entry is None:
                return record, None
            return record, self._append(record, entry)

        record, applied = await self._guarded_write(order_id, plan, kind.value)
        if applied:
            last = record.last_transition
            logger.info(
                f"Order {order_id} moved {last.from_stage_id} -> {last.to_stage_id} "
                f"({last.source.value}, override={last.is_override})"
            )
            return TransitionResult(
                record=record, applied=True, previous_stage_id=last.from_stage_id
            )
        return TransitionResult(
            record=record, applied=False, previous_stage_id=record.current_stage_id
        )

    def _plan_entry(
        self,
        kind: TransitionKind,
        source: TransitionSource,
        options: TransitionOptions,
        record: ProgressRecord,
        definition: WorkflowDefinition,
        current: Stage,
        target: Stage,
    ) -> Optional[TransitionRecord]:
        """Apply the move policy; ``None`` means the request is silently ignored."""
        if source is TransitionSource.AUTOMATIC_SYNC:
            if not record.auto_sync_enabled or target.index <= current.index:
                logger.debug(
                    f"Ignoring sync of order {record.order_id} to {target.id}: "
                    f"auto_sync={record.auto_sync_enabled}, current={current.id}"
                )
                return None
            return TransitionRecord(
                from_stage_id=current.id,
                to_stage_id=target.id,
                source=source,
                notes=options.notes,
            )

        if kind in (TransitionKind.SKIP, TransitionKind.REVERT) and not options.has_reason:
            raise MissingReason(f"A reason is required to {kind.value} an order")
        if target.index == current.index:
            raise NoChange(record)
        backward = target.index < current.index
        if kind is TransitionKind.SKIP and backward:
            raise InvalidTransition("Skip target must be after the current stage")
        if kind is TransitionKind.REVERT and not backward:
            raise InvalidTransition("Revert target must be before the current stage")

        jump = definition.position(target) - definition.position(current)
        is_override = options.is_override or backward or jump > 1
        if is_override and not options.has_reason:
            raise MissingReason(
                f"A reason is required to move order {record.order_id} "
                f"from {current.id} to {target.id}"
            )

        notes = options.notes
        if kind is TransitionKind.REVERT and not notes:
            notes = f'Reverted from "{current.label}" to "{target.label}"'
        return TransitionRecord(
            from_stage_id=current.id,
            to_stage_id=target.id,
            source=source,
            is_override=is_override,
            reason=options.reason.strip() if options.has_reason else None,
            actor_id=options.actor_id if source is TransitionSource.MANUAL else None,
            notes=notes,
        )

    async def _guarded_write(
        self, order_id: str, plan: Plan, action: str
    ) -> Tuple[ProgressRecord, bool]:
        for attempt in range(1, self._max_attempts + 1):
            current = await self._repository.get_progress(order_id)
            current, updated = await plan(current)
            if updated is None:
                return current, False
            try:
                await self._repository.save_progress(updated, expected_version=current.version)
            except VersionConflict:
                logger.warning(
                    f"Version conflict during {action} for order {order_id} "
                    f"(attempt {attempt}/{self._max_attempts})"
                )
                if attempt < self._max_attempts:
                    await schedule_retry(attempt, self._backoff_base, self._backoff_factor)
                continue
            return updated, True
        raise Conflict(
            f"Gave up {action} for order {order_id!r} after {self._max_attempts} attempts"
        )

    @staticmethod
    def _resolve(definition: WorkflowDefinition, stage_id: Optional[str]) -> Stage:
        stage = definition.stage(stage_id)
        if stage is None:
            raise UnknownStage(definition.id, stage_id)
        return stage

    @staticmethod
    def _append(
        record: ProgressRecord,
        entry: TransitionRecord,
        workflow_id: Optional[str] = None,
    ) -> ProgressRecord:
        return record.model_copy(
            update={
                "workflow_id": workflow_id or record.workflow_id,
                "current_stage_id": entry.to_stage_id,
                "history": [*record.history, entry],
                "version": record.version + 1,
            }
        )

    @staticmethod
    def _initial_record(
        order_id: str, definition: WorkflowDefinition, notes: str
    ) -> ProgressRecord:
        first = definition.first_stage
        return ProgressRecord(
            order_id=order_id,
            workflow_id=definition.id,
            current_stage_id=first.id,
            history=[
                TransitionRecord(
                    to_stage_id=first.id,
                    source=TransitionSource.SYSTEM_INIT,
                    notes=notes,
                )
            ],
        )


def _next_stage(definition: WorkflowDefinition, current: Stage) -> Stage:
    following = None if current.is_terminal else definition.next_stage(current)
    if following is None:
        raise AlreadyTerminal(f"Stage {current.id!r} has no next stage")
    return following
