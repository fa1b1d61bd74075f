"""Read views over a progress record."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .contracts import (
    OrderStatus,
    ProgressRecord,
    Stage,
    TransitionSource,
    WorkflowDefinition,
    utcnow,
)
from .errors import UnknownStage


class AdminTransitionView(BaseModel):
    from_stage_id: Optional[str] = None
    from_stage_label: Optional[str] = None
    to_stage_id: str
    to_stage_label: Optional[str] = None
    source: TransitionSource
    is_override: bool
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    occurred_at: datetime


class AdminStageView(BaseModel):
    id: str
    index: int
    label: str
    is_terminal: bool
    is_current: bool
    is_completed: bool
    customer_visible: bool
    external_status_triggers: List[str] = Field(default_factory=list)


class AdminProgressView(BaseModel):
    """Everything an operator needs, including overrides and who made them."""

    order_id: str
    workflow_id: str
    workflow_name: str
    current_stage_id: str
    current_stage_label: str
    order_status: OrderStatus
    auto_sync_enabled: bool
    external_sync_enabled: bool
    version: int
    stages: List[AdminStageView]
    history: List[AdminTransitionView]


class CustomerStageView(BaseModel):
    label: str
    icon: Optional[str] = None
    color: Optional[str] = None
    is_completed: bool
    is_current: bool
    completed_at: Optional[datetime] = None


class CustomerProgressView(BaseModel):
    """Customer-facing position: no reasons, actors, sources or revert detours."""

    order_id: str
    current_stage_label: Optional[str] = None
    current_stage_message: Optional[str] = None
    completed_stage_labels: List[str] = Field(default_factory=list)
    estimated_stages_remaining: int
    is_complete: bool
    estimated_delivery: Optional[datetime] = None
    stages: List[CustomerStageView] = Field(default_factory=list)


def _current_stage(record: ProgressRecord, definition: WorkflowDefinition) -> Stage:
    stage = definition.stage(record.current_stage_id)
    if stage is None:
        raise UnknownStage(definition.id, record.current_stage_id)
    return stage


def derive_order_status(definition: WorkflowDefinition, stage: Stage) -> OrderStatus:
    """Legacy coarse order status for an order sitting on ``stage``."""
    if stage.category is not None:
        return stage.category
    if stage.id == definition.first_stage.id:
        return OrderStatus.PENDING
    if stage.is_terminal:
        return OrderStatus.DELIVERED
    return OrderStatus.PROCESSING


def admin_view(record: ProgressRecord, definition: WorkflowDefinition) -> AdminProgressView:
    current = _current_stage(record, definition)

    def label(stage_id: Optional[str]) -> Optional[str]:
        stage = definition.stage(stage_id)
        return stage.label if stage else None

    return AdminProgressView(
        order_id=record.order_id,
        workflow_id=definition.id,
        workflow_name=definition.name,
        current_stage_id=current.id,
        current_stage_label=current.label,
        order_status=derive_order_status(definition, current),
        auto_sync_enabled=record.auto_sync_enabled,
        external_sync_enabled=definition.external_sync_enabled,
        version=record.version,
        stages=[
            AdminStageView(
                id=s.id,
                index=s.index,
                label=s.label,
                is_terminal=s.is_terminal,
                is_current=s.id == current.id,
                is_completed=s.index < current.index,
                customer_visible=s.customer_visible,
                external_status_triggers=sorted(t.value for t in s.external_status_triggers),
            )
            for s in definition.stages
        ],
        history=[
            AdminTransitionView(
                from_stage_id=entry.from_stage_id,
                from_stage_label=label(entry.from_stage_id),
                to_stage_id=entry.to_stage_id,
                to_stage_label=label(entry.to_stage_id),
                source=entry.source,
                is_override=entry.is_override,
                reason=entry.reason,
                actor_id=entry.actor_id,
                notes=entry.notes,
                occurred_at=entry.occurred_at,
            )
            for entry in record.history
        ],
    )


def customer_view(
    record: ProgressRecord,
    definition: WorkflowDefinition,
    now: Optional[datetime] = None,
) -> CustomerProgressView:
    """Project the record for the customer.

    Only the current position counts: stages before it are completed, stages
    after it are pending, whatever detours the history contains. Internal
    stages are hidden; while the order sits on one, the latest visible stage
    before it is shown as current.
    """
    current = _current_stage(record, definition)
    visible = [s for s in definition.stages if s.customer_visible]
    reached = [s for s in visible if s.index <= current.index]
    shown = reached[-1] if reached else None

    # a stage is completed when the order last moved off it
    left_at: Dict[str, datetime] = {}
    for entry in record.history:
        if entry.from_stage_id is not None:
            left_at[entry.from_stage_id] = entry.occurred_at

    estimated_delivery = None
    if not current.is_terminal:
        hours = sum(
            s.estimated_duration_hours or 0
            for s in definition.stages
            if s.index >= current.index
        )
        if hours > 0:
            estimated_delivery = (now or utcnow()) + timedelta(hours=hours)

    stages = []
    for s in visible:
        completed = s.index < current.index and s is not shown
        stages.append(
            CustomerStageView(
                label=s.label,
                icon=s.icon,
                color=s.color,
                is_completed=completed,
                is_current=s is shown,
                completed_at=left_at.get(s.id) if completed else None,
            )
        )
    return CustomerProgressView(
        order_id=record.order_id,
        current_stage_label=shown.label if shown else None,
        current_stage_message=shown.customer_message if shown else None,
        completed_stage_labels=[s.label for s in reached if s is not shown],
        estimated_stages_remaining=sum(1 for s in visible if s.index > current.index),
        is_complete=current.is_terminal,
        estimated_delivery=estimated_delivery,
        stages=stages,
    )
