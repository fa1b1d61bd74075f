"""Core data contracts for the orderflow engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExternalStatusCode(str, Enum):
    """Carrier tracking statuses after normalization at the webhook boundary."""

    PRE_TRANSIT = "PRE_TRANSIT"
    TRANSIT = "TRANSIT"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    FAILURE = "FAILURE"
    UNKNOWN = "UNKNOWN"


class OrderStatus(str, Enum):
    """Legacy coarse order status, derived from the current stage."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class TransitionSource(str, Enum):
    MANUAL = "manual"
    AUTOMATIC_SYNC = "automatic_sync"
    SYSTEM_INIT = "system_init"


class Stage(BaseModel):
    """One position in a workflow's linear stage sequence."""

    id: str
    index: int = Field(ge=0)
    label: str
    is_terminal: bool = False
    external_status_triggers: set[ExternalStatusCode] = Field(default_factory=set)
    customer_message: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    notify_customer: bool = False
    estimated_duration_hours: Optional[int] = Field(default=None, ge=0)
    category: Optional[OrderStatus] = None
    customer_visible: bool = True


class WorkflowDefinition(BaseModel):
    """Named, versioned template of ordered stages.

    ``revision`` is bumped by the catalog on every accepted update.
    """

    id: str
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    stages: List[Stage] = Field(min_length=1)
    is_default: bool = False
    is_active: bool = True
    external_sync_enabled: bool = True
    revision: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_stage_order(self) -> "WorkflowDefinition":
        seen: set[str] = set()
        previous: Optional[int] = None
        for stage in self.stages:
            if stage.id in seen:
                raise ValueError(f"Duplicate stage id: {stage.id}")
            seen.add(stage.id)
            if previous is not None and stage.index <= previous:
                raise ValueError("Stage indexes must be strictly increasing")
            previous = stage.index
        return self

    @property
    def first_stage(self) -> Stage:
        return self.stages[0]

    def stage(self, stage_id: Optional[str]) -> Optional[Stage]:
        """Return the stage with ``stage_id`` or ``None``."""
        return next((s for s in self.stages if s.id == stage_id), None)

    def position(self, stage: Stage) -> int:
        """Position of ``stage`` within ``stages`` (not its ``index``)."""
        return next(i for i, s in enumerate(self.stages) if s.id == stage.id)

    def next_stage(self, stage: Stage) -> Optional[Stage]:
        pos = self.position(stage)
        return self.stages[pos + 1] if pos + 1 < len(self.stages) else None

    def stage_for_external_status(self, code: ExternalStatusCode) -> Optional[Stage]:
        """First stage, in order, triggered by the carrier status ``code``."""
        return next((s for s in self.stages if code in s.external_status_triggers), None)


class TransitionRecord(BaseModel):
    """A single append-only history entry."""

    model_config = ConfigDict(frozen=True)

    from_stage_id: Optional[str] = None
    to_stage_id: str
    source: TransitionSource
    is_override: bool = False
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _override_needs_reason(self) -> "TransitionRecord":
        if self.is_override and not (self.reason and self.reason.strip()):
            raise ValueError("Override transitions require a reason")
        return self


class ProgressRecord(BaseModel):
    """Live position of one order plus its full transition history."""

    order_id: str
    workflow_id: str
    current_stage_id: str
    auto_sync_enabled: bool = True
    history: List[TransitionRecord] = Field(min_length=1)
    version: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _current_matches_history(self) -> "ProgressRecord":
        if self.history[-1].to_stage_id != self.current_stage_id:
            raise ValueError("current_stage_id must match the last history entry")
        return self

    @property
    def last_transition(self) -> TransitionRecord:
        return self.history[-1]


class TransitionOptions(BaseModel):
    """Caller-supplied details for a transition request."""

    is_override: bool = False
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None
    initialize: bool = False

    @property
    def has_reason(self) -> bool:
        return bool(self.reason and self.reason.strip())


class StageChangedEvent(BaseModel):
    """Envelope published to notification collaborators after a transition."""

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    workflow_id: str
    from_stage_id: Optional[str] = None
    to_stage_id: str
    stage_label: str
    category: Optional[OrderStatus] = None
    order_status: OrderStatus
    source: TransitionSource
    occurred_at: datetime = Field(default_factory=utcnow)

    def to_json(self) -> str:
        """Serialize event to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str) -> "StageChangedEvent":
        """Deserialize event from JSON."""
        return cls.model_validate_json(data)
