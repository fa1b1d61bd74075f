"""Pydantic API schemas for order progress.

These are the external API contracts, separate from the engine's contracts.
The routes translate between these schemas and service calls.
"""

from typing import Optional

from pydantic import BaseModel

from ..contracts import ExternalStatusCode, ProgressRecord
from ..reconcile import ReconcileOutcome


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------
class AssignWorkflowRequest(BaseModel):
    workflow_id: str


class AdvanceRequest(BaseModel):
    actor_id: Optional[str] = None
    notes: Optional[str] = None


class TransitionRequest(BaseModel):
    stage_id: str
    actor_id: Optional[str] = None
    is_override: bool = False
    reason: Optional[str] = None
    notes: Optional[str] = None


class OverrideRequest(BaseModel):
    """Body for skip and revert; ``reason`` is checked by the engine."""

    stage_id: str
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    notes: Optional[str] = None


class AutoSyncRequest(BaseModel):
    enabled: bool


class SyncRequest(BaseModel):
    status_code: ExternalStatusCode


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------
class TransitionResponse(BaseModel):
    changed: bool
    previous_stage_id: Optional[str] = None
    record: ProgressRecord


class SyncResponse(BaseModel):
    order_id: str
    status_code: ExternalStatusCode
    outcome: ReconcileOutcome
    stage_id: Optional[str] = None
    record: Optional[ProgressRecord] = None


class WebhookResponse(BaseModel):
    tracking_number: str
    status_code: ExternalStatusCode
    outcome: ReconcileOutcome
    order_id: Optional[str] = None
    stage_id: Optional[str] = None


class ErrorResponse(BaseModel):
    code: str
    detail: str
