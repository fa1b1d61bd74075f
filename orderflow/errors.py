"""Error taxonomy for the orderflow engine.

Validation errors are raised synchronously and never retried. ``VersionConflict``
is internal to the engine's retry loop and only reaches callers as ``Conflict``
once the retry budget is exhausted.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .contracts import ProgressRecord


class OrderflowError(Exception):
    """Base class for all engine errors."""

    code = "orderflow_error"


class NotFound(OrderflowError):
    """No order, progress record, workflow or stage with the given id."""

    code = "not_found"


class UnknownStage(NotFound):
    """A stage id that does not belong to the order's workflow."""

    code = "unknown_stage"

    def __init__(self, workflow_id: str, stage_id: Optional[str]) -> None:
        super().__init__(f"Stage {stage_id!r} not found in workflow {workflow_id!r}")
        self.workflow_id = workflow_id
        self.stage_id = stage_id


class MissingReason(OrderflowError):
    """Override, skip or revert requested without a reason."""

    code = "missing_reason"


class InvalidTransition(OrderflowError):
    """Skip pointing backward or revert pointing forward."""

    code = "invalid_transition"


class AlreadyTerminal(OrderflowError):
    """Advance requested on an order that has no next stage."""

    code = "already_terminal"


class WorkflowLocked(OrderflowError):
    """Workflow reassignment requested after the order left its first stage."""

    code = "workflow_locked"


class StageInUse(OrderflowError):
    """Workflow update would remove or reorder a stage that live orders occupy."""

    code = "stage_in_use"

    def __init__(self, workflow_id: str, stage_ids: set[str]) -> None:
        listed = ", ".join(sorted(stage_ids))
        super().__init__(
            f"Cannot update workflow {workflow_id!r}: orders currently at stage(s) {listed}"
        )
        self.workflow_id = workflow_id
        self.stage_ids = stage_ids


class WorkflowExists(OrderflowError):
    """A workflow with the same id is already stored."""

    code = "workflow_exists"


class WorkflowInUse(OrderflowError):
    """Workflow deletion requested while progress records reference it."""

    code = "workflow_in_use"


class VersionConflict(OrderflowError):
    """Conditional write lost against a concurrent writer."""

    code = "version_conflict"

    def __init__(self, order_id: str, expected_version: int) -> None:
        super().__init__(
            f"Progress record for order {order_id!r} is no longer at version {expected_version}"
        )
        self.order_id = order_id
        self.expected_version = expected_version


class Conflict(OrderflowError):
    """Retry budget exhausted while resolving concurrent transitions."""

    code = "conflict"


class NoChange(OrderflowError):
    """Requested target equals the current stage.

    This is an outcome rather than a failure: the unchanged record is attached
    so callers can respond with it.
    """

    code = "no_change"

    def __init__(self, record: "ProgressRecord") -> None:
        super().__init__(
            f"Order {record.order_id!r} is already at stage {record.current_stage_id!r}"
        )
        self.record = record


class InvalidSignature(OrderflowError):
    """Webhook body signature missing or not matching the tenant secret."""

    code = "invalid_signature"


class InvalidPayload(OrderflowError):
    """Webhook body could not be parsed into a tracking update."""

    code = "invalid_payload"


__all__ = [
    "OrderflowError",
    "NotFound",
    "UnknownStage",
    "MissingReason",
    "InvalidTransition",
    "AlreadyTerminal",
    "WorkflowLocked",
    "StageInUse",
    "WorkflowExists",
    "WorkflowInUse",
    "VersionConflict",
    "Conflict",
    "NoChange",
    "InvalidSignature",
    "InvalidPayload",
]
