"""Reconciles normalized carrier tracking events with order progress."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from .catalog import WorkflowCatalog
from .contracts import ExternalStatusCode, ProgressRecord
from .engine import TransitionEngine
from .errors import NotFound
from .persistence.repository import ProgressRepository
from .webhooks import normalize_status

logger = logging.getLogger(__name__)


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    UNMAPPED = "unmapped"
    SYNC_DISABLED = "sync_disabled"
    NOT_FOUND = "not_found"


class ReconcileResult(BaseModel):
    """What happened to one carrier event. None of the outcomes is an error."""

    order_id: str
    status_code: ExternalStatusCode
    outcome: ReconcileOutcome
    stage_id: Optional[str] = None
    record: Optional[ProgressRecord] = None
    previous_stage_id: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is ReconcileOutcome.APPLIED


class ExternalEventReconciler:
    """Feeds carrier status codes into the engine as automatic sync moves.

    No deduplication by carrier event id is done here: re-delivered or stale
    events map to the current or an earlier stage and the engine's forward-only
    rule turns them into no-ops.
    """

    def __init__(
        self,
        engine: TransitionEngine,
        repository: ProgressRepository,
        catalog: WorkflowCatalog,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._catalog = catalog

    async def reconcile(
        self, order_id: str, status_code: ExternalStatusCode | str
    ) -> ReconcileResult:
        """Apply one carrier status to the order. Unrecognized strings become UNKNOWN."""
        code = (
            status_code
            if isinstance(status_code, ExternalStatusCode)
            else normalize_status(status_code)
        )
        record = await self._repository.get_progress(order_id)
        if record is None:
            logger.warning(f"Tracking event {code.value} for unknown order {order_id}")
            return ReconcileResult(
                order_id=order_id, status_code=code, outcome=ReconcileOutcome.NOT_FOUND
            )

        definition = await self._catalog.get(record.workflow_id)
        if not definition.external_sync_enabled:
            logger.info(
                f"Workflow {definition.id} has carrier sync disabled; "
                f"ignoring {code.value} for order {order_id}"
            )
            return ReconcileResult(
                order_id=order_id,
                status_code=code,
                outcome=ReconcileOutcome.SYNC_DISABLED,
                record=record,
            )

        stage = definition.stage_for_external_status(code)
        if stage is None:
            logger.info(
                f"No stage in workflow {definition.id} mapped to {code.value} (order {order_id})"
            )
            return ReconcileResult(
                order_id=order_id,
                status_code=code,
                outcome=ReconcileOutcome.UNMAPPED,
                record=record,
            )

        try:
            result = await self._engine.sync(
                order_id, stage.id, notes=f"Auto-updated from carrier tracking: {code.value}"
            )
        except NotFound as exc:
            # the order can be reassigned to another workflow between lookup and apply
            logger.warning(f"Could not sync order {order_id} to {stage.id}: {exc}")
            return ReconcileResult(
                order_id=order_id,
                status_code=code,
                outcome=ReconcileOutcome.NOT_FOUND,
                stage_id=stage.id,
            )

        return ReconcileResult(
            order_id=order_id,
            status_code=code,
            outcome=ReconcileOutcome.APPLIED if result.applied else ReconcileOutcome.IGNORED,
            stage_id=stage.id,
            record=result.record,
            previous_stage_id=result.previous_stage_id,
        )

    async def sync_with_shipment(self, order_id: str, shipment_status: str) -> ReconcileResult:
        """Reconcile using an internal shipment status instead of a carrier code."""
        return await self.reconcile(order_id, normalize_status(shipment_status))
