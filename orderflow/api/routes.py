"""FastAPI routes for order progress and carrier webhooks."""

from typing import Optional, Union

from fastapi import APIRouter, Depends, Header, Request

from ..contracts import ProgressRecord
from ..engine import TransitionResult
from ..projection import AdminProgressView, CustomerProgressView
from ..service import ProgressService
from .schemas import (
    AdvanceRequest,
    AssignWorkflowRequest,
    AutoSyncRequest,
    OverrideRequest,
    SyncRequest,
    SyncResponse,
    TransitionRequest,
    TransitionResponse,
    WebhookResponse,
)

_service: Optional[ProgressService] = None


def get_service() -> ProgressService:
    """Process-wide service, built from configuration on first use."""
    global _service
    if _service is None:
        _service = ProgressService.from_config()
    return _service


def _transition_response(result: TransitionResult) -> TransitionResponse:
    return TransitionResponse(
        changed=result.applied,
        previous_stage_id=result.previous_stage_id,
        record=result.record,
    )


# ---------------------------------------------------------------------------
# Progress Router
# ---------------------------------------------------------------------------
progress_router = APIRouter(prefix="/orders/{order_id}/progress", tags=["progress"])


@progress_router.get("", response_model=Union[CustomerProgressView, AdminProgressView])
async def get_progress(
    order_id: str,
    customer_view: bool = False,
    service: ProgressService = Depends(get_service),
):
    """Return the admin view, or the customer view with ``?customer_view=true``."""
    return await service.progress(order_id, customer=customer_view)


@progress_router.post("/initialize", response_model=ProgressRecord)
async def initialize_progress(
    order_id: str, service: ProgressService = Depends(get_service)
) -> ProgressRecord:
    return await service.initialize(order_id)


@progress_router.post("/workflow", response_model=ProgressRecord)
async def assign_workflow(
    order_id: str,
    body: AssignWorkflowRequest,
    service: ProgressService = Depends(get_service),
) -> ProgressRecord:
    """Put the order on another workflow while it is still on the first stage."""
    return await service.assign_workflow(order_id, body.workflow_id)


@progress_router.post("/advance", response_model=TransitionResponse)
async def advance(
    order_id: str,
    body: Optional[AdvanceRequest] = None,
    service: ProgressService = Depends(get_service),
) -> TransitionResponse:
    body = body or AdvanceRequest()
    result = await service.advance(order_id, actor_id=body.actor_id, notes=body.notes)
    return _transition_response(result)


@progress_router.post("/transition", response_model=TransitionResponse)
async def transition(
    order_id: str,
    body: TransitionRequest,
    service: ProgressService = Depends(get_service),
) -> TransitionResponse:
    result = await service.transition(
        order_id,
        body.stage_id,
        actor_id=body.actor_id,
        is_override=body.is_override,
        reason=body.reason,
        notes=body.notes,
    )
    return _transition_response(result)


@progress_router.put("/auto-sync", response_model=ProgressRecord)
async def set_auto_sync(
    order_id: str,
    body: AutoSyncRequest,
    service: ProgressService = Depends(get_service),
) -> ProgressRecord:
    return await service.set_auto_sync(order_id, body.enabled)


@progress_router.put("/revert", response_model=TransitionResponse)
async def revert(
    order_id: str,
    body: OverrideRequest,
    service: ProgressService = Depends(get_service),
) -> TransitionResponse:
    """Move the order back to an earlier stage. Requires a reason."""
    result = await service.revert(
        order_id, body.stage_id, body.reason, actor_id=body.actor_id, notes=body.notes
    )
    return _transition_response(result)


@progress_router.put("/skip", response_model=TransitionResponse)
async def skip(
    order_id: str,
    body: OverrideRequest,
    service: ProgressService = Depends(get_service),
) -> TransitionResponse:
    """Jump the order forward past intermediate stages. Requires a reason."""
    result = await service.skip(
        order_id, body.stage_id, body.reason, actor_id=body.actor_id, notes=body.notes
    )
    return _transition_response(result)


@progress_router.post("/sync", response_model=SyncResponse)
async def sync_external_event(
    order_id: str,
    body: SyncRequest,
    service: ProgressService = Depends(get_service),
) -> SyncResponse:
    """Feed a normalized carrier status into the order's progress."""
    result = await service.sync_external_event(order_id, body.status_code)
    return SyncResponse(
        order_id=result.order_id,
        status_code=result.status_code,
        outcome=result.outcome,
        stage_id=result.stage_id,
        record=result.record,
    )


# ---------------------------------------------------------------------------
# Webhook Router
# ---------------------------------------------------------------------------
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@webhook_router.post("/carrier/{tenant_id}", response_model=WebhookResponse)
async def carrier_webhook(
    tenant_id: str,
    request: Request,
    x_carrier_signature: Optional[str] = Header(default=None),
    service: ProgressService = Depends(get_service),
) -> WebhookResponse:
    """Process a signed carrier tracking callback.

    The signature covers the raw body, so the payload is read as bytes and
    parsed only after it has been verified.
    """
    body = await request.body()
    receipt = await service.handle_carrier_webhook(tenant_id, body, x_carrier_signature)
    return WebhookResponse(**receipt.model_dump())
