"""Application service tying the engine to its collaborators.

The engine only guarantees the progress record. Everything that happens
because a record changed, the legacy order status and customer
notifications, happens here, after the write, and never undoes it.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Union

from pydantic import BaseModel, Field

from .catalog import WorkflowCatalog
from .config import OrderflowConfig, load_config
from .constants import STAGE_CHANGED_TOPIC
from .contracts import (
    ExternalStatusCode,
    OrderStatus,
    ProgressRecord,
    StageChangedEvent,
)
from .directory import InMemoryOrderDirectory, OrderDirectory
from .engine import TransitionEngine, TransitionResult
from .errors import NoChange, OrderflowError
from .persistence import get_repository
from .persistence.repository import OrderflowRepository
from .projection import (
    AdminProgressView,
    CustomerProgressView,
    admin_view,
    customer_view,
    derive_order_status,
)
from .reconcile import ExternalEventReconciler, ReconcileOutcome, ReconcileResult
from .transports import BaseTransport, get_transport
from .webhooks import CarrierWebhookReceiver

logger = logging.getLogger(__name__)

NOTIFY_CATEGORIES = frozenset({OrderStatus.SHIPPED, OrderStatus.DELIVERED})


class BulkFailure(BaseModel):
    order_id: str
    code: str
    message: str


class BulkResult(BaseModel):
    """Per-order outcome of a bulk operation."""

    succeeded: List[str] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)
    failed: List[BulkFailure] = Field(default_factory=list)


class WebhookReceipt(BaseModel):
    """What a carrier webhook delivery did."""

    tracking_number: str
    status_code: ExternalStatusCode
    outcome: ReconcileOutcome
    order_id: Optional[str] = None
    stage_id: Optional[str] = None


class ProgressService:
    """Entry point used by the HTTP API and the CLI."""

    def __init__(
        self,
        repository: OrderflowRepository,
        catalog: WorkflowCatalog,
        engine: TransitionEngine,
        reconciler: ExternalEventReconciler,
        receiver: CarrierWebhookReceiver,
        directory: OrderDirectory,
        transport: Optional[BaseTransport] = None,
    ) -> None:
        self.repository = repository
        self.catalog = catalog
        self.engine = engine
        self.reconciler = reconciler
        self.receiver = receiver
        self.directory = directory
        self.transport = transport

    @classmethod
    def from_config(
        cls,
        config: Optional[OrderflowConfig] = None,
        repository: Optional[OrderflowRepository] = None,
        directory: Optional[OrderDirectory] = None,
        transport: Optional[BaseTransport] = None,
    ) -> "ProgressService":
        """Wire a service from configuration, filling in missing collaborators."""
        config = config or load_config()
        repository = repository or get_repository(config=config)
        catalog = WorkflowCatalog(repository, repository)
        directory = directory or InMemoryOrderDirectory(catalog)
        engine = TransitionEngine.from_config(repository, catalog, directory, config.engine)
        return cls(
            repository=repository,
            catalog=catalog,
            engine=engine,
            reconciler=ExternalEventReconciler(engine, repository, catalog),
            receiver=CarrierWebhookReceiver(config.webhooks, directory),
            directory=directory,
            transport=transport or get_transport(config=config),
        )

    # ------------------------------------------------------------------
    # Reads
    async def progress(
        self, order_id: str, customer: bool = False
    ) -> Union[AdminProgressView, CustomerProgressView]:
        record = await self.engine.get(order_id)
        definition = await self.catalog.get(record.workflow_id)
        if customer:
            return customer_view(record, definition)
        return admin_view(record, definition)

    async def list_progress(self, workflow_id: Optional[str] = None) -> List[ProgressRecord]:
        return await self.repository.list_progress(workflow_id)

    # ------------------------------------------------------------------
    # Commands
    async def initialize(self, order_id: str) -> ProgressRecord:
        record = await self.engine.initialize(order_id)
        await self._write_legacy_status(record)
        return record

    async def assign_workflow(self, order_id: str, workflow_id: str) -> ProgressRecord:
        record = await self.engine.assign_workflow(order_id, workflow_id)
        await self._write_legacy_status(record)
        return record

    async def set_auto_sync(self, order_id: str, enabled: bool) -> ProgressRecord:
        return await self.engine.set_auto_sync(order_id, enabled)

    async def advance(
        self, order_id: str, actor_id: Optional[str] = None, notes: Optional[str] = None
    ) -> TransitionResult:
        result = await self.engine.advance(order_id, actor_id=actor_id, notes=notes)
        await self._after_transition(result)
        return result

    async def transition(
        self,
        order_id: str,
        stage_id: str,
        actor_id: Optional[str] = None,
        is_override: bool = False,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        result = await self.engine.transition(
            order_id,
            stage_id,
            actor_id=actor_id,
            is_override=is_override,
            reason=reason,
            notes=notes,
        )
        await self._after_transition(result)
        return result

    async def revert(
        self,
        order_id: str,
        stage_id: str,
        reason: Optional[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        result = await self.engine.revert(
            order_id, stage_id, reason, actor_id=actor_id, notes=notes
        )
        await self._after_transition(result)
        return result

    async def skip(
        self,
        order_id: str,
        stage_id: str,
        reason: Optional[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        result = await self.engine.skip(
            order_id, stage_id, reason, actor_id=actor_id, notes=notes
        )
        await self._after_transition(result)
        return result

    async def sync_external_event(
        self, order_id: str, status_code: ExternalStatusCode | str
    ) -> ReconcileResult:
        result = await self.reconciler.reconcile(order_id, status_code)
        if result.applied and result.record is not None:
            await self._after_transition(
                TransitionResult(
                    record=result.record,
                    applied=True,
                    previous_stage_id=result.previous_stage_id,
                )
            )
        return result

    async def handle_carrier_webhook(
        self, tenant_id: str, body: bytes, signature: Optional[str]
    ) -> WebhookReceipt:
        """Verify, normalize and reconcile one carrier webhook delivery.

        Raises:
            InvalidSignature: If the body is not signed with the tenant secret.
            InvalidPayload: If the body is not a tracking payload.
        """
        update = await self.receiver.normalize(tenant_id, body, signature)
        if update.order_id is None:
            logger.warning(
                f"No order found for tracking number {update.tracking_number} "
                f"(tenant {tenant_id})"
            )
            return WebhookReceipt(
                tracking_number=update.tracking_number,
                status_code=update.status_code,
                outcome=ReconcileOutcome.NOT_FOUND,
            )

        result = await self.sync_external_event(update.order_id, update.status_code)
        return WebhookReceipt(
            tracking_number=update.tracking_number,
            status_code=update.status_code,
            outcome=result.outcome,
            order_id=update.order_id,
            stage_id=result.stage_id,
        )

    async def bulk_advance(
        self,
        order_ids: Iterable[str],
        actor_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BulkResult:
        result = BulkResult()
        for order_id in order_ids:
            try:
                await self.advance(order_id, actor_id=actor_id, notes=notes)
            except NoChange:
                result.unchanged.append(order_id)
            except OrderflowError as exc:
                result.failed.append(
                    BulkFailure(order_id=order_id, code=exc.code, message=str(exc))
                )
            else:
                result.succeeded.append(order_id)
        return result

    async def bulk_transition(
        self,
        order_ids: Iterable[str],
        stage_id: str,
        actor_id: Optional[str] = None,
        is_override: bool = False,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BulkResult:
        result = BulkResult()
        for order_id in order_ids:
            try:
                await self.transition(
                    order_id,
                    stage_id,
                    actor_id=actor_id,
                    is_override=is_override,
                    reason=reason,
                    notes=notes,
                )
            except NoChange:
                result.unchanged.append(order_id)
            except OrderflowError as exc:
                result.failed.append(
                    BulkFailure(order_id=order_id, code=exc.code, message=str(exc))
                )
            else:
                result.succeeded.append(order_id)
        return result

    # ------------------------------------------------------------------
    # Post-transition effects
    async def _after_transition(self, result: TransitionResult) -> None:
        if not result.applied:
            return
        await self._write_legacy_status(result.record)
        await self._notify(result)

    async def _write_legacy_status(self, record: ProgressRecord) -> None:
        try:
            definition = await self.catalog.get(record.workflow_id)
            stage = definition.stage(record.current_stage_id)
            if stage is None:
                return
            status = derive_order_status(definition, stage)
            await self.directory.update_order_status(record.order_id, status)
        except Exception:
            logger.exception(f"Failed to update legacy status for order {record.order_id}")

    async def _notify(self, result: TransitionResult) -> None:
        record = result.record
        if self.transport is None:
            return
        try:
            definition = await self.catalog.get(record.workflow_id)
            stage = definition.stage(record.current_stage_id)
            if stage is None or not stage.notify_customer:
                return
            if stage.category not in NOTIFY_CATEGORIES:
                return
            event = StageChangedEvent(
                order_id=record.order_id,
                workflow_id=record.workflow_id,
                from_stage_id=result.previous_stage_id,
                to_stage_id=stage.id,
                stage_label=stage.label,
                category=stage.category,
                order_status=derive_order_status(definition, stage),
                source=record.last_transition.source,
            )
            await self.transport.publish(STAGE_CHANGED_TOPIC, event)
            logger.info(f"Published {STAGE_CHANGED_TOPIC} for order {record.order_id}")
        except Exception:
            logger.exception(f"Failed to publish stage change for order {record.order_id}")
