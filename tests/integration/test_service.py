"""End-to-end behaviour of ProgressService and its post-transition effects."""

import json

import pytest

from orderflow.catalog import WorkflowCatalog
from orderflow.config import OrderflowConfig, WebhookConfig
from orderflow.constants import STAGE_CHANGED_TOPIC
from orderflow.contracts import ExternalStatusCode, OrderStatus, TransitionSource
from orderflow.directory import InMemoryOrderDirectory
from orderflow.errors import InvalidSignature, NoChange
from orderflow.persistence import InMemoryRepository, SQLiteRepository
from orderflow.projection import AdminProgressView, CustomerProgressView
from orderflow.reconcile import ReconcileOutcome
from orderflow.security import compute_signature
from orderflow.service import ProgressService
from orderflow.transports import InMemoryTransport

SECRET = "whsec-test"


class FailingTransport(InMemoryTransport):
    async def publish(self, topic, event):
        raise ConnectionError("broker down")


class FailingDirectory(InMemoryOrderDirectory):
    async def update_order_status(self, order_id, status):
        raise RuntimeError("orders table locked")


async def _service(repo=None, transport=None, directory_cls=InMemoryOrderDirectory):
    repo = repo or InMemoryRepository()
    catalog = WorkflowCatalog(repo, repo)
    await catalog.seed_defaults()
    directory = directory_cls(catalog)
    directory.add_order("ord-1", tracking_numbers={"TRACK-1"})
    directory.add_order("ord-2")
    directory.add_order("ord-3")
    config = OrderflowConfig(webhooks=WebhookConfig(secrets={"shop-1": SECRET}))
    service = ProgressService.from_config(
        config=config,
        repository=repo,
        directory=directory,
        transport=transport or InMemoryTransport(),
    )
    return service, directory


def _webhook_body(status: str, tracking_number: str = "TRACK-1") -> bytes:
    return json.dumps(
        {
            "event": "track_updated",
            "data": {"tracking_number": tracking_number, "tracking_status": {"status": status}},
        }
    ).encode()


@pytest.mark.asyncio
async def test_legacy_status_follows_current_stage():
    service, directory = await _service()
    await service.initialize("ord-1")
    assert directory.get("ord-1").status is OrderStatus.PENDING

    await service.advance("ord-1", actor_id="A")
    assert directory.get("ord-1").status is OrderStatus.PROCESSING

    await service.skip("ord-1", "delivered", reason="hand delivered")
    assert directory.get("ord-1").status is OrderStatus.DELIVERED

    await service.revert("ord-1", "shipped", reason="not actually delivered")
    assert directory.get("ord-1").status is OrderStatus.SHIPPED


@pytest.mark.asyncio
async def test_shipped_and_delivered_publish_notifications():
    transport = InMemoryTransport()
    service, _ = await _service(transport=transport)
    await service.initialize("ord-1")
    await service.advance("ord-1")
    assert transport.pending(STAGE_CHANGED_TOPIC) == []

    await service.sync_external_event("ord-1", ExternalStatusCode.TRANSIT)
    await service.advance("ord-1")

    events = transport.pending(STAGE_CHANGED_TOPIC)
    assert [e.to_stage_id for e in events] == ["shipped", "delivered"]
    assert events[0].from_stage_id == "processing"
    assert events[0].source is TransitionSource.AUTOMATIC_SYNC
    assert events[1].order_status is OrderStatus.DELIVERED


@pytest.mark.asyncio
async def test_ignored_sync_publishes_nothing():
    transport = InMemoryTransport()
    service, _ = await _service(transport=transport)
    await service.initialize("ord-1")
    await service.sync_external_event("ord-1", "TRANSIT")
    duplicate = await service.sync_external_event("ord-1", "TRANSIT")

    assert duplicate.outcome is ReconcileOutcome.IGNORED
    assert len(transport.pending(STAGE_CHANGED_TOPIC)) == 1


@pytest.mark.asyncio
async def test_effect_failures_do_not_block_transition(caplog):
    service, _ = await _service(transport=FailingTransport(), directory_cls=FailingDirectory)
    await service.initialize("ord-1")
    result = await service.sync_external_event("ord-1", "TRANSIT")

    assert result.applied
    record = await service.engine.get("ord-1")
    assert record.current_stage_id == "shipped"
    assert "Failed to publish stage change" in caplog.text
    assert "Failed to update legacy status" in caplog.text


@pytest.mark.asyncio
async def test_progress_views():
    service, _ = await _service()
    await service.initialize("ord-1")
    await service.skip("ord-1", "shipped", reason="dropship", actor_id="ops")

    admin = await service.progress("ord-1")
    assert isinstance(admin, AdminProgressView)
    assert admin.history[-1].reason == "dropship"

    customer = await service.progress("ord-1", customer=True)
    assert isinstance(customer, CustomerProgressView)
    assert customer.current_stage_label == "Shipped"


@pytest.mark.asyncio
async def test_carrier_webhook_end_to_end():
    service, directory = await _service()
    await service.initialize("ord-1")

    body = _webhook_body("in_transit")
    receipt = await service.handle_carrier_webhook("shop-1", body, compute_signature(SECRET, body))
    assert receipt.outcome is ReconcileOutcome.APPLIED
    assert receipt.order_id == "ord-1"
    assert receipt.stage_id == "shipped"
    assert directory.get("ord-1").status is OrderStatus.SHIPPED

    unknown = _webhook_body("delivered", tracking_number="OTHER")
    receipt = await service.handle_carrier_webhook(
        "shop-1", unknown, compute_signature(SECRET, unknown)
    )
    assert receipt.outcome is ReconcileOutcome.NOT_FOUND
    assert receipt.order_id is None

    with pytest.raises(InvalidSignature):
        await service.handle_carrier_webhook("shop-1", body, "sha256=00")


@pytest.mark.asyncio
async def test_bulk_operations_collect_per_order_errors():
    service, _ = await _service()
    await service.initialize("ord-1")
    await service.initialize("ord-2")
    await service.skip("ord-2", "delivered", reason="picked up in store")

    result = await service.bulk_advance(["ord-1", "ord-2", "ord-3"], actor_id="batch")
    assert result.succeeded == ["ord-1"]
    assert {f.order_id: f.code for f in result.failed} == {
        "ord-2": "already_terminal",
        "ord-3": "not_found",
    }

    result = await service.bulk_transition(
        ["ord-1", "ord-3", "ord-2"], "processing", actor_id="batch"
    )
    assert result.unchanged == ["ord-1"]
    assert result.succeeded == ["ord-3"]
    assert [f.code for f in result.failed] == ["missing_reason"]


@pytest.mark.asyncio
async def test_no_change_propagates():
    service, _ = await _service()
    await service.initialize("ord-1")
    with pytest.raises(NoChange):
        await service.transition("ord-1", "order-received")


@pytest.mark.asyncio
async def test_scenarios_on_sqlite(tmp_path):
    service, _ = await _service(repo=SQLiteRepository(tmp_path / "orders.db"))

    record = await service.initialize("ord-1")
    assert len(record.history) == 1
    result = await service.advance("ord-1", actor_id="A")
    assert result.record.current_stage_id == "processing"

    sync = await service.sync_external_event("ord-1", "TRANSIT")
    assert sync.record.current_stage_id == "shipped"
    duplicate = await service.sync_external_event("ord-1", "TRANSIT")
    assert len(duplicate.record.history) == 3

    reverted = await service.revert("ord-1", "processing", reason="mislabeled package")
    assert reverted.record.last_transition.is_override
    delivered = await service.sync_external_event("ord-1", "DELIVERED")
    assert delivered.applied

    stored = await service.repository.get_progress("ord-1")
    assert stored.current_stage_id == "delivered"
    assert stored.version == 5
    assert len(stored.history) == 5
