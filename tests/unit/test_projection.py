"""Tests for admin and customer progress views."""

from datetime import datetime, timedelta, timezone

import pytest

from orderflow.contracts import (
    OrderStatus,
    ProgressRecord,
    Stage,
    TransitionRecord,
    TransitionSource,
    WorkflowDefinition,
)
from orderflow.projection import admin_view, customer_view, derive_order_status
from orderflow.templates import default_templates

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_admin_view_exposes_overrides(engine, catalog):
    await engine.initialize("ord-1")
    await engine.skip("ord-1", "shipped", reason="dropship", actor_id="ops")

    record = await engine.get("ord-1")
    view = admin_view(record, await catalog.get(record.workflow_id))

    assert view.current_stage_label == "Shipped"
    assert view.order_status is OrderStatus.SHIPPED
    assert [s.is_completed for s in view.stages] == [True, True, False, False]
    assert view.history[-1].reason == "dropship"
    assert view.history[-1].actor_id == "ops"
    assert view.history[-1].from_stage_label == "Order Received"


@pytest.mark.asyncio
async def test_customer_view_reflects_current_stage_only(engine, catalog):
    await engine.initialize("ord-1")
    await engine.advance("ord-1")
    await engine.sync("ord-1", "shipped")
    await engine.revert("ord-1", "processing", reason="mislabeled package")

    record = await engine.get("ord-1")
    definition = await catalog.get(record.workflow_id)
    view = customer_view(record, definition, now=NOW)

    assert view.current_stage_label == "Processing"
    assert view.completed_stage_labels == ["Order Received"]
    assert view.estimated_stages_remaining == 2
    assert view.is_complete is False
    # processing 48h + shipped 72h
    assert view.estimated_delivery == NOW + timedelta(hours=120)
    dumped = view.model_dump()
    assert "reason" not in str(dumped)
    assert [s.is_current for s in view.stages] == [False, True, False, False]


@pytest.mark.asyncio
async def test_customer_view_on_terminal_stage(engine, catalog):
    await engine.initialize("ord-1")
    await engine.sync("ord-1", "delivered")
    record = await engine.get("ord-1")

    view = customer_view(record, await catalog.get(record.workflow_id), now=NOW)
    assert view.is_complete is True
    assert view.estimated_delivery is None
    assert view.estimated_stages_remaining == 0
    assert view.current_stage_message.startswith("Your order has been delivered")


def test_internal_stages_are_hidden():
    definition = WorkflowDefinition(
        id="wf",
        name="With QA",
        stages=[
            Stage(id="received", index=0, label="Received"),
            Stage(id="qa", index=1, label="QA", customer_visible=False),
            Stage(id="done", index=2, label="Done", is_terminal=True),
        ],
    )

    record = ProgressRecord(
        order_id="o1",
        workflow_id="wf",
        current_stage_id="qa",
        history=[
            TransitionRecord(to_stage_id="received", source=TransitionSource.SYSTEM_INIT),
            TransitionRecord(
                from_stage_id="received", to_stage_id="qa", source=TransitionSource.MANUAL
            ),
        ],
        version=2,
    )

    view = customer_view(record, definition, now=NOW)
    assert [s.label for s in view.stages] == ["Received", "Done"]
    assert view.current_stage_label == "Received"
    assert view.estimated_stages_remaining == 1


def test_derive_order_status_fallbacks():
    definition = WorkflowDefinition(
        id="wf",
        name="Plain",
        stages=[
            Stage(id="a", index=0, label="A"),
            Stage(id="b", index=1, label="B"),
            Stage(id="c", index=2, label="C", is_terminal=True),
            Stage(id="x", index=3, label="X", category=OrderStatus.CANCELLED),
        ],
    )
    assert derive_order_status(definition, definition.stage("a")) is OrderStatus.PENDING
    assert derive_order_status(definition, definition.stage("b")) is OrderStatus.PROCESSING
    assert derive_order_status(definition, definition.stage("c")) is OrderStatus.DELIVERED
    assert derive_order_status(definition, definition.stage("x")) is OrderStatus.CANCELLED


def _standard_record(*moves: tuple[str, str, datetime]) -> ProgressRecord:
    history = [
        TransitionRecord(
            to_stage_id="order-received",
            source=TransitionSource.SYSTEM_INIT,
            occurred_at=NOW - timedelta(days=3),
        )
    ]
    for from_stage_id, to_stage_id, at in moves:
        history.append(
            TransitionRecord(
                from_stage_id=from_stage_id,
                to_stage_id=to_stage_id,
                source=TransitionSource.MANUAL,
                is_override=True,
                reason="test",
                occurred_at=at,
            )
        )
    return ProgressRecord(
        order_id="ord-1",
        workflow_id="standard-shipping",
        current_stage_id=history[-1].to_stage_id,
        history=history,
        version=len(history),
    )


def test_customer_stage_completed_at_is_when_the_order_moved_on():
    definition = default_templates()[0]
    left_received = NOW - timedelta(days=2)
    left_processing = NOW - timedelta(days=1)
    record = _standard_record(
        ("order-received", "processing", left_received),
        ("processing", "shipped", left_processing),
    )

    view = customer_view(record, definition, now=NOW)

    assert [s.completed_at for s in view.stages] == [left_received, left_processing, None, None]


def test_customer_stage_skipped_over_has_no_completion_time():
    definition = default_templates()[0]
    skipped_at = NOW - timedelta(days=1)
    record = _standard_record(("order-received", "shipped", skipped_at))

    view = customer_view(record, definition, now=NOW)

    assert [s.is_completed for s in view.stages] == [True, True, False, False]
    assert [s.completed_at for s in view.stages] == [skipped_at, None, None, None]
