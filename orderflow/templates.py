"""Built-in workflow templates installed by ``WorkflowCatalog.seed_defaults``."""

from __future__ import annotations

from typing import List

from .contracts import ExternalStatusCode, OrderStatus, Stage, WorkflowDefinition

PRE_TRANSIT = ExternalStatusCode.PRE_TRANSIT
TRANSIT = ExternalStatusCode.TRANSIT
DELIVERED = ExternalStatusCode.DELIVERED


def _received(message: str, hours: int) -> Stage:
    return Stage(
        id="order-received",
        index=0,
        label="Order Received",
        customer_message=message,
        icon="inbox",
        color="#3B82F6",
        notify_customer=True,
        estimated_duration_hours=hours,
        category=OrderStatus.PENDING,
    )


def default_templates() -> List[WorkflowDefinition]:
    """Return fresh copies of the built-in workflow templates."""
    return [
        WorkflowDefinition(
            id="standard-shipping",
            slug="standard-shipping",
            name="Standard Shipping",
            description="Default workflow for physical products requiring shipping",
            is_default=True,
            external_sync_enabled=True,
            stages=[
                _received("We've received your order and are preparing it for processing.", 24),
                Stage(
                    id="processing",
                    index=1,
                    label="Processing",
                    customer_message="Your order is being prepared and will be shipped soon.",
                    icon="package",
                    color="#F59E0B",
                    notify_customer=True,
                    estimated_duration_hours=48,
                    category=OrderStatus.PROCESSING,
                    external_status_triggers={PRE_TRANSIT},
                ),
                Stage(
                    id="shipped",
                    index=2,
                    label="Shipped",
                    customer_message="Great news! Your order is on its way.",
                    icon="truck",
                    color="#8B5CF6",
                    notify_customer=True,
                    estimated_duration_hours=72,
                    category=OrderStatus.SHIPPED,
                    external_status_triggers={TRANSIT},
                ),
                Stage(
                    id="delivered",
                    index=3,
                    label="Delivered",
                    customer_message="Your order has been delivered. Thank you for shopping with us!",
                    icon="check-circle",
                    color="#10B981",
                    is_terminal=True,
                    notify_customer=True,
                    category=OrderStatus.DELIVERED,
                    external_status_triggers={DELIVERED},
                ),
            ],
        ),
        WorkflowDefinition(
            id="digital-download",
            slug="digital-download",
            name="Digital Download",
            description="Workflow for digital products with instant delivery",
            external_sync_enabled=False,
            stages=[
                _received("We've received your order.", 1),
                Stage(
                    id="ready",
                    index=1,
                    label="Ready for Download",
                    customer_message="Your files are ready! Check your email for download links.",
                    icon="download",
                    color="#10B981",
                    is_terminal=True,
                    notify_customer=True,
                    category=OrderStatus.DELIVERED,
                ),
            ],
        ),
        WorkflowDefinition(
            id="custom-order",
            slug="custom-order",
            name="Custom Order",
            description="Workflow for made-to-order or customized products",
            external_sync_enabled=True,
            stages=[
                _received("We've received your custom order request.", 24),
                Stage(
                    id="design-review",
                    index=1,
                    label="Design Review",
                    customer_message="Our team is reviewing your customization details.",
                    icon="eye",
                    color="#6366F1",
                    notify_customer=True,
                    estimated_duration_hours=48,
                    category=OrderStatus.PROCESSING,
                ),
                Stage(
                    id="in-production",
                    index=2,
                    label="In Production",
                    customer_message="Your custom item is being crafted with care.",
                    icon="hammer",
                    color="#F59E0B",
                    notify_customer=True,
                    estimated_duration_hours=120,
                    category=OrderStatus.PROCESSING,
                    external_status_triggers={PRE_TRANSIT},
                ),
                Stage(
                    id="quality-check",
                    index=3,
                    label="Quality Check",
                    customer_message="Your item is undergoing final quality inspection.",
                    icon="shield-check",
                    color="#8B5CF6",
                    notify_customer=True,
                    estimated_duration_hours=24,
                    category=OrderStatus.PROCESSING,
                ),
                Stage(
                    id="shipped",
                    index=4,
                    label="Shipped",
                    customer_message="Your custom order is on its way!",
                    icon="truck",
                    color="#EC4899",
                    notify_customer=True,
                    estimated_duration_hours=72,
                    category=OrderStatus.SHIPPED,
                    external_status_triggers={TRANSIT},
                ),
                Stage(
                    id="delivered",
                    index=5,
                    label="Delivered",
                    customer_message="Your custom order has been delivered. Enjoy!",
                    icon="check-circle",
                    color="#10B981",
                    is_terminal=True,
                    notify_customer=True,
                    category=OrderStatus.DELIVERED,
                    external_status_triggers={DELIVERED},
                ),
            ],
        ),
        WorkflowDefinition(
            id="local-pickup",
            slug="local-pickup",
            name="Local Pickup",
            description="Workflow for in-store or local pickup orders",
            external_sync_enabled=False,
            stages=[
                _received("We've received your order.", 24),
                Stage(
                    id="preparing",
                    index=1,
                    label="Preparing",
                    customer_message="We're preparing your order for pickup.",
                    icon="package",
                    color="#F59E0B",
                    notify_customer=True,
                    estimated_duration_hours=24,
                    category=OrderStatus.PROCESSING,
                ),
                Stage(
                    id="ready-for-pickup",
                    index=2,
                    label="Ready for Pickup",
                    customer_message="Your order is ready! Come pick it up at your convenience.",
                    icon="map-pin",
                    color="#10B981",
                    notify_customer=True,
                    estimated_duration_hours=168,
                    category=OrderStatus.PROCESSING,
                ),
                Stage(
                    id="picked-up",
                    index=3,
                    label="Picked Up",
                    customer_message="Thank you for picking up your order!",
                    icon="check-circle",
                    color="#10B981",
                    is_terminal=True,
                    notify_customer=True,
                    category=OrderStatus.DELIVERED,
                ),
            ],
        ),
    ]
