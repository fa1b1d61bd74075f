"""Order directory collaborator interface and an in-memory implementation."""

from __future__ import annotations

from typing import Dict, Optional, Protocol

from pydantic import BaseModel, Field

from .catalog import WorkflowCatalog
from .contracts import OrderStatus
from .errors import NotFound


class OrderDirectory(Protocol):
    """Lookups the engine needs from the surrounding order system."""

    async def order_exists(self, order_id: str) -> bool:
        """Return ``True`` if the order is known."""

    async def get_assigned_or_default_workflow_id(self, order_id: str) -> str:
        """Workflow assigned to the order, falling back to the default one."""

    async def find_order_by_tracking_number(self, tracking_number: str) -> Optional[str]:
        """Resolve a carrier tracking number to an order id."""

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        """Write the legacy coarse status derived from the current stage."""


class OrderEntry(BaseModel):
    """Minimal view of an order kept by ``InMemoryOrderDirectory``."""

    order_id: str
    workflow_id: Optional[str] = None
    tracking_numbers: set[str] = Field(default_factory=set)
    status: OrderStatus = OrderStatus.PENDING


class InMemoryOrderDirectory(OrderDirectory):
    """Directory backed by a dict, used by tests and the CLI.

    With ``auto_register`` any order id is accepted and registered on first
    lookup, which lets the CLI run without an order system behind it.
    """

    def __init__(self, catalog: WorkflowCatalog, auto_register: bool = False) -> None:
        self._catalog = catalog
        self._auto_register = auto_register
        self._orders: Dict[str, OrderEntry] = {}

    def add_order(
        self,
        order_id: str,
        workflow_id: Optional[str] = None,
        tracking_numbers: Optional[set[str]] = None,
    ) -> OrderEntry:
        entry = OrderEntry(
            order_id=order_id,
            workflow_id=workflow_id,
            tracking_numbers=tracking_numbers or set(),
        )
        self._orders[order_id] = entry
        return entry

    def attach_tracking_number(self, order_id: str, tracking_number: str) -> None:
        self._orders[order_id].tracking_numbers.add(tracking_number)

    def get(self, order_id: str) -> Optional[OrderEntry]:
        return self._orders.get(order_id)

    async def order_exists(self, order_id: str) -> bool:
        if order_id not in self._orders and self._auto_register:
            self.add_order(order_id)
        return order_id in self._orders

    async def get_assigned_or_default_workflow_id(self, order_id: str) -> str:
        entry = self._orders.get(order_id)
        if entry is None and self._auto_register:
            entry = self.add_order(order_id)
        if entry is None:
            raise NotFound(f"Order {order_id!r} not found")
        if entry.workflow_id:
            return entry.workflow_id
        return (await self._catalog.get_default()).id

    async def find_order_by_tracking_number(self, tracking_number: str) -> Optional[str]:
        for entry in self._orders.values():
            if tracking_number in entry.tracking_numbers:
                return entry.order_id
        return None

    async def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        entry = self._orders.get(order_id)
        if entry is not None:
            entry.status = status
