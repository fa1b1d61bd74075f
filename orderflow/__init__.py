"""Orderflow: configurable order fulfillment workflows with carrier sync."""

from .catalog import WorkflowCatalog
from .contracts import (
    ExternalStatusCode,
    OrderStatus,
    ProgressRecord,
    Stage,
    StageChangedEvent,
    TransitionRecord,
    TransitionSource,
    WorkflowDefinition,
)
from .engine import TransitionEngine, TransitionResult
from .persistence import get_repository
from .reconcile import ExternalEventReconciler, ReconcileOutcome
from .service import ProgressService
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "ExternalEventReconciler",
    "ExternalStatusCode",
    "OrderStatus",
    "ProgressRecord",
    "ProgressService",
    "ReconcileOutcome",
    "Stage",
    "StageChangedEvent",
    "TransitionEngine",
    "TransitionRecord",
    "TransitionResult",
    "TransitionSource",
    "WorkflowCatalog",
    "WorkflowDefinition",
    "get_repository",
    "get_transport",
]
