"""Execution gating for manufacturing orders.

This package decides which work center assignments of a manufacturing order
may start, drives the status of individual work orders, and completes the
parent order once its staged plan is satisfied. In-memory and SQLite
persistence plus a small FastAPI surface are included for convenience.
"""

from .domain import (
    ManufacturingOrder,
    OrderStatus,
    Stage,
    WorkCenter,
    WorkCenterAssignment,
    WorkOrder,
    WorkOrderStatus,
)
from .gating import (
    CompletionResult,
    InvariantViolationError,
    build_stages,
    is_plan_satisfied,
    resolve_available,
    try_complete,
)
from .repository import DuplicateRecordError, InMemoryRepository, RecordNotFoundError
from .services import ExecutionOptions, ExecutionService, PlanStep, WorkOrderUpdateResult
from .state_machine import InvalidRequestError, apply_update
from .storage import ExecutionDatabase

__all__ = [
    "ManufacturingOrder",
    "OrderStatus",
    "Stage",
    "WorkCenter",
    "WorkCenterAssignment",
    "WorkOrder",
    "WorkOrderStatus",
    "CompletionResult",
    "InvariantViolationError",
    "build_stages",
    "is_plan_satisfied",
    "resolve_available",
    "try_complete",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "InMemoryRepository",
    "ExecutionDatabase",
    "ExecutionOptions",
    "ExecutionService",
    "PlanStep",
    "WorkOrderUpdateResult",
    "InvalidRequestError",
    "apply_update",
]
