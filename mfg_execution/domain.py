"""Core data structures for manufacturing order execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class OrderStatus(str, Enum):
    """Lifecycle of a manufacturing order."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WorkOrderStatus(str, Enum):
    """Lifecycle of a single work order on the shop floor."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"

    @property
    def is_active(self) -> bool:
        """Whether the work order currently occupies its work center."""

        return self in (WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.ON_HOLD)


@dataclass(slots=True)
class WorkCenter:
    """A capacity resource that executes work orders."""

    id: str
    tenant_id: str
    name: str
    capacity_per_hour: float = 0.0
    is_active: bool = True
    description: str = ""


@dataclass(slots=True)
class ManufacturingOrder:
    """One production run of a finished item."""

    id: str
    tenant_id: str
    reference: str
    item_id: str
    planned_qty: float
    produced_qty: float = 0.0
    status: OrderStatus = OrderStatus.DRAFT
    created_at: datetime = field(default_factory=datetime.utcnow)
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    remarks: str = ""


@dataclass(frozen=True, slots=True)
class WorkCenterAssignment:
    """A planned execution step of a manufacturing order.

    Assignments are created once when the order is planned and never change
    afterwards; re-planning means replacing the whole set.
    """

    id: str
    order_id: str
    work_center_id: str
    stage: int
    parallel: bool = False
    operation_name: str = ""
    position: int = 0


@dataclass(slots=True)
class WorkOrder:
    """Execution record for exactly one work center assignment.

    ``assignment_id`` is ``None`` only for orders that were never planned.
    """

    id: str
    tenant_id: str
    order_id: str
    assignment_id: Optional[str]
    work_center_id: str
    reference: str
    planned_qty: float
    completed_qty: float = 0.0
    status: WorkOrderStatus = WorkOrderStatus.PENDING
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    assigned_to: Optional[str] = None
    notes: str = ""

    @property
    def is_completed(self) -> bool:
        return self.status == WorkOrderStatus.COMPLETED


@dataclass(frozen=True, slots=True)
class Stage:
    """All assignments of one order that share a stage number.

    Stages are derived on every call and never stored.
    """

    number: int
    assignments: Tuple[WorkCenterAssignment, ...]

    @property
    def has_parallel(self) -> bool:
        return any(assignment.parallel for assignment in self.assignments)

    @property
    def is_mixed(self) -> bool:
        """True when parallel and sequential members share the stage."""

        return self.has_parallel and not all(
            assignment.parallel for assignment in self.assignments
        )

    @property
    def assignment_ids(self) -> Tuple[str, ...]:
        return tuple(assignment.id for assignment in self.assignments)


__all__ = [
    "OrderStatus",
    "WorkOrderStatus",
    "WorkCenter",
    "ManufacturingOrder",
    "WorkCenterAssignment",
    "WorkOrder",
    "Stage",
]
