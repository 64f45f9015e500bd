"""Service layer that exposes the execution engine to its callers."""

from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, ContextManager, List, Optional, Sequence, Union
from uuid import uuid4

from .domain import (
    ManufacturingOrder,
    OrderStatus,
    WorkCenter,
    WorkCenterAssignment,
    WorkOrder,
    WorkOrderStatus,
)
from .gating import (
    build_stages,
    cleared_stage_numbers,
    completed_assignment_ids,
    index_work_orders,
    resolve_available,
    stage_satisfied,
    try_complete,
)
from .progress import ProgressEstimate, estimate_progress, work_center_utilization
from .repository import (
    DuplicateRecordError,
    InMemoryRepository,
    RecordNotFoundError,
    Repository,
)
from .state_machine import InvalidRequestError, apply_update
from .unit_of_work import KeyedLock, TransactionFactory, UnitOfWork

logger = logging.getLogger(__name__)

OrderCompletedHook = Callable[[ManufacturingOrder], None]


@dataclass(slots=True)
class ExecutionOptions:
    """Configuration values controlling planning and work order handling."""

    allow_mixed_stages: bool = False
    order_reference_prefix: str = "MO"
    work_order_reference_prefix: str = "WO"
    default_capacity_per_hour: float = 0.0


@dataclass(slots=True)
class PlanStep:
    """Input for one work center assignment when planning an order."""

    work_center_id: str
    stage: int
    parallel: bool = False
    operation_name: str = ""


@dataclass(slots=True)
class StageStatus:
    """Per-stage view used by planning and shop floor screens."""

    number: int
    parallel: bool
    mixed: bool
    cleared: bool
    satisfied: bool
    assignment_ids: List[str] = field(default_factory=list)
    available_ids: List[str] = field(default_factory=list)


@dataclass(slots=True)
class WorkOrderUpdateResult:
    """Work order after an update plus the state of its parent order."""

    work_order: WorkOrder
    order: ManufacturingOrder
    order_completed: bool = False
    auto_completed: bool = False


def _new_reference(prefix: str, now: datetime) -> str:
    return f"{prefix}-{now.year}-{uuid4().int % 1_000_000:06d}"


class ExecutionService:
    """Facade that exposes execution use-cases to clients."""

    def __init__(
        self,
        work_center_repo: Optional[Repository[WorkCenter]] = None,
        order_repo: Optional[Repository[ManufacturingOrder]] = None,
        assignment_repo: Optional[Repository[WorkCenterAssignment]] = None,
        work_order_repo: Optional[Repository[WorkOrder]] = None,
        *,
        transaction_factory: Optional[TransactionFactory] = None,
        options: Optional[ExecutionOptions] = None,
    ) -> None:
        if work_center_repo is None:
            work_center_repo = InMemoryRepository("Work center")
        if order_repo is None:
            order_repo = InMemoryRepository("Manufacturing order")
        if assignment_repo is None:
            assignment_repo = InMemoryRepository("Assignment")
        if work_order_repo is None:
            work_order_repo = InMemoryRepository("Work order")
        self.work_centers = work_center_repo
        self.orders = order_repo
        self.assignments = assignment_repo
        self.work_orders = work_order_repo
        self.execution_options = options or ExecutionOptions()
        self._transaction_factory = transaction_factory
        self._locks = KeyedLock()
        self._completion_hooks: List[OrderCompletedHook] = []

    # ------------------------------------------------------------------
    # Configuration and hooks
    # ------------------------------------------------------------------
    def update_execution_options(
        self,
        *,
        allow_mixed_stages: bool,
        order_reference_prefix: str = "MO",
        work_order_reference_prefix: str = "WO",
        default_capacity_per_hour: float = 0.0,
    ) -> ExecutionOptions:
        self.execution_options = ExecutionOptions(
            allow_mixed_stages=allow_mixed_stages,
            order_reference_prefix=order_reference_prefix or "MO",
            work_order_reference_prefix=work_order_reference_prefix or "WO",
            default_capacity_per_hour=max(default_capacity_per_hour, 0.0),
        )
        return self.execution_options

    def on_order_completed(self, hook: OrderCompletedHook) -> OrderCompletedHook:
        """Register ``hook`` to run once whenever an order genuinely completes."""

        self._completion_hooks.append(hook)
        return hook

    def _fire_order_completed(self, order: ManufacturingOrder) -> None:
        for hook in self._completion_hooks:
            try:
                hook(order)
            except Exception:
                # The transition is committed at this point; listeners only log.
                logger.exception(
                    "Order completion hook %r failed for %s", hook, order.reference
                )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    @staticmethod
    def _check_scope(record, tenant_id: Optional[str], label: str) -> None:
        if tenant_id is not None and record.tenant_id != tenant_id:
            raise RecordNotFoundError(f"{label} {record.id!r} not found")

    def get_order(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> ManufacturingOrder:
        order = self.orders.get(order_id)
        self._check_scope(order, tenant_id, "Manufacturing order")
        return order

    def get_work_center(
        self, work_center_id: str, *, tenant_id: Optional[str] = None
    ) -> WorkCenter:
        work_center = self.work_centers.get(work_center_id)
        self._check_scope(work_center, tenant_id, "Work center")
        return work_center

    def get_work_order(
        self,
        work_order_id: str,
        *,
        tenant_id: Optional[str] = None,
        order_id: Optional[str] = None,
    ) -> WorkOrder:
        work_order = self.work_orders.get(work_order_id)
        self._check_scope(work_order, tenant_id, "Work order")
        if order_id is not None and work_order.order_id != order_id:
            raise RecordNotFoundError(f"Work order {work_order_id!r} not found")
        return work_order

    def get_plan(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> List[WorkCenterAssignment]:
        self.get_order(order_id, tenant_id=tenant_id)
        plan = self.assignments.find_by(order_id=order_id)
        plan.sort(key=lambda assignment: (assignment.stage, assignment.position))
        return plan

    def list_work_orders(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> List[WorkOrder]:
        self.get_order(order_id, tenant_id=tenant_id)
        work_orders = self.work_orders.find_by(order_id=order_id)
        work_orders.sort(key=lambda work_order: work_order.created_at)
        return work_orders

    # ------------------------------------------------------------------
    # Master data and planning
    # ------------------------------------------------------------------
    def register_work_center(
        self,
        tenant_id: str,
        name: str,
        *,
        capacity_per_hour: Optional[float] = None,
        description: str = "",
    ) -> WorkCenter:
        if capacity_per_hour is None:
            capacity_per_hour = self.execution_options.default_capacity_per_hour
        if capacity_per_hour < 0:
            raise InvalidRequestError("Capacity per hour must not be negative")
        work_center = WorkCenter(
            id=str(uuid4()),
            tenant_id=tenant_id,
            name=name,
            capacity_per_hour=capacity_per_hour,
            description=description,
        )
        self.work_centers.add(work_center.id, work_center)
        return work_center

    def create_manufacturing_order(
        self,
        tenant_id: str,
        item_id: str,
        planned_qty: float,
        *,
        remarks: str = "",
    ) -> ManufacturingOrder:
        if planned_qty <= 0:
            raise InvalidRequestError("Planned quantity must be positive")
        now = datetime.utcnow()
        order = ManufacturingOrder(
            id=str(uuid4()),
            tenant_id=tenant_id,
            reference=_new_reference(self.execution_options.order_reference_prefix, now),
            item_id=item_id,
            planned_qty=planned_qty,
            created_at=now,
            remarks=remarks,
        )
        self.orders.add(order.id, order)
        logger.info("Created manufacturing order %s for item %s", order.reference, item_id)
        return order

    def plan_order(
        self,
        order_id: str,
        steps: Sequence[PlanStep],
        *,
        tenant_id: Optional[str] = None,
    ) -> List[WorkCenterAssignment]:
        """Attach the stage plan to a draft order.

        A plan can only be replaced while the order is a draft without work
        orders.
        """

        with self._locks.hold(order_id):
            order = self.get_order(order_id, tenant_id=tenant_id)
            if order.status != OrderStatus.DRAFT:
                raise InvalidRequestError(
                    f"Order {order.reference} is {order.status.value}; only drafts can be planned"
                )
            if self.list_work_orders(order_id):
                raise InvalidRequestError(
                    f"Order {order.reference} already has work orders"
                )
            if not steps:
                raise InvalidRequestError("A plan needs at least one step")

            assignments: List[WorkCenterAssignment] = []
            for position, step in enumerate(steps):
                if step.stage < 1:
                    raise InvalidRequestError("Stage numbers start at 1")
                self.get_work_center(step.work_center_id, tenant_id=order.tenant_id)
                assignments.append(
                    WorkCenterAssignment(
                        id=str(uuid4()),
                        order_id=order_id,
                        work_center_id=step.work_center_id,
                        stage=step.stage,
                        parallel=step.parallel,
                        operation_name=step.operation_name,
                        position=position,
                    )
                )

            mixed = [stage.number for stage in build_stages(assignments) if stage.is_mixed]
            if mixed and not self.execution_options.allow_mixed_stages:
                raise InvalidRequestError(
                    f"Stages {mixed} mix parallel and sequential assignments"
                )
            if mixed:
                logger.warning(
                    "Order %s mixes parallel and sequential work in stages %s; "
                    "all members of those stages must complete",
                    order.reference,
                    mixed,
                )

            with self._transaction():
                for previous in self.get_plan(order_id):
                    self.assignments.remove(previous.id)
                for assignment in assignments:
                    self.assignments.add(assignment.id, assignment)
        logger.info(
            "Planned order %s with %d assignment(s) in %d stage(s)",
            order.reference,
            len(assignments),
            len(build_stages(assignments)),
        )
        return assignments

    def _transaction(self) -> ContextManager[Any]:
        return (self._transaction_factory or nullcontext)()

    def cancel_order(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> ManufacturingOrder:
        with self._locks.hold(order_id):
            order = self.get_order(order_id, tenant_id=tenant_id)
            if order.status != OrderStatus.DRAFT:
                raise InvalidRequestError(
                    f"Order {order.reference} is {order.status.value}; only drafts can be cancelled"
                )
            cancelled = replace(order, status=OrderStatus.CANCELLED)
            self.orders.upsert(order.id, cancelled)
        logger.info("Cancelled manufacturing order %s", order.reference)
        return cancelled

    # ------------------------------------------------------------------
    # Availability and work order creation
    # ------------------------------------------------------------------
    def resolve_available(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> List[WorkCenterAssignment]:
        """Assignments that may receive a work order right now.

        The answer is advisory; :meth:`create_work_order` checks it again.
        """

        plan = self.get_plan(order_id, tenant_id=tenant_id)
        return resolve_available(plan, self.list_work_orders(order_id))

    def stage_overview(
        self, order_id: str, *, tenant_id: Optional[str] = None
    ) -> List[StageStatus]:
        plan = self.get_plan(order_id, tenant_id=tenant_id)
        work_orders = self.list_work_orders(order_id)
        completed = completed_assignment_ids(index_work_orders(plan, work_orders))
        stages = build_stages(plan)
        cleared = set(cleared_stage_numbers(stages, completed))
        available = {assignment.id for assignment in resolve_available(plan, work_orders)}
        return [
            StageStatus(
                number=stage.number,
                parallel=stage.has_parallel,
                mixed=stage.is_mixed,
                cleared=stage.number in cleared,
                satisfied=stage_satisfied(stage, completed),
                assignment_ids=list(stage.assignment_ids),
                available_ids=[
                    assignment_id
                    for assignment_id in stage.assignment_ids
                    if assignment_id in available
                ],
            )
            for stage in stages
        ]

    def create_work_order(
        self,
        order_id: str,
        assignment_id: Optional[str] = None,
        *,
        work_center_id: Optional[str] = None,
        planned_qty: Optional[float] = None,
        tenant_id: Optional[str] = None,
        assigned_to: Optional[str] = None,
        notes: str = "",
    ) -> WorkOrder:
        """Create a work order for an eligible assignment.

        Orders without a plan accept work orders for any of the tenant's work
        centers instead.
        """

        with self._locks.hold(order_id):
            order = self.get_order(order_id, tenant_id=tenant_id)
            if order.status not in (OrderStatus.DRAFT, OrderStatus.IN_PROGRESS):
                raise InvalidRequestError(
                    f"Order {order.reference} is {order.status.value}; no new work can start"
                )
            plan = self.get_plan(order_id)
            if plan:
                if assignment_id is None:
                    raise InvalidRequestError(
                        f"Order {order.reference} is planned; an assignment is required"
                    )
                assignment = next(
                    (candidate for candidate in plan if candidate.id == assignment_id),
                    None,
                )
                if assignment is None:
                    raise RecordNotFoundError(
                        f"Assignment {assignment_id!r} not found on order {order.reference}"
                    )
                existing = self.list_work_orders(order_id)
                if any(wo.assignment_id == assignment_id for wo in existing):
                    raise DuplicateRecordError(
                        f"Assignment {assignment_id!r} already has a work order"
                    )
                eligible = {candidate.id for candidate in resolve_available(plan, existing)}
                if assignment_id not in eligible:
                    raise InvalidRequestError(
                        f"Stage {assignment.stage} of order {order.reference} is not cleared yet"
                    )
                work_center_id = assignment.work_center_id
            else:
                if assignment_id is not None:
                    raise RecordNotFoundError(
                        f"Assignment {assignment_id!r} not found on order {order.reference}"
                    )
                if work_center_id is None:
                    raise InvalidRequestError("A work center is required")
                self.get_work_center(work_center_id, tenant_id=order.tenant_id)

            quantity = order.planned_qty if planned_qty is None else planned_qty
            if quantity <= 0:
                raise InvalidRequestError("Planned quantity must be positive")
            now = datetime.utcnow()
            work_order = WorkOrder(
                id=str(uuid4()),
                tenant_id=order.tenant_id,
                order_id=order.id,
                assignment_id=assignment_id,
                work_center_id=work_center_id,
                reference=_new_reference(
                    self.execution_options.work_order_reference_prefix, now
                ),
                planned_qty=quantity,
                created_at=now,
                updated_at=now,
                assigned_to=assigned_to,
                notes=notes,
            )
            self.work_orders.add(work_order.id, work_order)
        logger.info(
            "Created work order %s for order %s", work_order.reference, order.reference
        )
        return work_order

    # ------------------------------------------------------------------
    # Status updates
    # ------------------------------------------------------------------
    def update_work_order_status(
        self,
        work_order_id: str,
        *,
        status: Union[str, WorkOrderStatus, None] = None,
        completed_qty: Optional[float] = None,
        tenant_id: Optional[str] = None,
        order_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> WorkOrderUpdateResult:
        """Single mutation entry point for work orders.

        Runs the status transition and, when the work order completes, the
        completion cascade for its order, committing both as one unit.
        """

        if status is None and completed_qty is None:
            raise InvalidRequestError("Either a status or a completed quantity is required")
        snapshot = self.get_work_order(
            work_order_id, tenant_id=tenant_id, order_id=order_id
        )
        now = now or datetime.utcnow()

        with self._locks.hold(snapshot.order_id, work_order_id):
            work_order = self.work_orders.get(work_order_id)
            order = self.orders.get(work_order.order_id)
            transition = apply_update(
                work_order, order, status=status, completed_qty=completed_qty, now=now
            )
            updated_order = transition.order
            order_completed = False

            uow = UnitOfWork(self._transaction_factory)
            uow.register(self.work_orders, work_order_id, transition.work_order)
            if transition.reached_completion:
                plan = self.get_plan(order.id)
                ledger = [
                    transition.work_order if wo.id == work_order_id else wo
                    for wo in self.list_work_orders(order.id)
                ]
                cascade = try_complete(updated_order, plan, ledger, now=now)
                updated_order = cascade.order
                order_completed = cascade.changed
            if updated_order is not order:
                uow.register(self.orders, order.id, updated_order)
            uow.commit()

        if order_completed:
            self._fire_order_completed(updated_order)
        return WorkOrderUpdateResult(
            work_order=transition.work_order,
            order=updated_order,
            order_completed=order_completed,
            auto_completed=transition.auto_completed,
        )

    def start_work_order(self, work_order_id: str, **scope) -> WorkOrderUpdateResult:
        return self.update_work_order_status(
            work_order_id, status=WorkOrderStatus.IN_PROGRESS, **scope
        )

    def hold_work_order(self, work_order_id: str, **scope) -> WorkOrderUpdateResult:
        return self.update_work_order_status(
            work_order_id, status=WorkOrderStatus.ON_HOLD, **scope
        )

    def complete_work_order(
        self,
        work_order_id: str,
        completed_qty: Optional[float] = None,
        **scope,
    ) -> WorkOrderUpdateResult:
        return self.update_work_order_status(
            work_order_id,
            status=WorkOrderStatus.COMPLETED,
            completed_qty=completed_qty,
            **scope,
        )

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------
    def work_order_progress(
        self,
        work_order_id: str,
        *,
        tenant_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ProgressEstimate:
        work_order = self.get_work_order(work_order_id, tenant_id=tenant_id)
        work_center = self.work_centers.get(work_order.work_center_id)
        return estimate_progress(work_order, work_center.capacity_per_hour, now)

    def work_center_utilization(
        self, work_center_id: str, *, tenant_id: Optional[str] = None
    ) -> float:
        work_center = self.get_work_center(work_center_id, tenant_id=tenant_id)
        active = self.work_orders.filter(
            lambda work_order: work_order.work_center_id == work_center_id
            and work_order.status.is_active
        )
        return work_center_utilization(len(active), work_center.capacity_per_hour)

    def sync_progress(
        self, *, now: Optional[datetime] = None
    ) -> List[WorkOrderUpdateResult]:
        """Record time-derived quantities for running work orders.

        Work orders whose estimate reaches the planned quantity complete
        through the regular quantity rule.
        """

        now = now or datetime.utcnow()
        results: List[WorkOrderUpdateResult] = []
        running = self.work_orders.find_by(status=WorkOrderStatus.IN_PROGRESS)
        for work_order in running:
            estimate = self.work_order_progress(work_order.id, now=now)
            if estimate.expected_completed_qty <= work_order.completed_qty:
                continue
            results.append(
                self.update_work_order_status(
                    work_order.id,
                    completed_qty=estimate.expected_completed_qty,
                    now=now,
                )
            )
        if results:
            logger.info("Progress sync updated %d work order(s)", len(results))
        return results


__all__ = [
    "ExecutionService",
    "ExecutionOptions",
    "PlanStep",
    "StageStatus",
    "WorkOrderUpdateResult",
]
