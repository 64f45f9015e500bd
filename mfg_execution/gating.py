"""Stage gating and completion cascade for manufacturing orders.

Everything in this module is a pure function over snapshots of the plan
(work center assignments) and the ledger (work orders). Nothing is cached
between calls: stages are rebuilt on every invocation, which keeps the
functions safe to call from any number of concurrent readers.

Two rules drive the engine:

* Availability: parallel assignments may start at any time. Sequential
  assignments of a stage may start once the stage is cleared, i.e. it is the
  first stage, every earlier stage is fully complete, or at least one member
  of the directly preceding stage is complete.
* Completion: a stage with any parallel member is satisfied when all of its
  members are complete; a purely sequential stage is satisfied when any one
  member is complete. The order completes when every stage is satisfied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from itertools import groupby
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from .domain import (
    ManufacturingOrder,
    OrderStatus,
    Stage,
    WorkCenterAssignment,
    WorkOrder,
)

logger = logging.getLogger(__name__)


class InvariantViolationError(RuntimeError):
    """Raised when the ledger references assignments missing from the plan."""


@dataclass(frozen=True, slots=True)
class CompletionResult:
    """Outcome of a completion cascade evaluation."""

    order: ManufacturingOrder
    changed: bool

    @property
    def status(self) -> OrderStatus:
        return self.order.status


def build_stages(assignments: Iterable[WorkCenterAssignment]) -> Tuple[Stage, ...]:
    """Group assignments by stage number, ascending, keeping input order inside a stage."""

    ordered = sorted(assignments, key=lambda assignment: assignment.stage)
    return tuple(
        Stage(number=number, assignments=tuple(members))
        for number, members in groupby(ordered, key=lambda assignment: assignment.stage)
    )


def index_work_orders(
    assignments: Sequence[WorkCenterAssignment],
    work_orders: Iterable[WorkOrder],
) -> Dict[str, WorkOrder]:
    """Map assignment ids to their work order.

    Work orders without an assignment reference are ignored. A reference to an
    assignment that is not part of the plan is a data integrity failure.
    """

    known = {assignment.id for assignment in assignments}
    indexed: Dict[str, WorkOrder] = {}
    for work_order in work_orders:
        if work_order.assignment_id is None:
            continue
        if work_order.assignment_id not in known:
            raise InvariantViolationError(
                f"Work order {work_order.id!r} references assignment "
                f"{work_order.assignment_id!r} which is not part of the plan of "
                f"order {work_order.order_id!r}"
            )
        indexed[work_order.assignment_id] = work_order
    return indexed


def completed_assignment_ids(ledger: Mapping[str, WorkOrder]) -> Set[str]:
    """Assignment ids whose work order has reached ``completed``."""

    return {
        assignment_id
        for assignment_id, work_order in ledger.items()
        if work_order.is_completed
    }


def _fully_complete(stage: Stage, completed: Set[str]) -> bool:
    return all(assignment_id in completed for assignment_id in stage.assignment_ids)


def _partially_complete(stage: Stage, completed: Set[str]) -> bool:
    return any(assignment_id in completed for assignment_id in stage.assignment_ids)


def cleared_stage_numbers(stages: Sequence[Stage], completed: Set[str]) -> List[int]:
    """Return the stage numbers whose sequential members may start.

    The scan stops at the first stage whose predecessors are neither fully
    complete nor represented by one completed member of the nearest earlier
    stage.
    """

    cleared: List[int] = []
    earlier_complete = True
    for index, stage in enumerate(stages):
        if index > 0:
            previous = stages[index - 1]
            earlier_complete = earlier_complete and _fully_complete(previous, completed)
            if not earlier_complete and not _partially_complete(previous, completed):
                break
        cleared.append(stage.number)
    return cleared


def resolve_available(
    assignments: Sequence[WorkCenterAssignment],
    work_orders: Iterable[WorkOrder],
) -> List[WorkCenterAssignment]:
    """Return the assignments that may receive a new work order right now.

    Assignments that already have a work order, whatever its status, are
    never returned. The result is ordered by stage ascending.
    """

    if not assignments:
        return []
    ledger = index_work_orders(assignments, work_orders)
    stages = build_stages(assignments)
    cleared = set(cleared_stage_numbers(stages, completed_assignment_ids(ledger)))

    available: List[WorkCenterAssignment] = []
    for stage in stages:
        for assignment in stage.assignments:
            if assignment.id in ledger:
                continue
            if assignment.parallel or stage.number in cleared:
                available.append(assignment)
    logger.debug(
        "Resolved %d available assignment(s); cleared stages %s",
        len(available),
        sorted(cleared),
    )
    return available


def stage_satisfied(stage: Stage, completed: Set[str]) -> bool:
    """Completion rule for a single stage.

    Stages containing a parallel member, including mixed stages, need every
    member complete; purely sequential stages need any one member.
    """

    if stage.has_parallel:
        return _fully_complete(stage, completed)
    return _partially_complete(stage, completed)


def is_plan_satisfied(
    assignments: Sequence[WorkCenterAssignment],
    work_orders: Sequence[WorkOrder],
) -> bool:
    """Whether the order's work has genuinely finished."""

    ledger = index_work_orders(assignments, work_orders)
    if not assignments:
        return bool(work_orders) and all(
            work_order.is_completed for work_order in work_orders
        )
    completed = completed_assignment_ids(ledger)
    for stage in build_stages(assignments):
        if not stage_satisfied(stage, completed):
            logger.debug("Stage %d is not satisfied yet", stage.number)
            return False
    return True


def try_complete(
    order: ManufacturingOrder,
    assignments: Sequence[WorkCenterAssignment],
    work_orders: Sequence[WorkOrder],
    *,
    now: Optional[datetime] = None,
) -> CompletionResult:
    """Complete ``order`` when its plan is satisfied.

    Only an ``in_progress`` order can complete; any other status is returned
    unchanged. The input order is never mutated; a changed copy is returned
    instead.
    """

    if order.status != OrderStatus.IN_PROGRESS:
        return CompletionResult(order=order, changed=False)
    if not is_plan_satisfied(assignments, work_orders):
        return CompletionResult(order=order, changed=False)

    now = now or datetime.utcnow()
    completed = replace(
        order,
        status=OrderStatus.COMPLETED,
        actual_start=order.actual_start or now,
        actual_end=order.actual_end or now,
        produced_qty=max(order.produced_qty, order.planned_qty),
    )
    logger.info("Manufacturing order %s completed", order.reference)
    return CompletionResult(order=completed, changed=True)


__all__ = [
    "InvariantViolationError",
    "CompletionResult",
    "build_stages",
    "index_work_orders",
    "completed_assignment_ids",
    "cleared_stage_numbers",
    "resolve_available",
    "stage_satisfied",
    "is_plan_satisfied",
    "try_complete",
]
