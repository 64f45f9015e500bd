"""Status transitions of a single work order."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, FrozenSet, Optional, Union

from .domain import ManufacturingOrder, OrderStatus, WorkOrder, WorkOrderStatus

logger = logging.getLogger(__name__)


class InvalidRequestError(ValueError):
    """Raised for malformed, empty or illegal mutation requests."""


ALLOWED_TRANSITIONS: Dict[WorkOrderStatus, FrozenSet[WorkOrderStatus]] = {
    WorkOrderStatus.PENDING: frozenset(
        {WorkOrderStatus.PENDING, WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED}
    ),
    WorkOrderStatus.IN_PROGRESS: frozenset(
        {WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.ON_HOLD, WorkOrderStatus.COMPLETED}
    ),
    WorkOrderStatus.ON_HOLD: frozenset(
        {
            WorkOrderStatus.ON_HOLD,
            WorkOrderStatus.IN_PROGRESS,
            WorkOrderStatus.PENDING,
            WorkOrderStatus.COMPLETED,
        }
    ),
    WorkOrderStatus.COMPLETED: frozenset({WorkOrderStatus.COMPLETED}),
}


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """New values produced by a work order update.

    ``order`` is the parent order after the update; it differs from the input
    only when ``order_started`` is set.
    """

    work_order: WorkOrder
    order: ManufacturingOrder
    order_started: bool = False
    reached_completion: bool = False
    auto_completed: bool = False


def coerce_status(value: Union[str, WorkOrderStatus, None]) -> Optional[WorkOrderStatus]:
    if value is None or isinstance(value, WorkOrderStatus):
        return value
    try:
        return WorkOrderStatus(value)
    except ValueError as exc:
        raise InvalidRequestError(f"Unknown work order status {value!r}") from exc


def apply_update(
    work_order: WorkOrder,
    order: ManufacturingOrder,
    *,
    status: Union[str, WorkOrderStatus, None] = None,
    completed_qty: Optional[float] = None,
    now: Optional[datetime] = None,
) -> TransitionResult:
    """Compute the effect of a status and/or quantity update.

    Neither input is mutated. A reported quantity that reaches the planned
    quantity completes the work order regardless of the requested status.
    Updates to a completed work order leave it exactly as stored.
    """

    requested = coerce_status(status)
    if requested is None and completed_qty is None:
        raise InvalidRequestError("Either a status or a completed quantity is required")
    if completed_qty is not None and completed_qty < 0:
        raise InvalidRequestError("Completed quantity must not be negative")
    if order.status == OrderStatus.CANCELLED:
        raise InvalidRequestError(
            f"Manufacturing order {order.reference} is cancelled"
        )

    current = work_order.status
    target = requested or current
    auto_completed = False
    if completed_qty is not None and completed_qty >= work_order.planned_qty:
        auto_completed = target != WorkOrderStatus.COMPLETED
        target = WorkOrderStatus.COMPLETED

    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidRequestError(
            f"Work order {work_order.reference} cannot move from "
            f"{current.value} to {target.value}"
        )
    if current == WorkOrderStatus.COMPLETED:
        # Completed work orders are frozen; repeated reports change nothing.
        logger.debug("Ignoring update of completed work order %s", work_order.reference)
        return TransitionResult(work_order=work_order, order=order)

    now = now or datetime.utcnow()
    changes = {"status": target, "updated_at": now}
    if completed_qty is not None:
        changes["completed_qty"] = min(completed_qty, work_order.planned_qty)

    order_started = False
    if target in (WorkOrderStatus.IN_PROGRESS, WorkOrderStatus.COMPLETED):
        changes["actual_start"] = work_order.actual_start or now
        if order.status == OrderStatus.DRAFT:
            order = replace(
                order,
                status=OrderStatus.IN_PROGRESS,
                actual_start=order.actual_start or now,
            )
            order_started = True
            logger.info("Manufacturing order %s started", order.reference)

    reached_completion = False
    if target == WorkOrderStatus.COMPLETED:
        reported = work_order.planned_qty if completed_qty is None else completed_qty
        changes["completed_qty"] = min(reported, work_order.planned_qty)
        changes["actual_end"] = work_order.actual_end or now
        reached_completion = current != WorkOrderStatus.COMPLETED

    updated = replace(work_order, **changes)
    if updated.status != current:
        logger.info(
            "Work order %s moved from %s to %s%s",
            work_order.reference,
            current.value,
            target.value,
            " (quantity reached)" if auto_completed else "",
        )
    return TransitionResult(
        work_order=updated,
        order=order,
        order_started=order_started,
        reached_completion=reached_completion,
        auto_completed=auto_completed,
    )


__all__ = [
    "ALLOWED_TRANSITIONS",
    "InvalidRequestError",
    "TransitionResult",
    "apply_update",
    "coerce_status",
]
