"""Capacity based progress estimation for running work orders."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .domain import WorkOrder, WorkOrderStatus


@dataclass(slots=True)
class ProgressEstimate:
    """Snapshot of how far a work order has come."""

    work_order_id: str
    percentage: int
    expected_completed_qty: float
    time_elapsed_hours: float = 0.0
    time_remaining_hours: Optional[float] = None
    expected_completion: Optional[datetime] = None
    should_auto_complete: bool = False


def _quantity_percentage(completed: float, planned: float) -> int:
    return round(completed / planned * 100) if planned > 0 else 0


def estimate_progress(
    work_order: WorkOrder,
    capacity_per_hour: float,
    now: Optional[datetime] = None,
) -> ProgressEstimate:
    """Estimate progress from elapsed time and the work center's hourly capacity.

    A work center without a known capacity falls back to the recorded
    quantities. The estimated quantity never drops below what was already
    reported and never exceeds the planned quantity.
    """

    planned = work_order.planned_qty
    if work_order.is_completed or work_order.completed_qty >= planned:
        return ProgressEstimate(
            work_order_id=work_order.id,
            percentage=100,
            expected_completed_qty=planned,
            time_remaining_hours=0.0,
        )
    if work_order.status == WorkOrderStatus.PENDING or work_order.actual_start is None:
        return ProgressEstimate(
            work_order_id=work_order.id,
            percentage=0,
            expected_completed_qty=0.0,
        )
    if capacity_per_hour <= 0:
        return ProgressEstimate(
            work_order_id=work_order.id,
            percentage=_quantity_percentage(work_order.completed_qty, planned),
            expected_completed_qty=work_order.completed_qty,
        )

    now = now or datetime.utcnow()
    minutes_per_unit = 60.0 / capacity_per_hour
    total_minutes = planned * minutes_per_unit
    elapsed_minutes = max((now - work_order.actual_start).total_seconds() / 60.0, 0.0)
    if total_minutes > 0:
        percentage = min(100, round(elapsed_minutes / total_minutes * 100))
    else:
        percentage = 100
    expected_qty = min(
        planned,
        max(work_order.completed_qty, math.floor(elapsed_minutes / minutes_per_unit)),
    )
    return ProgressEstimate(
        work_order_id=work_order.id,
        percentage=percentage,
        expected_completed_qty=float(expected_qty),
        time_elapsed_hours=elapsed_minutes / 60.0,
        time_remaining_hours=max(0.0, total_minutes - elapsed_minutes) / 60.0,
        expected_completion=work_order.actual_start + timedelta(minutes=total_minutes),
        should_auto_complete=percentage >= 100,
    )


def work_center_utilization(active_work_orders: int, capacity_per_hour: float) -> float:
    """Share of a work center's capacity taken by active work orders, in percent."""

    if capacity_per_hour <= 0:
        return 0.0
    return min(active_work_orders / capacity_per_hour * 100.0, 100.0)


__all__ = ["ProgressEstimate", "estimate_progress", "work_center_utilization"]
