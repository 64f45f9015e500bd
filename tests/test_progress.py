"""
Tests for capacity based progress estimation and utilization.
"""

from datetime import timedelta

import pytest

from mfg_execution.domain import OrderStatus, WorkOrderStatus
from mfg_execution.progress import estimate_progress, work_center_utilization

from .conftest import TENANT
from .factories import NOW, make_work_order


def running(planned_qty=10, completed_qty=0):
    work_order = make_work_order(
        "A", WorkOrderStatus.IN_PROGRESS, planned_qty=planned_qty, completed_qty=completed_qty
    )
    work_order.actual_start = NOW
    return work_order


class TestEstimateProgress:
    """Progress derived from elapsed time and hourly capacity."""

    def test_pending_is_zero(self):
        estimate = estimate_progress(make_work_order("A"), 10, NOW)

        assert estimate.percentage == 0
        assert estimate.expected_completed_qty == 0

    def test_completed_is_full(self):
        estimate = estimate_progress(make_work_order("A", WorkOrderStatus.COMPLETED), 10, NOW)

        assert estimate.percentage == 100
        assert estimate.time_remaining_hours == 0

    def test_halfway(self):
        # 10 units at 10 per hour: one hour in total
        estimate = estimate_progress(running(), 10, NOW + timedelta(minutes=30))

        assert estimate.percentage == 50
        assert estimate.expected_completed_qty == 5
        assert estimate.time_elapsed_hours == pytest.approx(0.5)
        assert estimate.time_remaining_hours == pytest.approx(0.5)
        assert estimate.expected_completion == NOW + timedelta(hours=1)
        assert not estimate.should_auto_complete

    def test_never_below_reported_quantity(self):
        estimate = estimate_progress(running(completed_qty=8), 10, NOW + timedelta(minutes=6))

        assert estimate.expected_completed_qty == 8

    def test_overdue_caps_at_planned(self):
        estimate = estimate_progress(running(), 10, NOW + timedelta(hours=5))

        assert estimate.percentage == 100
        assert estimate.expected_completed_qty == 10
        assert estimate.should_auto_complete

    def test_unknown_capacity_uses_quantities(self):
        estimate = estimate_progress(running(completed_qty=3), 0, NOW + timedelta(hours=5))

        assert estimate.percentage == 30
        assert estimate.expected_completed_qty == 3
        assert not estimate.should_auto_complete


class TestUtilization:
    def test_share_of_capacity(self):
        assert work_center_utilization(2, 4) == 50.0

    def test_capped(self):
        assert work_center_utilization(10, 4) == 100.0

    def test_unknown_capacity(self):
        assert work_center_utilization(3, 0) == 0.0


class TestServiceProgress:
    """Service level progress sync drives quantity auto-completion."""

    def test_sync_progress_records_quantities(self, service, planned_order):
        order, plan = planned_order
        work_order = service.create_work_order(order.id, plan["cut"].id)
        service.update_work_order_status(work_order.id, status="in_progress", now=NOW)

        # cutting runs 12 per hour: 5 minutes per unit
        results = service.sync_progress(now=NOW + timedelta(minutes=26))

        assert len(results) == 1
        assert results[0].work_order.completed_qty == 5
        assert results[0].work_order.status == WorkOrderStatus.IN_PROGRESS

    def test_sync_progress_completes_finished_work(self, service, planned_order):
        order, plan = planned_order
        started = []
        for name in ("saw", "weld", "paint"):
            work_order = service.create_work_order(order.id, plan[name].id)
            service.update_work_order_status(work_order.id, status="in_progress", now=NOW)
            started.append(work_order)

        results = service.sync_progress(now=NOW + timedelta(hours=4))

        assert {result.work_order.status for result in results} == {WorkOrderStatus.COMPLETED}
        assert service.get_order(order.id).status == OrderStatus.COMPLETED

    def test_utilization_counts_active_work(self, service, planned_order, work_centers):
        order, plan = planned_order
        work_order = service.create_work_order(order.id, plan["weld"].id)
        assert service.work_center_utilization(work_centers["welding"].id) == 0.0

        service.start_work_order(work_order.id)

        assert service.work_center_utilization(
            work_centers["welding"].id, tenant_id=TENANT
        ) == pytest.approx(25.0)
