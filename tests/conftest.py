"""Shared fixtures for service level tests."""

import pytest

from mfg_execution.services import ExecutionService, PlanStep

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


@pytest.fixture
def service():
    return ExecutionService()


@pytest.fixture
def work_centers(service):
    return {
        name: service.register_work_center(TENANT, name, capacity_per_hour=capacity)
        for name, capacity in (("cutting", 12), ("sawing", 8), ("welding", 4), ("painting", 6))
    }


@pytest.fixture
def planned_order(service, work_centers):
    """Order with stage 1 {cutting, sawing} sequential and stage 2 {welding, painting} parallel."""

    order = service.create_manufacturing_order(TENANT, "FRAME-100", 10)
    plan = service.plan_order(
        order.id,
        [
            PlanStep(work_centers["cutting"].id, 1, operation_name="cut"),
            PlanStep(work_centers["sawing"].id, 1, operation_name="saw"),
            PlanStep(work_centers["welding"].id, 2, parallel=True, operation_name="weld"),
            PlanStep(work_centers["painting"].id, 2, parallel=True, operation_name="paint"),
        ],
    )
    return order, {assignment.operation_name: assignment for assignment in plan}
