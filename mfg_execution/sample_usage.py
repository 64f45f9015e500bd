"""Demonstration script for the manufacturing execution engine."""

from __future__ import annotations

import logging
from pprint import pprint

from . import ExecutionService, PlanStep, WorkOrderStatus


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    service = ExecutionService()
    tenant = "acme"

    @service.on_order_completed
    def post_finished_goods(order) -> None:
        print(f"Posting {order.produced_qty} x {order.item_id} to stock for {order.reference}")

    # Work centers
    cutting = service.register_work_center(tenant, "Laser Cutting", capacity_per_hour=12)
    sawing = service.register_work_center(tenant, "Sawing", capacity_per_hour=8)
    welding = service.register_work_center(tenant, "Welding", capacity_per_hour=4)
    painting = service.register_work_center(tenant, "Painting", capacity_per_hour=6)

    # Order and plan: stage 1 needs one of cutting/sawing, stage 2 needs both
    order = service.create_manufacturing_order(tenant, "FRAME-100", 10)
    plan = service.plan_order(
        order.id,
        [
            PlanStep(cutting.id, 1, operation_name="Cut sheet parts"),
            PlanStep(sawing.id, 1, operation_name="Saw profiles"),
            PlanStep(welding.id, 2, parallel=True, operation_name="Weld frame"),
            PlanStep(painting.id, 2, parallel=True, operation_name="Paint brackets"),
        ],
    )
    names = {assignment.id: assignment.operation_name for assignment in plan}

    def show_available() -> None:
        available = service.resolve_available(order.id)
        print("Available:", [names[assignment.id] for assignment in available])

    show_available()
    cut_parts = service.create_work_order(order.id, plan[0].id)
    service.start_work_order(cut_parts.id)
    service.update_work_order_status(cut_parts.id, completed_qty=10)
    show_available()

    weld = service.create_work_order(order.id, plan[2].id)
    paint = service.create_work_order(order.id, plan[3].id)
    service.complete_work_order(weld.id)
    print("Order after welding:", service.get_order(order.id).status.value)

    result = service.update_work_order_status(
        paint.id, status=WorkOrderStatus.IN_PROGRESS, completed_qty=12
    )
    print("Painting auto-completed:", result.auto_completed)
    print("Order completed:", result.order_completed)

    print("\nStage overview:")
    pprint(service.stage_overview(order.id))


if __name__ == "__main__":
    main()
