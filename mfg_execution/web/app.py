"""FastAPI-based web interface for the execution engine."""

from __future__ import annotations

import logging
import os
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, Form, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from ..domain import OrderStatus
from ..gating import InvariantViolationError
from ..repository import DuplicateRecordError, RecordNotFoundError
from ..services import ExecutionService, PlanStep
from ..state_machine import InvalidRequestError
from ..storage import ExecutionDatabase

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATES_DIR))

DATABASE_ENV_VAR = "MFG_EXECUTION_DB"
DEFAULT_DATABASE_PATH = "mfg_execution.sqlite3"
DEMO_TENANT = "demo"


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def create_app(database_path: Optional[str] = None, *, demo_data: bool = True) -> FastAPI:
    database_path = database_path or os.environ.get(
        DATABASE_ENV_VAR, DEFAULT_DATABASE_PATH
    )
    database = ExecutionDatabase(database_path)
    service = ExecutionService(
        work_center_repo=database.work_centers,
        order_repo=database.orders,
        assignment_repo=database.assignments,
        work_order_repo=database.work_orders,
        transaction_factory=database.transaction,
    )
    if demo_data:
        ensure_demo_data(service)

    app = FastAPI(title="Manufacturing Execution")
    app.state.execution_service = service
    app.state.database = database

    @app.on_event("shutdown")
    async def shutdown_event() -> None:  # pragma: no cover - framework hook
        database.close()

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        logger.warning("Not found on %s: %s", request.url.path, exc)
        return _error(404, exc)

    @app.exception_handler(DuplicateRecordError)
    async def duplicate_handler(request: Request, exc: DuplicateRecordError):
        logger.warning("Conflict on %s: %s", request.url.path, exc)
        return _error(409, exc)

    @app.exception_handler(InvalidRequestError)
    async def invalid_request_handler(request: Request, exc: InvalidRequestError):
        logger.warning("Rejected request on %s: %s", request.url.path, exc)
        return _error(400, exc)

    @app.exception_handler(InvariantViolationError)
    async def invariant_handler(request: Request, exc: InvariantViolationError):
        logger.error("Data integrity failure on %s: %s", request.url.path, exc)
        return _error(500, exc)

    @app.get("/")
    async def dashboard(request: Request):
        service: ExecutionService = request.app.state.execution_service
        orders = sorted(service.orders.list(), key=lambda order: order.created_at)
        work_centers = {center.id: center for center in service.work_centers.list()}
        return templates.TemplateResponse(
            request,
            "dashboard.html",
            {
                "orders": orders,
                "work_centers": work_centers,
                "open_statuses": {OrderStatus.DRAFT, OrderStatus.IN_PROGRESS},
            },
        )

    @app.get("/orders/{order_id}")
    async def order_detail(
        order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        order = service.get_order(order_id, tenant_id=x_tenant_id)
        work_centers = {center.id: center for center in service.work_centers.list()}
        return templates.TemplateResponse(
            request,
            "order.html",
            {
                "order": order,
                "plan": service.get_plan(order_id),
                "stages": service.stage_overview(order_id),
                "work_orders": service.list_work_orders(order_id),
                "work_centers": work_centers,
            },
        )

    @app.post("/orders")
    async def create_order(
        request: Request,
        item_id: str = Form(...),
        planned_qty: float = Form(...),
        remarks: str = Form(""),
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        order = service.create_manufacturing_order(
            x_tenant_id or DEMO_TENANT, item_id, planned_qty, remarks=remarks
        )
        return RedirectResponse(f"/orders/{order.id}", status_code=303)

    @app.post("/orders/{order_id}/plan")
    async def plan_order(
        order_id: str,
        request: Request,
        steps: str = Form(...),
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        service.plan_order(order_id, parse_plan_steps(steps), tenant_id=x_tenant_id)
        return RedirectResponse(f"/orders/{order_id}", status_code=303)

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(
        order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        service.cancel_order(order_id, tenant_id=x_tenant_id)
        return RedirectResponse(f"/orders/{order_id}", status_code=303)

    @app.get("/api/orders/{order_id}")
    async def order_json(
        order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        order = service.get_order(order_id, tenant_id=x_tenant_id)
        return jsonable_encoder(
            {
                "order": asdict(order),
                "plan": [asdict(assignment) for assignment in service.get_plan(order_id)],
                "work_orders": [
                    asdict(work_order) for work_order in service.list_work_orders(order_id)
                ],
            }
        )

    @app.get("/api/orders/{order_id}/available")
    async def available_assignments(
        order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        available = service.resolve_available(order_id, tenant_id=x_tenant_id)
        return jsonable_encoder([asdict(assignment) for assignment in available])

    @app.get("/api/orders/{order_id}/stages")
    async def stage_overview(
        order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        stages = service.stage_overview(order_id, tenant_id=x_tenant_id)
        return jsonable_encoder([asdict(stage) for stage in stages])

    @app.post("/orders/{order_id}/work-orders")
    async def create_work_order(
        order_id: str,
        request: Request,
        assignment_id: Optional[str] = Form(None),
        work_center_id: Optional[str] = Form(None),
        planned_qty: Optional[str] = Form(None),
        assigned_to: Optional[str] = Form(None),
        notes: str = Form(""),
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        service.create_work_order(
            order_id,
            assignment_id or None,
            work_center_id=work_center_id or None,
            planned_qty=parse_quantity(planned_qty),
            tenant_id=x_tenant_id,
            assigned_to=assigned_to or None,
            notes=notes,
        )
        return RedirectResponse(f"/orders/{order_id}", status_code=303)

    @app.post("/api/work-orders/{work_order_id}/status")
    async def update_work_order_status(
        work_order_id: str,
        request: Request,
        status: Optional[str] = Form(None),
        completed_qty: Optional[str] = Form(None),
        order_id: Optional[str] = Form(None),
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        result = service.update_work_order_status(
            work_order_id,
            status=status or None,
            completed_qty=parse_quantity(completed_qty),
            tenant_id=x_tenant_id,
            order_id=order_id or None,
        )
        return jsonable_encoder(
            {
                "work_order": asdict(result.work_order),
                "order_status": result.order.status,
                "order_completed": result.order_completed,
                "auto_completed": result.auto_completed,
            }
        )

    @app.get("/api/work-orders/{work_order_id}/progress")
    async def work_order_progress(
        work_order_id: str,
        request: Request,
        x_tenant_id: Optional[str] = Header(None),
    ):
        service: ExecutionService = request.app.state.execution_service
        estimate = service.work_order_progress(work_order_id, tenant_id=x_tenant_id)
        return jsonable_encoder(asdict(estimate))

    @app.post("/progress/sync")
    async def sync_progress(request: Request):
        service: ExecutionService = request.app.state.execution_service
        service.sync_progress()
        return RedirectResponse("/", status_code=303)

    return app


def parse_quantity(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid quantity {value!r}") from exc


def parse_plan_steps(definitions: str) -> List[PlanStep]:
    """Parse ``work_center_id|stage|parallel|operation`` lines into plan steps."""

    steps: List[PlanStep] = []
    for line in definitions.splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split("|")]
        if len(parts) < 2:
            raise InvalidRequestError(f"Invalid plan line {line!r}")
        try:
            stage = int(parts[1])
        except ValueError as exc:
            raise InvalidRequestError(f"Invalid stage in plan line {line!r}") from exc
        parallel = len(parts) > 2 and parts[2].lower() in {"1", "true", "yes", "parallel"}
        operation_name = parts[3] if len(parts) > 3 else ""
        steps.append(
            PlanStep(
                work_center_id=parts[0],
                stage=stage,
                parallel=parallel,
                operation_name=operation_name,
            )
        )
    return steps


def ensure_demo_data(service: ExecutionService) -> None:
    if len(service.orders.list()) > 0:
        return

    cutting = service.register_work_center(DEMO_TENANT, "Laser Cutting", capacity_per_hour=12)
    sawing = service.register_work_center(DEMO_TENANT, "Sawing", capacity_per_hour=8)
    welding = service.register_work_center(DEMO_TENANT, "Welding", capacity_per_hour=4)
    painting = service.register_work_center(DEMO_TENANT, "Painting", capacity_per_hour=6)

    order = service.create_manufacturing_order(
        DEMO_TENANT, "FRAME-100", 20, remarks="Machine frame, first batch"
    )
    service.plan_order(
        order.id,
        [
            PlanStep(cutting.id, 1, operation_name="Cut sheet parts"),
            PlanStep(sawing.id, 1, operation_name="Saw profiles"),
            PlanStep(welding.id, 2, parallel=True, operation_name="Weld frame"),
            PlanStep(painting.id, 2, parallel=True, operation_name="Paint brackets"),
        ],
    )
    logger.info("Seeded demo order %s", order.reference)

