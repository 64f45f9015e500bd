"""
HTTP level tests for the FastAPI application.
"""

import pytest
from fastapi.testclient import TestClient

from mfg_execution.web.app import DEMO_TENANT, create_app, parse_plan_steps
from mfg_execution.state_machine import InvalidRequestError

TENANT_HEADERS = {"X-Tenant-Id": DEMO_TENANT}


@pytest.fixture
def app(tmp_path):
    return create_app(str(tmp_path / "web.sqlite3"))


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def demo_order(app):
    service = app.state.execution_service
    (order,) = service.orders.list()
    plan = {assignment.operation_name: assignment for assignment in service.get_plan(order.id)}
    return order, plan


class TestPages:
    def test_dashboard_lists_demo_order(self, client, demo_order):
        order, _ = demo_order

        response = client.get("/")

        assert response.status_code == 200
        assert order.reference in response.text

    def test_order_page(self, client, demo_order):
        order, _ = demo_order

        response = client.get(f"/orders/{order.id}", headers=TENANT_HEADERS)

        assert response.status_code == 200
        assert "Weld frame" in response.text

    def test_create_order_redirects(self, client, app):
        response = client.post(
            "/orders",
            data={"item_id": "BRACKET-7", "planned_qty": "5"},
            follow_redirects=False,
        )

        assert response.status_code == 303
        assert response.headers["location"].startswith("/orders/")
        assert len(app.state.execution_service.orders.list()) == 2


class TestOrderApi:
    """JSON views of the stage plan."""

    def test_available_assignments(self, client, demo_order):
        order, _ = demo_order

        response = client.get(f"/api/orders/{order.id}/available", headers=TENANT_HEADERS)

        assert response.status_code == 200
        names = [entry["operation_name"] for entry in response.json()]
        assert names == ["Cut sheet parts", "Saw profiles", "Weld frame", "Paint brackets"]

    def test_stage_overview(self, client, demo_order):
        order, _ = demo_order

        response = client.get(f"/api/orders/{order.id}/stages", headers=TENANT_HEADERS)

        assert response.status_code == 200
        assert [stage["number"] for stage in response.json()] == [1, 2]

    def test_foreign_tenant_is_not_found(self, client, demo_order):
        order, _ = demo_order

        response = client.get(f"/api/orders/{order.id}", headers={"X-Tenant-Id": "intruder"})

        assert response.status_code == 404
        assert "error" in response.json()


class TestWorkOrderApi:
    """Work order creation and status updates over HTTP."""

    def test_create_and_complete_by_quantity(self, client, app, demo_order):
        order, plan = demo_order
        response = client.post(
            f"/orders/{order.id}/work-orders",
            data={"assignment_id": plan["Cut sheet parts"].id},
            headers=TENANT_HEADERS,
            follow_redirects=False,
        )
        assert response.status_code == 303
        (work_order,) = app.state.execution_service.list_work_orders(order.id)

        response = client.post(
            f"/api/work-orders/{work_order.id}/status",
            data={"completed_qty": str(order.planned_qty)},
            headers=TENANT_HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["auto_completed"] is True
        assert body["work_order"]["status"] == "completed"
        assert body["order_status"] == "in_progress"
        assert body["order_completed"] is False

    def test_duplicate_work_order_conflicts(self, client, demo_order):
        order, plan = demo_order
        data = {"assignment_id": plan["Weld frame"].id}
        client.post(
            f"/orders/{order.id}/work-orders",
            data=data,
            headers=TENANT_HEADERS,
            follow_redirects=False,
        )

        response = client.post(
            f"/orders/{order.id}/work-orders",
            data=data,
            headers=TENANT_HEADERS,
            follow_redirects=False,
        )

        assert response.status_code == 409

    def test_empty_status_request_is_rejected(self, client, app, demo_order):
        order, plan = demo_order
        work_order = app.state.execution_service.create_work_order(
            order.id, plan["Saw profiles"].id
        )

        response = client.post(f"/api/work-orders/{work_order.id}/status", data={})

        assert response.status_code == 400

    def test_progress_endpoint(self, client, app, demo_order):
        order, plan = demo_order
        service = app.state.execution_service
        work_order = service.create_work_order(order.id, plan["Paint brackets"].id)
        service.start_work_order(work_order.id)

        response = client.get(f"/api/work-orders/{work_order.id}/progress")

        assert response.status_code == 200
        assert 0 <= response.json()["percentage"] <= 100


class TestParsePlanSteps:
    def test_parses_lines(self):
        steps = parse_plan_steps("wc-1|1\n\nwc-2 | 2 | parallel | Weld\n")

        assert [(step.work_center_id, step.stage, step.parallel) for step in steps] == [
            ("wc-1", 1, False),
            ("wc-2", 2, True),
        ]
        assert steps[1].operation_name == "Weld"

    def test_rejects_bad_stage(self):
        with pytest.raises(InvalidRequestError):
            parse_plan_steps("wc-1|first")
