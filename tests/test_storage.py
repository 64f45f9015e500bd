"""
Tests for the SQLite repositories and the unit of work built on them.
"""

import pytest

from mfg_execution.domain import OrderStatus, WorkCenter, WorkOrderStatus
from mfg_execution.repository import DuplicateRecordError, RecordNotFoundError
from mfg_execution.services import ExecutionService, PlanStep
from mfg_execution.storage import ExecutionDatabase
from mfg_execution.unit_of_work import UnitOfWork

from .conftest import TENANT


@pytest.fixture
def database(tmp_path):
    db = ExecutionDatabase(str(tmp_path / "execution.sqlite3"))
    yield db
    db.close()


@pytest.fixture
def sqlite_service(database):
    return ExecutionService(
        work_center_repo=database.work_centers,
        order_repo=database.orders,
        assignment_repo=database.assignments,
        work_order_repo=database.work_orders,
        transaction_factory=database.transaction,
    )


def make_center(center_id="wc-1"):
    return WorkCenter(id=center_id, tenant_id=TENANT, name="Cutting", capacity_per_hour=5)


class TestSQLiteRepository:
    """CRUD behaviour mirrors the in-memory repository."""

    def test_add_get_list(self, database):
        database.work_centers.add("wc-1", make_center())

        assert "wc-1" in database.work_centers
        assert database.work_centers.get("wc-1").name == "Cutting"
        assert [center.id for center in database.work_centers.list()] == ["wc-1"]

    def test_duplicate_add(self, database):
        database.work_centers.add("wc-1", make_center())

        with pytest.raises(DuplicateRecordError):
            database.work_centers.add("wc-1", make_center())

    def test_missing_record(self, database):
        with pytest.raises(RecordNotFoundError):
            database.work_centers.get("nope")
        with pytest.raises(RecordNotFoundError):
            database.work_centers.remove("nope")

    def test_filter(self, database):
        database.work_centers.add("wc-1", make_center("wc-1"))
        database.work_centers.add("wc-2", make_center("wc-2"))

        matches = database.work_centers.filter(lambda center: center.id == "wc-2")

        assert [center.id for center in matches] == ["wc-2"]

    def test_persists_across_connections(self, tmp_path):
        path = str(tmp_path / "shared.sqlite3")
        with ExecutionDatabase(path) as first:
            first.work_centers.add("wc-1", make_center())

        with ExecutionDatabase(path) as second:
            assert second.work_centers.get("wc-1").capacity_per_hour == 5


class TestTransactions:
    """Writes inside a transaction commit or roll back together."""

    def test_rollback_on_error(self, database):
        with pytest.raises(RuntimeError):
            with database.transaction():
                database.work_centers.upsert("wc-1", make_center())
                raise RuntimeError("boom")

        assert "wc-1" not in database.work_centers

    def test_unit_of_work_commits_all(self, database):
        uow = UnitOfWork(database.transaction)
        uow.register(database.work_centers, "wc-1", make_center("wc-1"))
        uow.register(database.work_centers, "wc-2", make_center("wc-2"))

        uow.commit()

        assert uow.committed
        assert len(database.work_centers.list()) == 2

    def test_unit_of_work_context_discards_on_error(self, database):
        with pytest.raises(ValueError):
            with UnitOfWork(database.transaction) as uow:
                uow.register(database.work_centers, "wc-1", make_center())
                raise ValueError("abort")

        assert database.work_centers.list() == []


class TestServiceOnSQLite:
    """The execution service works unchanged on top of SQLite."""

    def test_stage_plan_round_trip(self, sqlite_service):
        cutting = sqlite_service.register_work_center(TENANT, "cutting")
        welding = sqlite_service.register_work_center(TENANT, "welding")
        order = sqlite_service.create_manufacturing_order(TENANT, "FRAME", 4)
        sqlite_service.plan_order(
            order.id,
            [
                PlanStep(welding.id, 2, parallel=True, operation_name="weld"),
                PlanStep(cutting.id, 1, operation_name="cut"),
            ],
        )

        plan = sqlite_service.get_plan(order.id)

        assert [assignment.operation_name for assignment in plan] == ["cut", "weld"]
        for assignment in plan:
            work_order = sqlite_service.create_work_order(order.id, assignment.id)
            sqlite_service.update_work_order_status(work_order.id, completed_qty=4)
        assert sqlite_service.get_order(order.id).status == OrderStatus.COMPLETED

    def test_cascade_failure_rolls_back_work_order(self, sqlite_service, database):
        cutting = sqlite_service.register_work_center(TENANT, "cutting")
        order = sqlite_service.create_manufacturing_order(TENANT, "FRAME", 4)
        plan = sqlite_service.plan_order(order.id, [PlanStep(cutting.id, 1)])
        work_order = sqlite_service.create_work_order(order.id, plan[0].id)
        sqlite_service.start_work_order(work_order.id)

        def broken_upsert(item_id, item):
            raise RuntimeError("disk full")

        database.orders.upsert = broken_upsert
        with pytest.raises(RuntimeError):
            sqlite_service.complete_work_order(work_order.id)

        stored = database.work_orders.get(work_order.id)
        assert stored.status == WorkOrderStatus.IN_PROGRESS
        assert database.orders.get(order.id).status == OrderStatus.IN_PROGRESS
