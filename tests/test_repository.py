"""
Tests for the in-memory record store.
"""

import pytest

from mfg_execution.domain import WorkOrderStatus
from mfg_execution.repository import (
    DuplicateRecordError,
    InMemoryRepository,
    RecordNotFoundError,
)
from mfg_execution.services import ExecutionService

from .factories import make_work_order


@pytest.fixture
def repo():
    return InMemoryRepository("Work order")


class TestInMemoryRepository:
    def test_errors_name_the_record_kind(self, repo):
        with pytest.raises(RecordNotFoundError, match="Work order 'wo-x' not found"):
            repo.get("wo-x")

        repo.add("wo-A", make_work_order("A"))
        with pytest.raises(DuplicateRecordError, match="Work order 'wo-A' already exists"):
            repo.add("wo-A", make_work_order("A"))

    def test_find_by_matches_all_attributes(self, repo):
        repo.add("wo-A", make_work_order("A", WorkOrderStatus.IN_PROGRESS))
        repo.add("wo-B", make_work_order("B"))

        running = repo.find_by(status=WorkOrderStatus.IN_PROGRESS)

        assert [work_order.id for work_order in running] == ["wo-A"]
        assert repo.find_by(status=WorkOrderStatus.IN_PROGRESS, assignment_id="B") == []

    def test_service_keeps_injected_empty_repository(self, repo):
        service = ExecutionService(work_order_repo=repo)

        assert service.work_orders is repo

    def test_iteration_is_a_snapshot(self, repo):
        repo.add("wo-A", make_work_order("A"))

        for work_order in repo:
            repo.add("wo-B", make_work_order("B"))

        assert len(repo) == 2

    def test_remove(self, repo):
        repo.add("wo-A", make_work_order("A"))

        repo.remove("wo-A")

        assert "wo-A" not in repo
        with pytest.raises(RecordNotFoundError):
            repo.remove("wo-A")
