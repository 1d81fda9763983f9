"""Tests for the execution store."""

import threading

import pytest

from core.constants import ExecutionStatus
from workflow.models import Execution
from workflow.store import ExecutionStore


@pytest.fixture
def store() -> ExecutionStore:
    return ExecutionStore()


def _add(store, execution_id, workflow_id="wf") -> Execution:
    execution = Execution(execution_id=execution_id, workflow_id=workflow_id)
    store.add(execution)
    return execution


@pytest.mark.unit
class TestExecutionStore:
    def test_add_and_get(self, store):
        execution = _add(store, "e1")
        assert store.get("e1") is execution
        assert store.get("e2") is None
        assert len(store) == 1

    def test_duplicate_id_rejected(self, store):
        _add(store, "e1")
        with pytest.raises(KeyError):
            _add(store, "e1")

    def test_cancel_only_running(self, store):
        execution = _add(store, "e1")
        assert store.cancel("e1") is True
        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.end_time is not None
        assert store.is_cancelled("e1") is True
        assert store.cancel("e1") is False
        assert store.cancel("missing") is False

    def test_finish_happens_once(self, store):
        execution = _add(store, "e1")
        assert store.finish("e1", ExecutionStatus.COMPLETED, output={"x": 1}) is True
        assert store.finish("e1", ExecutionStatus.FAILED, error="late") is False
        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.output == {"x": 1}
        assert execution.error is None

    def test_finish_never_reverts_cancel(self, store):
        execution = _add(store, "e1")
        store.cancel("e1")
        assert store.finish("e1", ExecutionStatus.COMPLETED, output="done") is False
        assert execution.status == ExecutionStatus.CANCELLED
        assert execution.output is None

    def test_finish_requires_terminal_status(self, store):
        _add(store, "e1")
        with pytest.raises(ValueError):
            store.finish("e1", ExecutionStatus.RUNNING)

    def test_query_and_list_active(self, store):
        _add(store, "e1", "wf_a")
        _add(store, "e2", "wf_a")
        _add(store, "e3", "wf_b")
        store.finish("e2", ExecutionStatus.FAILED, error="x")

        assert {e.execution_id for e in store.list_active()} == {"e1", "e3"}
        assert {e.execution_id for e in store.query(workflow_id="wf_a")} == {"e1", "e2"}
        assert [e.execution_id for e in store.query(status=ExecutionStatus.FAILED)] == ["e2"]
        assert store.query(workflow_id="wf_b", status=ExecutionStatus.FAILED) == []

    def test_prune_keeps_newest_finished_and_all_running(self, store):
        for n in range(5):
            _add(store, f"e{n}")
        for n in range(4):
            store.finish(f"e{n}", ExecutionStatus.COMPLETED)

        removed = store.prune(keep=1)

        assert removed == 3
        assert store.get("e3") is not None
        assert store.get("e4") is not None
        assert store.get("e0") is None

    def test_concurrent_cancel_and_finish_single_winner(self, store):
        for n in range(200):
            _add(store, f"e{n}")
        outcomes = {}

        def cancel_all():
            outcomes["cancel"] = [store.cancel(f"e{n}") for n in range(200)]

        def finish_all():
            outcomes["finish"] = [store.finish(f"e{n}", ExecutionStatus.COMPLETED) for n in range(200)]

        threads = [threading.Thread(target=cancel_all), threading.Thread(target=finish_all)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        for n in range(200):
            assert outcomes["cancel"][n] != outcomes["finish"][n]
            expected = ExecutionStatus.CANCELLED if outcomes["cancel"][n] else ExecutionStatus.COMPLETED
            assert store.get(f"e{n}").status == expected
