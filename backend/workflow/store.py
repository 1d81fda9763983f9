"""Execution Store: concurrency-safe table of execution records.

Execution tasks, the scheduler and outside callers (an HTTP layer
polling for status) all touch this table, possibly from different
threads, so every access to the id -> Execution map goes through one
lock. Status transitions are check-and-set under the same lock, which
is what guarantees an execution reaches a terminal status exactly once
and a cancelled execution is never flipped back to completed.

The per-execution step list is appended to only by the owning task and
is not locked.
"""

import threading
from typing import Any, Optional

import structlog

from core.constants import ExecutionStatus
from core.utils import utc_now
from workflow.models import Execution

logger = structlog.get_logger(__name__)


class ExecutionStore:
    """In-memory table of in-flight and finished executions."""

    def __init__(self):
        self._lock = threading.Lock()
        self._executions: dict[str, Execution] = {}

    def add(self, execution: Execution) -> None:
        with self._lock:
            if execution.execution_id in self._executions:
                raise KeyError(f"Execution '{execution.execution_id}' already recorded")
            self._executions[execution.execution_id] = execution

    def get(self, execution_id: str) -> Optional[Execution]:
        with self._lock:
            return self._executions.get(execution_id)

    def is_cancelled(self, execution_id: str) -> bool:
        with self._lock:
            execution = self._executions.get(execution_id)
            return execution is not None and execution.status == ExecutionStatus.CANCELLED

    def list_active(self) -> list[Execution]:
        return self.query(status=ExecutionStatus.RUNNING)

    def query(
        self,
        workflow_id: Optional[str] = None,
        status: Optional[ExecutionStatus] = None,
    ) -> list[Execution]:
        with self._lock:
            executions = list(self._executions.values())
        return [
            e for e in executions
            if (workflow_id is None or e.workflow_id == workflow_id)
            and (status is None or e.status == status)
        ]

    def cancel(self, execution_id: str) -> bool:
        """Flip a running execution to cancelled. True iff it was running."""
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.status != ExecutionStatus.RUNNING:
                return False
            execution.status = ExecutionStatus.CANCELLED
            execution.end_time = utc_now()
        logger.info("Execution cancelled", execution_id=execution_id)
        return True

    def finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> bool:
        """Move a running execution to a terminal status.

        Returns False (and changes nothing) when the execution already
        left the running state, e.g. because it was cancelled.
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot finish an execution with status '{status.value}'")
        with self._lock:
            execution = self._executions.get(execution_id)
            if execution is None or execution.status != ExecutionStatus.RUNNING:
                return False
            execution.status = status
            execution.output = output
            execution.error = error
            execution.end_time = utc_now()
        return True

    def prune(self, keep: int = 1000) -> int:
        """Drop the oldest finished executions beyond ``keep``. Returns the count removed."""
        with self._lock:
            finished = sorted(
                (e for e in self._executions.values() if e.status.is_terminal),
                key=lambda e: e.end_time or e.start_time,
            )
            stale = finished[:max(0, len(finished) - keep)]
            for execution in stale:
                del self._executions[execution.execution_id]
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._executions)
