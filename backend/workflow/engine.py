"""Workflow Execution Engine: graph-based workflow runner.

``invoke`` validates the request, records a running Execution and
starts one asyncio task that walks the step graph; the caller gets the
execution id back immediately and polls ``get_execution``.

Traversal:
- Entry steps are steps with no incoming edge (nextSteps, loopSteps and
  parallelSteps all count as edges). They run one after another, each
  with the original input.
- After a step completes, each of its nextSteps runs in order with the
  step's output: a depth-first walk that fans out at branch points.
- There is no join. A step reachable through two edges runs once per
  edge.
- A condition that evaluates false marks its step skipped and none of
  its nextSteps run.
- A failing step goes to the ErrorPolicyHandler. Anything that is not
  recovered fails the execution; nothing escapes the task.

Cancellation is cooperative: ``cancel`` flips the status at once, the
in-flight step finishes on its own, and no further step starts.

Workflow definition (``EngineConfig.workflows[...]``):
{
    "id": "order-sync",
    "errorHandling": {"strategy": "stop"},
    "steps": [
        {"id": "fetch", "type": "action",
         "config": {"actionId": "orders-api", "url": "/orders"},
         "nextSteps": ["has_orders"],
         "errorHandling": {"strategy": "retry", "maxRetries": 2}},
        {"id": "has_orders", "type": "condition",
         "config": {"conditionId": "exists", "field": "orders"},
         "nextSteps": ["each_order"]},
        {"id": "each_order", "type": "loop",
         "config": {"iterateOver": "orders", "loopSteps": ["notify"], "maxIterations": 50}},
        {"id": "notify", "type": "action",
         "config": {"actionId": "slack", "message": "Order {{data.id}}"}}
    ]
}
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

from actions.base import ActionDelegate
from actions.registry import ActionRegistry
from app.config import get_settings
from core.constants import ExecutionStatus, Priority, StepStatus
from core.exceptions import (
    ExecutionCancelled,
    ExecutionTimeout,
    MaxDepthExceeded,
    MissingEntryPoint,
    StepExecutionError,
    WorkflowError,
    WorkflowNotFound,
)
from core.logging_config import bind_execution_context
from core.utils import generate_execution_id
from triggers.scheduler import Scheduler
from workflow.error_policy import ErrorPolicyHandler, Resolution
from workflow.executor import StepExecutor, StepOutcome
from workflow.models import (
    EngineConfig,
    Execution,
    InvokeResponse,
    StepExecutionResult,
    WorkflowDefinition,
    WorkflowStep,
)
from workflow.registry import WorkflowRegistry
from workflow.store import ExecutionStore

logger = structlog.get_logger(__name__)


class _ExecutionRun:
    """Traversal state of one execution. Lives inside the execution's task."""

    def __init__(self, engine: "ExecutionEngine", execution: Execution, workflow: WorkflowDefinition, data: Any):
        self._engine = engine
        self.execution = execution
        self.workflow = workflow
        self.last_output = data

    def is_cancelled(self) -> bool:
        return self._engine.store.is_cancelled(self.execution.execution_id)

    async def run_step(self, step_id: str, data: Any, context: dict, depth: int = 0) -> Any:
        """Run a step and, if it completes, its nextSteps.

        Returns the value the step hands downstream: its output when it
        completed, its input when skipped or continued past a failure,
        the fallback's value when a fallback ran.
        """
        if self.is_cancelled():
            raise ExecutionCancelled(self.execution.execution_id)
        if depth > self._engine.max_step_depth:
            raise MaxDepthExceeded(step_id, self._engine.max_step_depth)

        step = self.workflow.get_step(step_id)
        if step is None:
            raise StepExecutionError(f"Step '{step_id}' not found in workflow", step_id)

        result = StepExecutionResult(step_id=step.id, status=StepStatus.RUNNING, input=data)
        self.execution.steps.append(result)
        logger.debug("Step starting", step_id=step.id, step_type=step.type, depth=depth)

        def attempt() -> Awaitable[StepOutcome]:
            return self._engine.executor.execute(step, data, context, self, depth)

        try:
            outcome = await attempt()
        except (ExecutionCancelled, MaxDepthExceeded) as e:
            result.finish(StepStatus.FAILED, error=str(e))
            raise
        except asyncio.CancelledError:
            result.finish(StepStatus.FAILED, error="Engine shut down")
            raise
        except Exception as e:
            error = self._as_step_error(e, step)
            result.attempt_errors.append(str(error))
            result.finish(StepStatus.FAILED, error=str(error))
            logger.warning("Step failed", step_id=step.id, error=str(error))

            decision = await self._engine.error_policy.handle(
                error, step, self.workflow, result, attempt, self.is_cancelled
            )
            if decision.resolution == Resolution.CONTINUE:
                await self._run_next(step, data, context, depth)
                return data
            if decision.resolution == Resolution.FALLBACK:
                return await self.run_step(decision.fallback_step, data, context, depth + 1)
            outcome = decision.outcome

        if outcome.skipped:
            result.finish(StepStatus.SKIPPED, output=data)
            logger.info("Step skipped, branch pruned", step_id=step.id)
            return data

        result.finish(StepStatus.COMPLETED, output=outcome.output)
        self.last_output = outcome.output
        logger.debug("Step completed", step_id=step.id, retries=result.retries)
        await self._run_next(step, outcome.output, context, depth)
        return outcome.output

    async def _run_next(self, step: WorkflowStep, data: Any, context: dict, depth: int) -> None:
        for next_id in step.next_steps:
            await self.run_step(next_id, data, context, depth + 1)

    @staticmethod
    def _as_step_error(error: Exception, step: WorkflowStep) -> StepExecutionError:
        if isinstance(error, StepExecutionError):
            if error.step_id is None:
                error.step_id = step.id
            return error
        wrapped = StepExecutionError(str(error) or type(error).__name__, step.id, error)
        wrapped.__cause__ = error
        return wrapped


class ExecutionEngine:
    """Runs workflow executions and exposes their state.

    Args:
        config: Construction config (EngineConfig or its dict form)
        registry: Overrides the registry built from ``config``
        action_delegate: Side-effect collaborator; defaults to the
            built-in ActionRegistry
        store: Execution table; a fresh in-memory store by default
        sleep: Awaitable used for delays and retry backoff
    """

    def __init__(
        self,
        config: Union[EngineConfig, dict, None] = None,
        *,
        registry: Optional[WorkflowRegistry] = None,
        action_delegate: Optional[ActionDelegate] = None,
        store: Optional[ExecutionStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if isinstance(config, dict):
            config = EngineConfig.model_validate(config)
        self.config = config or EngineConfig()
        self.registry = registry or WorkflowRegistry.from_config(self.config)
        self.store = store or ExecutionStore()
        self.error_policy = ErrorPolicyHandler(self.config.retry_policy, sleep=sleep)
        self.executor = StepExecutor(self.registry, action_delegate or ActionRegistry(), sleep=sleep)
        self.max_step_depth = get_settings().MAX_STEP_DEPTH
        self.scheduler: Optional[Scheduler] = (
            Scheduler(self, self.registry) if self.config.enable_scheduling else None
        )
        self._tasks: dict[str, asyncio.Task] = {}

    # ─── Lifecycle ─────────────────────────────────────────────

    async def start(self) -> None:
        """Start recurring schedule timers (when scheduling is enabled)."""
        if self.scheduler is not None:
            self.scheduler.start()

    async def shutdown(self) -> None:
        """Stop timers and cancel in-flight execution tasks."""
        if self.scheduler is not None:
            await self.scheduler.stop()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def __aenter__(self) -> "ExecutionEngine":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.shutdown()

    # ─── Inbound surface ───────────────────────────────────────

    async def invoke(
        self,
        workflow_id: str,
        input: Any = None,
        context: Optional[dict] = None,
        priority: Union[Priority, str] = Priority.NORMAL,
    ) -> str:
        """Start an execution and return its id without waiting for it.

        Raises:
            WorkflowNotFound: unknown workflow id
            MissingEntryPoint: every step has an incoming edge
        """
        workflow = self.registry.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFound(workflow_id)
        entry_steps = workflow.entry_steps()
        if not entry_steps:
            raise MissingEntryPoint(workflow_id)

        execution = Execution(
            execution_id=generate_execution_id(),
            workflow_id=workflow_id,
            priority=Priority(priority),
        )
        self.store.add(execution)

        task = asyncio.create_task(
            self._run(execution, workflow, entry_steps, input, dict(context or {})),
            name=f"workflow-execution-{execution.execution_id}",
        )
        self._tasks[execution.execution_id] = task
        task.add_done_callback(lambda _t, eid=execution.execution_id: self._tasks.pop(eid, None))

        logger.info(
            "Execution started",
            execution_id=execution.execution_id,
            workflow_id=workflow_id,
            priority=execution.priority.value,
        )
        return execution.execution_id

    async def handle_request(self, request: dict) -> InvokeResponse:
        """Invoke from a request dict, reporting failures in the response."""
        try:
            execution_id = await self.invoke(
                request["workflowId"],
                request.get("input"),
                request.get("context"),
                request.get("priority", Priority.NORMAL),
            )
        except KeyError:
            return InvokeResponse(success=False, status="failed", error="Missing workflowId")
        except (WorkflowError, ValueError) as e:
            return InvokeResponse(success=False, status="failed", error=str(e))
        return InvokeResponse(success=True, status="running", execution_id=execution_id)

    def get_execution(self, execution_id: str) -> Optional[Execution]:
        return self.store.get(execution_id)

    def list_active(self) -> list[Execution]:
        return self.store.list_active()

    def cancel(self, execution_id: str) -> bool:
        """Cancel a running execution. True iff it was running."""
        return self.store.cancel(execution_id)

    async def wait_for(self, execution_id: str, timeout: Optional[float] = None) -> Optional[Execution]:
        """Wait for an execution to finish, enforcing a deadline.

        ``timeout`` is in seconds and defaults to ``maxExecutionTime``.
        On expiry the execution is cancelled and ExecutionTimeout raised.
        """
        if timeout is None:
            timeout = self.config.max_execution_time / 1000
        task = self._tasks.get(execution_id)
        if task is not None:
            try:
                await asyncio.wait_for(asyncio.shield(task), timeout)
            except asyncio.TimeoutError:
                self.cancel(execution_id)
                raise ExecutionTimeout(execution_id, timeout) from None
        return self.store.get(execution_id)

    def get_schema(self) -> dict:
        """JSON schema of an invocation request."""
        return {
            "type": "object",
            "properties": {
                "workflowId": {
                    "type": "string",
                    "description": "Workflow to execute",
                    "enum": self.registry.workflow_ids,
                },
                "input": {"description": "Input data for the workflow"},
                "context": {
                    "type": "object",
                    "description": "Additional context data",
                    "additionalProperties": True,
                },
                "priority": {
                    "type": "string",
                    "description": "Execution priority",
                    "enum": [p.value for p in Priority],
                    "default": Priority.NORMAL.value,
                },
            },
            "required": ["workflowId"],
        }

    # ─── Execution task ────────────────────────────────────────

    async def _run(
        self,
        execution: Execution,
        workflow: WorkflowDefinition,
        entry_steps: list[WorkflowStep],
        data: Any,
        context: dict,
    ) -> None:
        execution_id = execution.execution_id
        bind_execution_context(execution_id, workflow.id)
        run = _ExecutionRun(self, execution, workflow, data)
        context = {**context, "workflowId": workflow.id, "executionId": execution_id}

        try:
            for entry in entry_steps:
                await run.run_step(entry.id, data, context)
        except ExecutionCancelled:
            logger.info("Execution stopped after cancellation", steps=len(execution.steps))
            return
        except asyncio.CancelledError:
            self.store.finish(execution_id, ExecutionStatus.CANCELLED, error="Engine shut down")
            raise
        except Exception as e:
            self.store.finish(execution_id, ExecutionStatus.FAILED, error=str(e))
            logger.error("Execution failed", error=str(e), steps=len(execution.steps))
            return

        if self.store.finish(execution_id, ExecutionStatus.COMPLETED, output=run.last_output):
            logger.info("Execution completed", steps=len(execution.steps))
        else:
            logger.info("Execution finished after cancellation", status=execution.status.value)
