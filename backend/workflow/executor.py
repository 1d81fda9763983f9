"""Step Executor: runs one step by type.

- action: resolve the ActionConfig named by ``actionId``, interpolate
  the step parameters and hand off to the ActionDelegate
- condition: evaluate the ConditionConfig named by ``conditionId``;
  false marks the step skipped and prunes its branch
- loop: run ``loopSteps`` once per item of the array at ``iterateOver``
  (at most ``maxIterations``), collecting ``loopResults``
- parallel: run ``parallelSteps`` concurrently on the same input and
  collect ``parallelResults`` in declaration order
- delay: wait ``duration`` ms, pass the input through

Loop and parallel children are run through the StepRunner (the
engine's per-execution traversal), so they get their own results,
error policies and nextSteps like any other step.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import structlog

from actions.base import ActionDelegate
from app.config import get_settings
from core.constants import StepType
from core.exceptions import (
    ActionNotFound,
    ConditionNotFound,
    LoopTargetNotArray,
    StepExecutionError,
    UnknownStepType,
)
from core.utils import interpolate_config, resolve_path
from workflow.conditions import ConditionEvaluator
from workflow.models import WorkflowStep
from workflow.registry import WorkflowRegistry

logger = structlog.get_logger(__name__)


class StepRunner(Protocol):
    async def run_step(self, step_id: str, data: Any, context: dict, depth: int) -> Any:
        ...


@dataclass
class StepOutcome:
    output: Any
    skipped: bool = False


def _merge(data: Any, key: str, results: list) -> Any:
    if isinstance(data, dict):
        return {**data, key: results}
    return {key: results}


class StepExecutor:
    """Dispatches a step to the handler for its type."""

    def __init__(
        self,
        registry: WorkflowRegistry,
        action_delegate: ActionDelegate,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._registry = registry
        self._actions = action_delegate
        self._conditions = ConditionEvaluator()
        self._sleep = sleep
        self._handlers = {
            StepType.ACTION.value: self._execute_action,
            StepType.CONDITION.value: self._execute_condition,
            StepType.LOOP.value: self._execute_loop,
            StepType.PARALLEL.value: self._execute_parallel,
            StepType.DELAY.value: self._execute_delay,
        }

    async def execute(
        self,
        step: WorkflowStep,
        data: Any,
        context: dict,
        runner: StepRunner,
        depth: int,
    ) -> StepOutcome:
        handler = self._handlers.get(step.type)
        if handler is None:
            raise UnknownStepType(step.type, step.id)
        return await handler(step, data, context, runner, depth)

    async def _execute_action(self, step, data, context, runner, depth) -> StepOutcome:
        action_id = step.config.get("actionId")
        action = self._registry.get_action(action_id)
        if action is None:
            raise ActionNotFound(str(action_id), step.id)

        params = {key: value for key, value in step.config.items() if key != "actionId"}
        step_config = interpolate_config(params, data, context)
        try:
            output = await self._actions.execute(
                action.type.value, dict(action.config), step_config, data, context
            )
        except StepExecutionError:
            raise
        except Exception as e:
            raise StepExecutionError(f"Action '{action_id}' failed: {e}", step.id, e) from e
        return StepOutcome(output)

    async def _execute_condition(self, step, data, context, runner, depth) -> StepOutcome:
        condition_id = step.config.get("conditionId")
        condition = self._registry.get_condition(condition_id)
        if condition is None:
            raise ConditionNotFound(str(condition_id), step.id)

        params = {key: value for key, value in step.config.items() if key != "conditionId"}
        try:
            passed = self._conditions.evaluate(condition, params, data, context)
        except StepExecutionError as e:
            e.step_id = e.step_id or step.id
            raise
        except Exception as e:
            raise StepExecutionError(f"Condition '{condition_id}' failed: {e}", step.id, e) from e
        return StepOutcome(data, skipped=not passed)

    async def _execute_loop(self, step, data, context, runner, depth) -> StepOutcome:
        path = step.config.get("iterateOver")
        loop_steps = step.config.get("loopSteps", [])
        max_iterations = step.config.get("maxIterations", get_settings().LOOP_MAX_ITERATIONS)

        items = resolve_path(data, context, path)
        if items is None:
            items = []
        if not isinstance(items, list):
            raise LoopTargetNotArray(str(path), step.id)
        if len(items) > max_iterations:
            logger.warning(
                "Loop truncated at maxIterations",
                step_id=step.id,
                items=len(items),
                max_iterations=max_iterations,
            )

        results = []
        for index, item in enumerate(items[:max_iterations]):
            loop_context = {**context, "loopItem": item, "loopIndex": index}
            value = item
            for loop_step_id in loop_steps:
                value = await runner.run_step(loop_step_id, value, loop_context, depth + 1)
            results.append(value)

        return StepOutcome(_merge(data, "loopResults", results))

    async def _execute_parallel(self, step, data, context, runner, depth) -> StepOutcome:
        branch_ids = step.config.get("parallelSteps", [])
        # Wait for every branch before surfacing a failure, so siblings finish cleanly.
        outcomes = await asyncio.gather(
            *(runner.run_step(branch_id, data, context, depth + 1) for branch_id in branch_ids),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome
        return StepOutcome(_merge(data, "parallelResults", list(outcomes)))

    async def _execute_delay(self, step, data, context, runner, depth) -> StepOutcome:
        duration_ms = step.config.get("duration", get_settings().DEFAULT_DELAY_MS)
        await self._sleep(max(0, duration_ms) / 1000)
        return StepOutcome(data)
