"""Workflow definition models and runtime execution records.

Definitions (workflows, steps, triggers, action/condition templates and
the engine construction config) are pydantic models. They accept the
camelCase wire names used by workflow builders (``nextSteps``,
``errorHandling``, ``maxRetries`` ...) as well as snake_case, and are
frozen once built so they can be shared by concurrent executions.

Runtime records (Execution, StepExecutionResult) are plain dataclasses
owned by the ExecutionStore and mutated only by the task driving them.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from app.config import get_settings
from core.constants import (
    ActionType,
    ConditionType,
    ErrorStrategy,
    ExecutionStatus,
    Priority,
    StepStatus,
    TriggerType,
)
from core.utils import utc_now


class _Definition(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


# ─── Definitions ──────────────────────────────────────────────

class ErrorHandlingConfig(_Definition):
    """Error policy for a step or a whole workflow.

    Delays are in milliseconds. Unset retry fields fall back to the
    engine's retry policy.
    """

    strategy: ErrorStrategy = ErrorStrategy.STOP
    max_retries: Optional[int] = Field(default=None, alias="maxRetries", ge=0)
    fallback_step: Optional[str] = Field(default=None, alias="fallbackStep")
    initial_delay: Optional[float] = Field(default=None, alias="initialDelay", ge=0)
    backoff_multiplier: Optional[float] = Field(default=None, alias="backoffMultiplier", gt=0)


class WorkflowStep(_Definition):
    """One typed unit of work in a workflow graph."""

    id: str = Field(min_length=1)
    type: str = Field(description="action, condition, loop, parallel or delay")
    config: dict[str, Any] = Field(default_factory=dict)
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")
    error_handling: Optional[ErrorHandlingConfig] = Field(default=None, alias="errorHandling")

    def child_step_ids(self) -> list[str]:
        """Step ids this step runs itself (loop bodies, parallel branches)."""
        if self.type == "loop":
            return list(self.config.get("loopSteps", []))
        if self.type == "parallel":
            return list(self.config.get("parallelSteps", []))
        return []


class WorkflowDefinition(_Definition):
    """A named graph of steps with triggers and a default error policy."""

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    triggers: list[str] = Field(default_factory=list)
    steps: list[WorkflowStep] = Field(default_factory=list)
    error_handling: ErrorHandlingConfig = Field(
        default_factory=ErrorHandlingConfig, alias="errorHandling"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)

    _index: dict[str, WorkflowStep] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index = {step.id: step for step in self.steps}

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        return self._index.get(step_id)

    def incoming_edges(self) -> dict[str, int]:
        """Count incoming edges per step.

        Loop/parallel children and fallback targets (step level and
        workflow level) count as edges alongside nextSteps.
        """
        counts = {step.id: 0 for step in self.steps}
        targets: list[Optional[str]] = [self.error_handling.fallback_step]
        for step in self.steps:
            targets.extend(step.next_steps)
            targets.extend(step.child_step_ids())
            if step.error_handling is not None:
                targets.append(step.error_handling.fallback_step)
        for target in targets:
            if target in counts:
                counts[target] += 1
        return counts

    def entry_steps(self) -> list[WorkflowStep]:
        """Steps with no incoming edge, in declaration order."""
        counts = self.incoming_edges()
        return [step for step in self.steps if counts[step.id] == 0]


class TriggerConfig(_Definition):
    id: str = Field(min_length=1)
    type: TriggerType
    config: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = True


class ActionConfig(_Definition):
    """Reusable action template referenced by ``actionId`` from step config."""

    id: str = Field(min_length=1)
    type: ActionType
    config: dict[str, Any] = Field(default_factory=dict)


class ConditionConfig(_Definition):
    """Reusable condition template referenced by ``conditionId`` from step config."""

    id: str = Field(min_length=1)
    type: ConditionType
    config: dict[str, Any] = Field(default_factory=dict)


class RetryPolicy(_Definition):
    """Engine-wide retry defaults. ``initial_delay`` is in milliseconds."""

    max_retries: int = Field(
        default_factory=lambda: get_settings().RETRY_MAX_RETRIES, alias="maxRetries", ge=0
    )
    backoff_multiplier: float = Field(
        default_factory=lambda: get_settings().RETRY_BACKOFF_MULTIPLIER,
        alias="backoffMultiplier",
        gt=0,
    )
    initial_delay: float = Field(
        default_factory=lambda: get_settings().RETRY_INITIAL_DELAY_MS,
        alias="initialDelay",
        ge=0,
    )


class EngineConfig(_Definition):
    """Construction configuration for the ExecutionEngine."""

    workflows: dict[str, WorkflowDefinition] = Field(default_factory=dict)
    triggers: list[TriggerConfig] = Field(default_factory=list)
    actions: list[ActionConfig] = Field(default_factory=list)
    conditions: list[ConditionConfig] = Field(default_factory=list)
    max_execution_time: int = Field(
        default_factory=lambda: get_settings().MAX_EXECUTION_TIME_MS,
        alias="maxExecutionTime",
        gt=0,
    )
    enable_scheduling: bool = Field(
        default_factory=lambda: get_settings().ENABLE_SCHEDULING, alias="enableScheduling"
    )
    retry_policy: RetryPolicy = Field(default_factory=RetryPolicy, alias="retryPolicy")


# ─── Runtime records ──────────────────────────────────────────

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class StepExecutionResult:
    """Outcome of one invocation of a step within an execution.

    A retried step keeps a single result: ``retries`` counts the
    re-invocations and ``attempt_errors`` keeps each failed attempt's
    message in order.
    """

    step_id: str
    status: StepStatus = StepStatus.PENDING
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    retries: int = 0
    attempt_errors: list[str] = field(default_factory=list)

    def finish(self, status: StepStatus, output: Any = None, error: Optional[str] = None) -> None:
        self.status = status
        self.output = output
        self.error = error
        self.end_time = utc_now()

    @property
    def duration_ms(self) -> Optional[int]:
        if self.end_time is None:
            return None
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    def to_dict(self) -> dict:
        return {
            "stepId": self.step_id,
            "status": self.status.value,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "input": self.input,
            "output": self.output,
            "error": self.error,
            "retries": self.retries,
            "attemptErrors": list(self.attempt_errors),
        }


@dataclass
class Execution:
    """One run-to-completion instance of a workflow."""

    execution_id: str
    workflow_id: str
    status: ExecutionStatus = ExecutionStatus.RUNNING
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    steps: list[StepExecutionResult] = field(default_factory=list)
    output: Any = None
    error: Optional[str] = None
    priority: Priority = Priority.NORMAL

    @property
    def is_running(self) -> bool:
        return self.status == ExecutionStatus.RUNNING

    def results_for(self, step_id: str) -> list[StepExecutionResult]:
        return [result for result in self.steps if result.step_id == step_id]

    def to_dict(self) -> dict:
        return {
            "executionId": self.execution_id,
            "workflowId": self.workflow_id,
            "status": self.status.value,
            "startTime": _iso(self.start_time),
            "endTime": _iso(self.end_time),
            "steps": [result.to_dict() for result in list(self.steps)],
            "output": self.output,
            "error": self.error,
            "priority": self.priority.value,
        }


@dataclass
class InvokeResponse:
    """Inbound-surface response of an invocation request."""

    success: bool
    status: str
    execution_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"success": self.success, "status": self.status}
        if self.execution_id is not None:
            payload["executionId"] = self.execution_id
        if self.error is not None:
            payload["error"] = self.error
        return payload
