"""Custom exceptions for the workflow automation engine."""

from typing import Optional


class WorkflowError(Exception):
    """Base exception for the workflow automation engine."""

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code for the outer API layer
        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class WorkflowNotFound(WorkflowError):
    """Invoked workflow id is not registered."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"Workflow '{workflow_id}' not found", 404)


class MissingEntryPoint(WorkflowError):
    """Every step of the workflow has an incoming edge."""

    def __init__(self, workflow_id: str):
        self.workflow_id = workflow_id
        super().__init__(f"No entry point found in workflow '{workflow_id}'", 422)


class InvalidDefinition(WorkflowError):
    """A workflow definition failed validation at registration."""

    def __init__(self, message: str = "Invalid workflow definition"):
        super().__init__(message, 422)


class StepExecutionError(WorkflowError):
    """A step failed. Wraps the delegate's exception when there is one."""

    def __init__(
        self,
        message: str,
        step_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
        status_code: int = 500,
    ):
        self.step_id = step_id
        self.cause = cause
        super().__init__(message, status_code)


class ActionNotFound(StepExecutionError):
    """Step references an action template that is not registered."""

    def __init__(self, action_id: str, step_id: Optional[str] = None):
        self.action_id = action_id
        super().__init__(f"Action '{action_id}' not found", step_id, status_code=404)


class ConditionNotFound(StepExecutionError):
    """Step references a condition template that is not registered."""

    def __init__(self, condition_id: str, step_id: Optional[str] = None):
        self.condition_id = condition_id
        super().__init__(f"Condition '{condition_id}' not found", step_id, status_code=404)


class UnknownStepType(StepExecutionError):
    """Step type has no handler in the step executor."""

    def __init__(self, step_type: str, step_id: Optional[str] = None):
        self.step_type = step_type
        super().__init__(f"Unknown step type: {step_type}", step_id, status_code=422)


class LoopTargetNotArray(StepExecutionError):
    """Loop field path resolved to something other than a list."""

    def __init__(self, path: str, step_id: Optional[str] = None):
        self.path = path
        super().__init__(
            f"Loop iteration target '{path}' must be an array", step_id, status_code=422
        )


class ExpressionError(StepExecutionError):
    """Custom condition expression is malformed or uses forbidden syntax."""

    def __init__(self, message: str, step_id: Optional[str] = None):
        super().__init__(message, step_id, status_code=422)


class RetryExhausted(StepExecutionError):
    """A step kept failing after every configured retry."""

    def __init__(self, step_id: str, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        super().__init__(
            f"Step '{step_id}' failed after {attempts} attempts: {cause}",
            step_id,
            cause,
        )


class MaxDepthExceeded(WorkflowError):
    """Traversal went deeper than allowed, usually a cyclic step graph."""

    def __init__(self, step_id: str, depth: int):
        self.step_id = step_id
        super().__init__(f"Maximum step depth {depth} exceeded at step '{step_id}'", 500)


class ExecutionTimeout(WorkflowError):
    """Caller-side deadline elapsed before the execution finished."""

    def __init__(self, execution_id: str, timeout: float):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' exceeded {timeout}s", 504)


class UnsupportedSchedule(WorkflowError):
    """Cron expression cannot be reduced to a single fixed interval."""

    def __init__(self, message: str):
        super().__init__(message, 422)


class ExecutionCancelled(WorkflowError):
    """Raised inside an execution task once cancellation is observed.

    Unwinds the traversal; never reaches the error policy.
    """

    def __init__(self, execution_id: str):
        self.execution_id = execution_id
        super().__init__(f"Execution '{execution_id}' was cancelled", 409)
