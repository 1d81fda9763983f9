"""Constants and enums for the workflow automation engine."""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.RUNNING


class StepStatus(str, Enum):
    """Status of a single workflow step execution."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class StepType(str, Enum):
    """Built-in step types understood by the step executor."""

    ACTION = "action"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"
    DELAY = "delay"


class TriggerType(str, Enum):
    """Workflow trigger type."""

    WEBHOOK = "webhook"
    SCHEDULE = "schedule"
    EVENT = "event"
    FILE = "file"
    API = "api"


class ActionType(str, Enum):
    """Action collaborator types."""

    API_CALL = "api_call"
    EMAIL = "email"
    SLACK = "slack"
    DATABASE = "database"
    FILE_OPERATION = "file_operation"
    TRANSFORM = "transform"


class ConditionType(str, Enum):
    """Condition evaluation types."""

    COMPARISON = "comparison"
    EXISTS = "exists"
    REGEX = "regex"
    CUSTOM = "custom"


class ErrorStrategy(str, Enum):
    """What to do when a step fails."""

    STOP = "stop"
    CONTINUE = "continue"
    RETRY = "retry"
    FALLBACK = "fallback"


class Priority(str, Enum):
    """Execution priority (recorded, not used for ordering)."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
