"""
Base action interface for all action collaborators.

Every action type (api_call, email, slack, ...) inherits from
BaseAction and implements execute(). The engine never calls actions
directly: it goes through an ActionDelegate (see actions.registry),
which keeps the side effects swappable in tests and deployments.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)


class ActionDelegate(Protocol):
    """Uniform invocation contract between the engine and side effects."""

    async def execute(
        self,
        action_type: str,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> Any:
        ...


class ActionResult:
    """Standardized result from action execution."""

    def __init__(
        self,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        duration_ms: float = 0,
    ):
        self.success = success
        self.output = output
        self.error = error
        self.metadata = metadata or {}
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "metadata": self.metadata,
            "duration_ms": self.duration_ms,
            "timestamp": self.timestamp.isoformat(),
        }


class BaseAction(ABC):
    """
    Abstract base class for action implementations.

    Subclasses must implement:
    - execute(action_config, step_config, data, context) -> ActionResult
    - action_type (class attribute)
    """

    action_type: str = "base"
    display_name: str = "Base Action"
    description: str = "Abstract base action"

    @abstractmethod
    async def execute(
        self,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> ActionResult:
        """
        Perform the side effect.

        Args:
            action_config: Config of the shared ActionConfig template
            step_config: The step's own parameters, already interpolated
            data: Data flowing into the step
            context: Execution context (workflowId, loopItem, ...)

        Returns:
            ActionResult with output or error
        """

    async def run(
        self,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> ActionResult:
        """Run the action with timing and error capture."""
        start = time.monotonic()
        try:
            logger.debug("Action starting", action_type=self.action_type)
            result = await self.execute(action_config, step_config, data, context)
            result.duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Action completed",
                action_type=self.action_type,
                success=result.success,
                duration_ms=round(result.duration_ms, 2),
            )
            return result

        except Exception as e:
            duration_ms = (time.monotonic() - start) * 1000
            logger.error(
                "Action failed",
                action_type=self.action_type,
                error=str(e),
                duration_ms=round(duration_ms, 2),
            )
            return ActionResult(success=False, error=str(e), duration_ms=duration_ms)

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        """Return JSON schema for step parameters. Override in subclasses."""
        return {"type": "object", "properties": {}}
