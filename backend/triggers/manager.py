"""Trigger Manager: routes externally fired triggers to the engine.

Webhook, event, file and api triggers are fired by the channel that
owns them (an HTTP route, a message consumer, a file watcher ...). That
channel calls ``fire_trigger`` with the event payload, and the manager
invokes every workflow bound to the trigger:

- through the trigger's own ``config.workflowId``, or
- by the trigger id appearing in a workflow's ``triggers`` list.

Schedule triggers are driven by the Scheduler, not fired here.
"""

from typing import TYPE_CHECKING, Any, Optional

import structlog

from core.constants import TriggerType
from core.exceptions import UnsupportedSchedule, WorkflowError
from triggers.base import TriggerEvent, TriggerResult
from triggers.scheduler import parse_cron_interval
from workflow.models import TriggerConfig

if TYPE_CHECKING:
    from workflow.engine import ExecutionEngine

logger = structlog.get_logger(__name__)


def validate_trigger(trigger: TriggerConfig) -> tuple[bool, Optional[str]]:
    """Validate trigger configuration.

    Returns:
        Tuple of (is_valid, error_message)
    """
    if trigger.type == TriggerType.SCHEDULE:
        if not trigger.config.get("cron"):
            return False, "Missing required field: cron"
        if not trigger.config.get("workflowId"):
            return False, "Missing required field: workflowId"
        try:
            parse_cron_interval(trigger.config["cron"])
        except UnsupportedSchedule as e:
            return False, str(e)
    return True, None


class TriggerManager:
    """Fires registered triggers against an ExecutionEngine."""

    def __init__(self, engine: "ExecutionEngine"):
        self._engine = engine

    @property
    def registry(self):
        return self._engine.registry

    def register_trigger(self, trigger: TriggerConfig) -> TriggerResult:
        """Validate and register a trigger.

        Schedule triggers registered after ``engine.start()`` are picked
        up on the next start.
        """
        is_valid, error = validate_trigger(trigger)
        if not is_valid:
            return TriggerResult(
                success=False,
                message=f"Invalid configuration: {error}",
                trigger_id=trigger.id,
                error=error,
            )
        self.registry.register_trigger(trigger)
        logger.info("Trigger registered", trigger_id=trigger.id, trigger_type=trigger.type.value)
        return TriggerResult(success=True, message="Trigger registered", trigger_id=trigger.id)

    async def fire_trigger(self, trigger_id: str, payload: Optional[dict] = None) -> TriggerResult:
        """Fire a trigger: invoke every workflow bound to it.

        Args:
            trigger_id: Registered trigger id
            payload: Event data, passed as workflow input

        Returns:
            TriggerResult with the started execution ids. A partial
            failure still reports success for the invocations that ran
            and carries the errors of the others.
        """
        trigger = self.registry.get_trigger(trigger_id)
        if trigger is None:
            return TriggerResult(
                success=False,
                message="Trigger not registered",
                trigger_id=trigger_id,
                error=f"Unknown trigger '{trigger_id}'",
            )
        if not trigger.enabled:
            return TriggerResult(success=False, message="Trigger disabled", trigger_id=trigger_id)
        if trigger.type == TriggerType.SCHEDULE:
            return TriggerResult(
                success=False,
                message="Schedule triggers fire from the scheduler",
                trigger_id=trigger_id,
            )

        workflow_ids = self.registry.workflows_for_trigger(trigger_id)
        if not workflow_ids:
            logger.warning("Trigger fired but no workflow is bound to it", trigger_id=trigger_id)
            return TriggerResult(
                success=False,
                message="No workflow bound to trigger",
                trigger_id=trigger_id,
            )

        execution_ids: list[str] = []
        errors: list[str] = []
        for workflow_id in workflow_ids:
            event = TriggerEvent(
                trigger_id=trigger_id,
                trigger_type=trigger.type,
                workflow_id=workflow_id,
                payload=dict(payload or {}),
            )
            try:
                execution_id = await self._engine.invoke(
                    workflow_id, event.payload, event.to_context()
                )
            except WorkflowError as e:
                logger.error(
                    "Trigger fire failed",
                    trigger_id=trigger_id,
                    workflow_id=workflow_id,
                    error=str(e),
                )
                errors.append(f"{workflow_id}: {e}")
                continue
            execution_ids.append(execution_id)
            logger.info(
                "Trigger fired",
                trigger_id=trigger_id,
                workflow_id=workflow_id,
                execution_id=execution_id,
            )

        return TriggerResult(
            success=bool(execution_ids),
            message=(
                f"Started {len(execution_ids)} of {len(workflow_ids)} workflow(s)"
            ),
            trigger_id=trigger_id,
            execution_ids=execution_ids,
            error="; ".join(errors) or None,
        )

    def get_status(self) -> dict[str, Any]:
        """Registered triggers and the workflows bound to each."""
        return {
            "scheduler_running": bool(self._engine.scheduler and self._engine.scheduler.running),
            "triggers": {
                trigger.id: {
                    "type": trigger.type.value,
                    "enabled": trigger.enabled,
                    "workflows": self.registry.workflows_for_trigger(trigger.id),
                }
                for trigger in self.registry.triggers()
            },
        }

    @staticmethod
    def get_supported_types() -> list[dict[str, str]]:
        return [{"type": t.value, "name": t.name.replace("_", " ").title()} for t in TriggerType]
