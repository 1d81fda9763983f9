"""
Workflow Registry: read-mostly store of workflow definitions and
reusable action/condition/trigger templates.

Executions read the registry concurrently and registration is rare, so
writers take a coarse lock, copy the current table, modify the copy and
swap it in. Readers never lock; they see either the old or the new
table, never a half-updated one.
"""

import threading
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

import structlog

from core.constants import StepType, TriggerType
from core.exceptions import InvalidDefinition
from workflow.models import (
    ActionConfig,
    ConditionConfig,
    EngineConfig,
    TriggerConfig,
    WorkflowDefinition,
)

logger = structlog.get_logger(__name__)

_KNOWN_STEP_TYPES = {t.value for t in StepType}


def validate_definition(workflow: WorkflowDefinition) -> list[str]:
    """Check a definition's internal references.

    Returns the ids of convergent steps (steps with more than one
    incoming edge). They are legal: such a step runs once per incoming
    edge.

    Raises:
        InvalidDefinition: duplicate step ids or dangling references
    """
    seen: set[str] = set()
    for step in workflow.steps:
        if step.id in seen:
            raise InvalidDefinition(f"Workflow '{workflow.id}': duplicate step id '{step.id}'")
        seen.add(step.id)

    def _check_ref(owner: str, target: Optional[str], kind: str) -> None:
        if target is not None and target not in seen:
            raise InvalidDefinition(
                f"Workflow '{workflow.id}': step '{owner}' references unknown {kind} '{target}'"
            )

    for step in workflow.steps:
        if step.type not in _KNOWN_STEP_TYPES:
            # Reported at run time as UnknownStepType.
            logger.warning(
                "Workflow step has unknown type",
                workflow_id=workflow.id,
                step_id=step.id,
                step_type=step.type,
            )
        for target in step.next_steps:
            _check_ref(step.id, target, "next step")
        for target in step.child_step_ids():
            _check_ref(step.id, target, f"{step.type} step")
        if step.error_handling is not None:
            _check_ref(step.id, step.error_handling.fallback_step, "fallback step")
    _check_ref("<workflow>", workflow.error_handling.fallback_step, "fallback step")

    return [step_id for step_id, count in workflow.incoming_edges().items() if count > 1]


class WorkflowRegistry:
    """Holds workflows plus action, condition and trigger templates."""

    def __init__(
        self,
        workflows: Iterable[WorkflowDefinition] = (),
        actions: Iterable[ActionConfig] = (),
        conditions: Iterable[ConditionConfig] = (),
        triggers: Iterable[TriggerConfig] = (),
    ):
        self._lock = threading.Lock()
        self._workflows: Mapping[str, WorkflowDefinition] = MappingProxyType({})
        self._convergent: Mapping[str, tuple[str, ...]] = MappingProxyType({})
        self._actions: Mapping[str, ActionConfig] = MappingProxyType({})
        self._conditions: Mapping[str, ConditionConfig] = MappingProxyType({})
        self._triggers: Mapping[str, TriggerConfig] = MappingProxyType({})

        for action in actions:
            self.register_action(action)
        for condition in conditions:
            self.register_condition(condition)
        for trigger in triggers:
            self.register_trigger(trigger)
        for workflow in workflows:
            self.register_workflow(workflow)

    @classmethod
    def from_config(cls, config: EngineConfig) -> "WorkflowRegistry":
        """Build a registry from the engine construction config."""
        for key, workflow in config.workflows.items():
            if key != workflow.id:
                raise InvalidDefinition(
                    f"Workflow registered under '{key}' declares id '{workflow.id}'"
                )
        return cls(
            workflows=config.workflows.values(),
            actions=config.actions,
            conditions=config.conditions,
            triggers=config.triggers,
        )

    # ─── Registration ──────────────────────────────────────────

    def register_workflow(self, workflow: WorkflowDefinition) -> None:
        convergent = validate_definition(workflow)
        if convergent:
            logger.warning(
                "Workflow has convergent steps; each runs once per incoming edge",
                workflow_id=workflow.id,
                steps=convergent,
            )
        with self._lock:
            workflows = dict(self._workflows)
            workflows[workflow.id] = workflow
            flagged = dict(self._convergent)
            flagged[workflow.id] = tuple(convergent)
            self._workflows = MappingProxyType(workflows)
            self._convergent = MappingProxyType(flagged)
        logger.info("Workflow registered", workflow_id=workflow.id, steps=len(workflow.steps))

    def unregister_workflow(self, workflow_id: str) -> bool:
        with self._lock:
            if workflow_id not in self._workflows:
                return False
            workflows = dict(self._workflows)
            del workflows[workflow_id]
            flagged = dict(self._convergent)
            flagged.pop(workflow_id, None)
            self._workflows = MappingProxyType(workflows)
            self._convergent = MappingProxyType(flagged)
        logger.info("Workflow unregistered", workflow_id=workflow_id)
        return True

    def register_action(self, action: ActionConfig) -> None:
        with self._lock:
            self._actions = MappingProxyType({**self._actions, action.id: action})

    def register_condition(self, condition: ConditionConfig) -> None:
        with self._lock:
            self._conditions = MappingProxyType({**self._conditions, condition.id: condition})

    def register_trigger(self, trigger: TriggerConfig) -> None:
        with self._lock:
            self._triggers = MappingProxyType({**self._triggers, trigger.id: trigger})

    # ─── Lookup ────────────────────────────────────────────────

    def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        return self._workflows.get(workflow_id)

    def get_action(self, action_id: str) -> Optional[ActionConfig]:
        return self._actions.get(action_id)

    def get_condition(self, condition_id: str) -> Optional[ConditionConfig]:
        return self._conditions.get(condition_id)

    def get_trigger(self, trigger_id: str) -> Optional[TriggerConfig]:
        return self._triggers.get(trigger_id)

    def convergent_steps(self, workflow_id: str) -> tuple[str, ...]:
        return self._convergent.get(workflow_id, ())

    @property
    def workflow_ids(self) -> list[str]:
        return list(self._workflows.keys())

    def triggers(self, trigger_type: Optional[TriggerType] = None, enabled_only: bool = False) -> list[TriggerConfig]:
        return [
            trigger
            for trigger in self._triggers.values()
            if (trigger_type is None or trigger.type == trigger_type)
            and (trigger.enabled or not enabled_only)
        ]

    def workflows_for_trigger(self, trigger_id: str) -> list[str]:
        """Workflow ids bound to a trigger.

        A trigger binds through its ``workflowId`` config entry or by
        being listed in a workflow's ``triggers``.
        """
        bound: list[str] = []
        trigger = self._triggers.get(trigger_id)
        if trigger is not None and trigger.config.get("workflowId"):
            bound.append(trigger.config["workflowId"])
        for workflow in self._workflows.values():
            if trigger_id in workflow.triggers and workflow.id not in bound:
                bound.append(workflow.id)
        return bound
