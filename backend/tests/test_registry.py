"""Tests for the workflow registry and definition models."""

import threading

import pytest
from pydantic import ValidationError

from core.constants import TriggerType
from core.exceptions import InvalidDefinition
from workflow.models import EngineConfig, TriggerConfig, WorkflowDefinition
from workflow.registry import WorkflowRegistry, validate_definition


def _workflow(workflow_id="wf", steps=None, **extra) -> WorkflowDefinition:
    return WorkflowDefinition.model_validate({
        "id": workflow_id,
        "steps": steps if steps is not None else [{"id": "a", "type": "delay"}],
        **extra,
    })


@pytest.mark.unit
class TestDefinitionModels:
    def test_camel_case_and_snake_case(self):
        camel = _workflow(steps=[{"id": "a", "type": "delay", "nextSteps": ["b"],
                                  "errorHandling": {"strategy": "retry", "maxRetries": 5}},
                                 {"id": "b", "type": "delay"}])
        snake = _workflow(steps=[{"id": "a", "type": "delay", "next_steps": ["b"],
                                  "error_handling": {"strategy": "retry", "max_retries": 5}},
                                 {"id": "b", "type": "delay"}])
        assert camel.steps[0].next_steps == snake.steps[0].next_steps == ["b"]
        assert camel.steps[0].error_handling.max_retries == snake.steps[0].error_handling.max_retries == 5

    def test_definitions_are_frozen(self):
        workflow = _workflow()
        with pytest.raises(ValidationError):
            workflow.name = "renamed"

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValidationError):
            _workflow(errorHandling={"strategy": "ignore"})

    def test_entry_steps_count_child_edges(self):
        workflow = _workflow(steps=[
            {"id": "loop", "type": "loop", "config": {"loopSteps": ["body"]}},
            {"id": "body", "type": "delay"},
            {"id": "fan", "type": "parallel", "config": {"parallelSteps": ["x"]}},
            {"id": "x", "type": "delay"},
        ])
        assert [step.id for step in workflow.entry_steps()] == ["loop", "fan"]

    def test_fallback_targets_are_not_entry_steps(self):
        workflow = _workflow(
            errorHandling={"strategy": "fallback", "fallbackStep": "alert"},
            steps=[
                {"id": "a", "type": "delay",
                 "errorHandling": {"strategy": "fallback", "fallbackStep": "recover"}},
                {"id": "recover", "type": "delay"},
                {"id": "alert", "type": "delay"},
            ],
        )
        assert [step.id for step in workflow.entry_steps()] == ["a"]
        assert workflow.incoming_edges() == {"a": 0, "recover": 1, "alert": 1}

    def test_engine_config_defaults_from_settings(self):
        config = EngineConfig()
        assert config.max_execution_time == 300_000
        assert config.retry_policy.max_retries == 3
        assert config.retry_policy.backoff_multiplier == 2.0
        assert config.retry_policy.initial_delay == 1000


@pytest.mark.unit
class TestValidation:
    def test_duplicate_step_ids(self):
        with pytest.raises(InvalidDefinition, match="duplicate step id 'a'"):
            validate_definition(_workflow(steps=[{"id": "a", "type": "delay"}, {"id": "a", "type": "delay"}]))

    def test_dangling_next_step(self):
        with pytest.raises(InvalidDefinition, match="unknown next step 'ghost'"):
            validate_definition(_workflow(steps=[{"id": "a", "type": "delay", "nextSteps": ["ghost"]}]))

    def test_dangling_loop_child(self):
        with pytest.raises(InvalidDefinition):
            validate_definition(_workflow(steps=[{"id": "a", "type": "loop", "config": {"loopSteps": ["ghost"]}}]))

    def test_dangling_fallback(self):
        with pytest.raises(InvalidDefinition, match="fallback"):
            validate_definition(_workflow(steps=[{
                "id": "a", "type": "delay", "errorHandling": {"strategy": "fallback", "fallbackStep": "ghost"},
            }]))

    def test_convergent_steps_reported(self):
        workflow = _workflow(steps=[
            {"id": "a", "type": "delay", "nextSteps": ["c"]},
            {"id": "b", "type": "delay", "nextSteps": ["c"]},
            {"id": "c", "type": "delay"},
        ])
        assert validate_definition(workflow) == ["c"]

    def test_unknown_step_type_is_not_rejected(self):
        assert validate_definition(_workflow(steps=[{"id": "a", "type": "teleport"}])) == []


@pytest.mark.unit
class TestWorkflowRegistry:
    def test_register_and_lookup(self):
        registry = WorkflowRegistry()
        registry.register_workflow(_workflow("wf1"))

        assert registry.get_workflow("wf1").id == "wf1"
        assert registry.get_workflow("wf2") is None
        assert registry.workflow_ids == ["wf1"]

    def test_invalid_workflow_not_registered(self):
        registry = WorkflowRegistry()
        with pytest.raises(InvalidDefinition):
            registry.register_workflow(_workflow(steps=[{"id": "a", "type": "delay", "nextSteps": ["x"]}]))
        assert registry.workflow_ids == []

    def test_unregister(self):
        registry = WorkflowRegistry(workflows=[_workflow()])
        assert registry.unregister_workflow("wf") is True
        assert registry.unregister_workflow("wf") is False
        assert registry.get_workflow("wf") is None

    def test_reregistering_replaces(self):
        registry = WorkflowRegistry(workflows=[_workflow(name="v1")])
        registry.register_workflow(_workflow(name="v2"))
        assert registry.get_workflow("wf").name == "v2"

    def test_from_config_rejects_mismatched_keys(self):
        config = EngineConfig.model_validate({"workflows": {"alias": {"id": "real", "steps": []}}})
        with pytest.raises(InvalidDefinition):
            WorkflowRegistry.from_config(config)

    def test_templates(self):
        config = EngineConfig.model_validate({
            "actions": [{"id": "api", "type": "api_call", "config": {"base_url": "https://x.test"}}],
            "conditions": [{"id": "big", "type": "comparison"}],
        })
        registry = WorkflowRegistry.from_config(config)
        assert registry.get_action("api").config["base_url"] == "https://x.test"
        assert registry.get_condition("big") is not None
        assert registry.get_action("nope") is None

    def test_triggers_filtering_and_binding(self):
        registry = WorkflowRegistry(
            workflows=[_workflow("by_list", triggers=["hook"]), _workflow("other")],
            triggers=[
                TriggerConfig(id="hook", type="webhook", config={"workflowId": "other"}),
                TriggerConfig(id="nightly", type="schedule", enabled=False),
            ],
        )
        assert [t.id for t in registry.triggers(TriggerType.SCHEDULE)] == ["nightly"]
        assert registry.triggers(TriggerType.SCHEDULE, enabled_only=True) == []
        assert registry.workflows_for_trigger("hook") == ["other", "by_list"]
        assert registry.workflows_for_trigger("unknown") == []

    def test_concurrent_registration_keeps_every_workflow(self):
        registry = WorkflowRegistry()

        def register(n):
            registry.register_workflow(_workflow(f"wf{n}"))

        threads = [threading.Thread(target=register, args=(n,)) for n in range(25)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(registry.workflow_ids) == sorted(f"wf{n}" for n in range(25))
