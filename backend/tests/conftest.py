"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- A recording action delegate whose behaviour is chosen per step via
  the ``handler`` step parameter
- A fake sleep that records requested delays and returns at once
- An engine factory with scheduling off and millisecond retry delays
- A ``run`` helper: invoke and wait for the terminal status
"""

import asyncio
import os
from dataclasses import dataclass
from typing import Any, Callable, Optional

import pytest

# Override settings BEFORE any app imports
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from workflow.engine import ExecutionEngine  # noqa: E402


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@dataclass
class ActionCall:
    action_type: str
    action_config: dict
    step_config: dict
    data: Any
    context: dict


class RecordingDelegate:
    """ActionDelegate double.

    Each action step may name a handler in its config
    (``{"actionId": "task", "handler": "double"}``). Handlers receive
    ``(step_config, data, context)`` and may be sync or async. Steps
    without a handler echo their input.
    """

    def __init__(self):
        self.calls: list[ActionCall] = []
        self._handlers: dict[str, Callable] = {}

    def on(self, name: str, handler: Callable) -> None:
        self._handlers[name] = handler

    def calls_for(self, handler: str) -> list[ActionCall]:
        return [call for call in self.calls if call.step_config.get("handler") == handler]

    async def execute(self, action_type, action_config, step_config, data, context):
        self.calls.append(ActionCall(action_type, dict(action_config), dict(step_config), data, dict(context)))
        handler = self._handlers.get(step_config.get("handler"))
        if handler is None:
            return data
        result = handler(step_config, data, context)
        if asyncio.iscoroutine(result):
            result = await result
        return result


class FakeSleep:
    """Records requested delays (seconds) and yields control once."""

    def __init__(self):
        self.calls: list[float] = []
        self.on_sleep: Optional[Callable[[float], None]] = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)
        await asyncio.sleep(0)


DEFAULT_ACTIONS = [
    {"id": "task", "type": "transform"},
    {"id": "notify", "type": "slack", "config": {"channel": "#ops"}},
]

DEFAULT_CONDITIONS = [
    {"id": "is_positive", "type": "comparison", "config": {"field": "value", "operator": "gt", "value": 0}},
    {"id": "has_items", "type": "exists", "config": {"field": "items"}},
    {"id": "custom", "type": "custom"},
]


def _action_step(step_id: str, handler: Optional[str] = None, next_steps=(), **extra) -> dict:
    config = {"actionId": extra.pop("action_id", "task")}
    if handler is not None:
        config["handler"] = handler
    config.update(extra.pop("params", {}))
    step = {"id": step_id, "type": "action", "config": config, "nextSteps": list(next_steps)}
    step.update(extra)
    return step


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def delegate() -> RecordingDelegate:
    return RecordingDelegate()


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def make_engine(delegate, fake_sleep):
    """Factory: ``make_engine([workflow_dict, ...], **config_overrides)``."""

    def _make(workflows=(), *, actions=None, conditions=None, triggers=(), **overrides) -> ExecutionEngine:
        config = {
            "workflows": {workflow["id"]: workflow for workflow in workflows},
            "actions": DEFAULT_ACTIONS if actions is None else actions,
            "conditions": DEFAULT_CONDITIONS if conditions is None else conditions,
            "triggers": list(triggers),
            "enableScheduling": False,
            "retryPolicy": {"maxRetries": 3, "backoffMultiplier": 2, "initialDelay": 10},
            **overrides,
        }
        return ExecutionEngine(config, action_delegate=delegate, sleep=fake_sleep)

    return _make


@pytest.fixture
def run():
    """Invoke a workflow and wait (with a safety deadline) until it finishes."""

    async def _run(engine: ExecutionEngine, workflow_id: str, input=None, context=None):
        execution_id = await engine.invoke(workflow_id, input, context)
        return await engine.wait_for(execution_id, timeout=5)

    return _run


@pytest.fixture
def step_ids():
    """Step ids of an execution's results, in recorded order."""

    def _ids(execution) -> list[str]:
        return [result.step_id for result in execution.steps]

    return _ids


@pytest.fixture
def action_step():
    """Builder for action step dicts: ``action_step("a", "double", next_steps=["b"])``."""
    return _action_step
