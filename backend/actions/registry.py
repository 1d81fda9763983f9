"""
Action Registry: the default ActionDelegate.

Maps action type strings to BaseAction implementations and exposes the
uniform ``execute(action_type, action_config, step_config, data,
context)`` contract the step executor calls.
"""

from typing import Any, Dict, Optional

from actions.base import BaseAction
from actions.implementations.data_actions import (
    DatabaseAction,
    FileOperationAction,
    QueryRunner,
    TransformAction,
)
from actions.implementations.http_action import ApiCallAction
from actions.implementations.messaging_actions import EmailAction, SlackAction


class ActionFailed(RuntimeError):
    """An action reported success=False."""


class ActionRegistry:
    """Central registry of action implementations."""

    def __init__(self, query_runner: Optional[QueryRunner] = None, register_builtins: bool = True):
        self._actions: Dict[str, BaseAction] = {}
        if register_builtins:
            self._register_builtin_actions(query_runner)

    def _register_builtin_actions(self, query_runner: Optional[QueryRunner]) -> None:
        for action in (
            ApiCallAction(),
            EmailAction(),
            SlackAction(),
            DatabaseAction(query_runner),
            FileOperationAction(),
            TransformAction(),
        ):
            self.register(action)

    def register(self, action: BaseAction, action_type: Optional[str] = None) -> None:
        """Register (or replace) the implementation for an action type."""
        self._actions[action_type or action.action_type] = action

    def get(self, action_type: str) -> Optional[BaseAction]:
        return self._actions.get(action_type)

    def list_all(self) -> list:
        return [
            {
                "action_type": action_type,
                "display_name": action.display_name,
                "description": action.description,
                "config_schema": action.get_config_schema(),
            }
            for action_type, action in self._actions.items()
        ]

    @property
    def available_types(self) -> list:
        return list(self._actions.keys())

    async def execute(
        self,
        action_type: str,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> Any:
        """Run an action and return its output.

        Raises:
            ActionFailed: unknown action type or the action reported failure
        """
        action = self._actions.get(action_type)
        if action is None:
            raise ActionFailed(f"Unknown action type: {action_type}")

        result = await action.run(action_config, step_config, data, context)
        if not result.success:
            raise ActionFailed(result.error or f"Action '{action_type}' returned success=False")
        return result.output
