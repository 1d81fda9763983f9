"""Database, file and transform actions."""

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from actions.base import ActionResult, BaseAction
from app.config import get_settings
from core.utils import get_field_value, interpolate_template

logger = structlog.get_logger(__name__)

QueryRunner = Callable[[str, str, Dict[str, Any], Dict[str, Any]], Awaitable[Any]]


class DatabaseAction(BaseAction):
    """Run a database operation through an injected query runner.

    The engine owns no database. Deployments pass a coroutine
    ``runner(operation, table, conditions, values)``; without one the
    action logs a dry run.

    Step parameters: operation, table, conditions, values
    """

    action_type = "database"
    display_name = "Database Operation"
    description = "Select/insert/update/delete through the configured runner"

    def __init__(self, query_runner: Optional[QueryRunner] = None):
        self._query_runner = query_runner

    async def execute(self, action_config, step_config, data, context) -> ActionResult:
        operation = step_config.get("operation", action_config.get("operation"))
        table = step_config.get("table", action_config.get("table"))
        if not operation or not table:
            return ActionResult(success=False, error="Database action needs operation and table")

        if self._query_runner is None:
            logger.info("Database dry run (no query runner)", operation=operation, table=table)
            return ActionResult(success=True, output={"success": True, "operation": operation, "table": table, "dry_run": True})

        rows = await self._query_runner(
            operation,
            table,
            step_config.get("conditions", {}),
            step_config.get("values", {}),
        )
        return ActionResult(success=True, output={"success": True, "operation": operation, "table": table, "result": rows})


class FileOperationAction(BaseAction):
    """Read, write, append, delete or test files under a root directory.

    Paths are resolved relative to the root (template ``root`` or the
    FILE_ACTION_ROOT setting) and may not escape it.

    Step parameters: operation, path, content
    """

    action_type = "file_operation"
    display_name = "File Operation"
    description = "Read or write files in the workflow storage area"

    _OPERATIONS = ("read", "write", "append", "delete", "exists")

    def __init__(self, root: Optional[str] = None):
        self._root = root

    def _resolve(self, root: str, relative: str) -> Path:
        base = Path(root).resolve()
        target = (base / relative).resolve()
        if target != base and base not in target.parents:
            raise ValueError(f"Path '{relative}' escapes the file action root")
        return target

    async def execute(self, action_config, step_config, data, context) -> ActionResult:
        operation = step_config.get("operation", "read")
        relative = step_config.get("path")
        if operation not in self._OPERATIONS:
            return ActionResult(success=False, error=f"Unknown file operation: {operation}")
        if not relative:
            return ActionResult(success=False, error="Missing required parameter: path")

        root = action_config.get("root") or self._root or get_settings().FILE_ACTION_ROOT
        path = self._resolve(root, relative)
        content = step_config.get("content", "")
        output = {"success": True, "operation": operation, "path": relative}

        def _apply() -> None:
            if operation == "read":
                output["content"] = path.read_text(encoding="utf-8")
            elif operation == "exists":
                output["exists"] = path.exists()
            elif operation == "delete":
                output["deleted"] = path.exists()
                path.unlink(missing_ok=True)
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                mode = "a" if operation == "append" else "w"
                with open(path, mode, encoding="utf-8") as f:
                    f.write(str(content))

        await asyncio.get_running_loop().run_in_executor(None, _apply)
        return ActionResult(success=True, output=output)


class TransformAction(BaseAction):
    """Pure data transformation, no side effects.

    Step parameters:
        transformation: uppercase | lowercase | trim | pick | omit | template
        fields: field list for pick/omit
        template: string with {{data.x}}/{{context.x}} placeholders
        field: optional dotted path; string transforms apply to that field's value
    """

    action_type = "transform"
    display_name = "Transform"
    description = "Reshape the data flowing through the workflow"

    async def execute(self, action_config, step_config, data, context) -> ActionResult:
        transformation = step_config.get("transformation", action_config.get("transformation"))
        target = get_field_value(data, step_config.get("field")) if step_config.get("field") else data

        if transformation in ("uppercase", "lowercase", "trim"):
            if not isinstance(target, str):
                return ActionResult(success=True, output=data)
            transformed = {
                "uppercase": target.upper,
                "lowercase": target.lower,
                "trim": target.strip,
            }[transformation]()
            if step_config.get("field") and isinstance(data, dict):
                return ActionResult(success=True, output=_set_field(data, step_config["field"], transformed))
            return ActionResult(success=True, output=transformed)

        if transformation in ("pick", "omit"):
            if not isinstance(data, dict):
                return ActionResult(success=True, output=data)
            fields = set(step_config.get("fields", []))
            if transformation == "pick":
                return ActionResult(success=True, output={k: v for k, v in data.items() if k in fields})
            return ActionResult(success=True, output={k: v for k, v in data.items() if k not in fields})

        if transformation == "template":
            # Step parameters were interpolated already; re-render for raw templates in the action config.
            template = step_config.get("template", action_config.get("template", ""))
            return ActionResult(success=True, output=interpolate_template(template, data, context))

        return ActionResult(success=True, output=data)


def _set_field(data: dict, path: str, value: Any) -> dict:
    """Return a copy of ``data`` with the dotted ``path`` replaced by ``value``."""
    head, _, rest = path.partition(".")
    updated = dict(data)
    if rest and isinstance(data.get(head), dict):
        updated[head] = _set_field(data[head], rest, value)
    else:
        updated[head] = value
    return updated
