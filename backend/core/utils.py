"""
Utility functions for the workflow automation engine.

Includes:
- UTC datetime helpers
- Execution id generation
- Dotted field path lookup
- {{data.x}} / {{context.x}} template interpolation
"""

import re
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional

_BASE36 = string.digits + string.ascii_lowercase
_TEMPLATE_RE = re.compile(r"\{\{\s*(data|context)\.([^}\s]+)\s*\}\}")


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def generate_execution_id() -> str:
    """
    Generate a unique execution id.

    Format: exec_<epoch milliseconds>_<9 random base36 characters>
    """
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"exec_{int(time.time() * 1000)}_{suffix}"


def get_field_value(obj: Any, path: Optional[str]) -> Any:
    """Resolve a dotted path like 'order.items.0.sku' against nested data.

    Missing keys, out-of-range indexes and None intermediates resolve
    to None instead of raising. Attributes of non-container values are
    readable, except underscore-prefixed ones.
    """
    if path is None or path == "":
        return obj

    current = obj
    for part in str(path).split("."):
        if current is None:
            return None
        if isinstance(current, dict):
            current = current.get(part)
        elif isinstance(current, (list, tuple)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return None
        else:
            current = None if part.startswith("_") else getattr(current, part, None)
    return current


def resolve_path(data: Any, context: Optional[dict], path: Optional[str]) -> Any:
    """Resolve a condition or loop field path.

    A leading ``data`` or ``context`` segment picks the root the way
    custom expressions do; any other path is relative to ``data``.
    """
    if path is None or path == "":
        return data
    root, _, rest = str(path).partition(".")
    if root == "data":
        return get_field_value(data, rest)
    if root == "context":
        return get_field_value(context, rest)
    return get_field_value(data, path)


def interpolate_template(template: str, data: Any, context: dict) -> str:
    """Replace {{data.path}} and {{context.path}} placeholders in a string.

    Unresolved values (None or False) render as an empty string.
    """
    def _replace(match: re.Match) -> str:
        source = data if match.group(1) == "data" else context
        value = get_field_value(source, match.group(2))
        return "" if value is None or value is False else str(value)

    return _TEMPLATE_RE.sub(_replace, template)


def interpolate_config(config: Any, data: Any, context: dict) -> Any:
    """Recursively interpolate every string inside a step parameter structure."""
    if isinstance(config, str):
        return interpolate_template(config, data, context)
    if isinstance(config, dict):
        return {key: interpolate_config(value, data, context) for key, value in config.items()}
    if isinstance(config, list):
        return [interpolate_config(value, data, context) for value in config]
    return config
