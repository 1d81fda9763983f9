"""Condition evaluation for condition steps.

A condition step names a ConditionConfig template via ``conditionId``;
template config supplies defaults and the step's own config overrides
them, so several steps can share one template with different fields.

Types:
- comparison: ``field``/``operator``/``value``, operator in eq ne gt gte lt lte
- exists: ``field`` resolves to something other than None
- regex: ``pattern`` searched in the stringified ``field``
- custom: ``expression`` in the safe expression language

``field`` may start with ``data.`` or ``context.``; a bare path reads from data.
"""

import operator
import re
from typing import Any

import structlog

from core.constants import ConditionType
from core.exceptions import ExpressionError
from core.utils import resolve_path
from workflow.expressions import evaluate_expression
from workflow.models import ConditionConfig

logger = structlog.get_logger(__name__)

_OPERATORS = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
}


def _strict_equal(left: Any, right: Any) -> bool:
    # Keep True distinct from 1 and False from 0.
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


class ConditionEvaluator:
    """Evaluates a condition template against step data and context."""

    def evaluate(
        self,
        condition: ConditionConfig,
        step_config: dict,
        data: Any,
        context: dict,
    ) -> bool:
        params = {**condition.config, **step_config}
        handler = {
            ConditionType.COMPARISON: self._comparison,
            ConditionType.EXISTS: self._exists,
            ConditionType.REGEX: self._regex,
            ConditionType.CUSTOM: self._custom,
        }[condition.type]
        result = handler(params, data, context)
        logger.debug(
            "Condition evaluated",
            condition_id=condition.id,
            condition_type=condition.type.value,
            result=result,
        )
        return result

    @staticmethod
    def _comparison(params: dict, data: Any, context: dict) -> bool:
        op = params.get("operator", "eq")
        func = _OPERATORS.get(op)
        if func is None:
            raise ExpressionError(f"Unknown comparison operator: {op}")

        field_value = resolve_path(data, context, params.get("field"))
        expected = params.get("value")
        if op == "eq":
            return _strict_equal(field_value, expected)
        if op == "ne":
            return not _strict_equal(field_value, expected)
        try:
            return bool(func(field_value, expected))
        except TypeError:
            return False

    @staticmethod
    def _exists(params: dict, data: Any, context: dict) -> bool:
        return resolve_path(data, context, params.get("field")) is not None

    @staticmethod
    def _regex(params: dict, data: Any, context: dict) -> bool:
        pattern = params.get("pattern")
        if pattern is None:
            raise ExpressionError("Regex condition requires a pattern")
        try:
            compiled = re.compile(pattern)
        except re.error as e:
            raise ExpressionError(f"Invalid regex {pattern!r}: {e}") from e
        value = resolve_path(data, context, params.get("field"))
        return compiled.search(_stringify(value)) is not None

    @staticmethod
    def _custom(params: dict, data: Any, context: dict) -> bool:
        try:
            return evaluate_expression(params.get("expression", ""), data, context)
        except (TypeError, ValueError, ZeroDivisionError) as e:
            logger.warning(
                "Custom condition evaluation failed, treating as false",
                expression=params.get("expression"),
                error=str(e),
            )
            return False


def _stringify(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
