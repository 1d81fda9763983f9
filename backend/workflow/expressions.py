"""Safe expression language for custom conditions.

Expressions are parsed once with :mod:`ast`, checked against a small
whitelist and turned into a tree of closures. Nothing is handed to
``eval``. The language covers:

- field paths rooted at ``data`` or ``context``: ``data.order.total``,
  ``data.items[0]``, ``context["user-id"]``
- literals: numbers, strings, ``true``/``false``/``null`` (and the
  Python spellings), lists/tuples of literals
- comparisons: ``== != > >= < <= in not in`` (chains allowed)
- boolean combinators: ``and or not`` (``&& || !`` are accepted too)
- unary minus

Missing fields resolve to ``None``. A comparison between values that
cannot be ordered (e.g. ``None > 3``) is false rather than an error.
"""

import ast
import operator
import re
from functools import lru_cache
from typing import Any, Callable

from core.exceptions import ExpressionError
from core.utils import get_field_value

Evaluator = Callable[[Any, dict], Any]

_ROOTS = ("data", "context")
_CONSTANT_NAMES = {
    "true": True, "True": True,
    "false": False, "False": False,
    "null": None, "None": None, "undefined": None,
}
_COMPARATORS: dict[type, Callable[[Any, Any], bool]] = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.In: lambda left, right: left in right,
    ast.NotIn: lambda left, right: left not in right,
}
MAX_EXPRESSION_LENGTH = 1000

# JavaScript-style spellings. Order matters: === before ==, !== before !=.
_JS_TOKENS = [
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
]
_STRING_RE = re.compile(r"""("(?:\\.|[^"\\])*"|'(?:\\.|[^'\\])*')""")


def _normalize(source: str) -> str:
    """Rewrite JS operators outside string literals."""
    parts = _STRING_RE.split(source)
    for i in range(0, len(parts), 2):
        for pattern, replacement in _JS_TOKENS:
            parts[i] = pattern.sub(replacement, parts[i])
    return "".join(parts).strip()


class _Compiler:
    def compile(self, node: ast.AST) -> Evaluator:
        handler = getattr(self, f"_compile_{type(node).__name__}", None)
        if handler is None:
            raise ExpressionError(f"Unsupported syntax in expression: {type(node).__name__}")
        return handler(node)

    def _compile_Expression(self, node: ast.Expression) -> Evaluator:
        return self.compile(node.body)

    def _compile_Constant(self, node: ast.Constant) -> Evaluator:
        value = node.value
        if not isinstance(value, (str, int, float, bool, type(None))):
            raise ExpressionError(f"Unsupported literal: {value!r}")
        return lambda data, context: value

    def _compile_Name(self, node: ast.Name) -> Evaluator:
        if node.id == "data":
            return lambda data, context: data
        if node.id == "context":
            return lambda data, context: context
        if node.id in _CONSTANT_NAMES:
            value = _CONSTANT_NAMES[node.id]
            return lambda data, context: value
        raise ExpressionError(f"Unknown name '{node.id}' (paths must start with data or context)")

    def _compile_Attribute(self, node: ast.Attribute) -> Evaluator:
        if node.attr.startswith("_"):
            raise ExpressionError(f"Private attribute access is not allowed: {node.attr}")
        target = self.compile(node.value)
        attr = node.attr
        return lambda data, context: get_field_value(target(data, context), attr)

    def _compile_Subscript(self, node: ast.Subscript) -> Evaluator:
        key_node = node.slice
        if not isinstance(key_node, ast.Constant) or not isinstance(key_node.value, (str, int)):
            raise ExpressionError("Only literal string or integer subscripts are allowed")
        target = self.compile(node.value)
        key = str(key_node.value)
        return lambda data, context: get_field_value(target(data, context), key)

    def _compile_List(self, node: ast.List) -> Evaluator:
        items = [self.compile(element) for element in node.elts]
        return lambda data, context: [item(data, context) for item in items]

    def _compile_Tuple(self, node: ast.Tuple) -> Evaluator:
        items = [self.compile(element) for element in node.elts]
        return lambda data, context: tuple(item(data, context) for item in items)

    def _compile_UnaryOp(self, node: ast.UnaryOp) -> Evaluator:
        operand = self.compile(node.operand)
        if isinstance(node.op, ast.Not):
            return lambda data, context: not operand(data, context)
        if isinstance(node.op, ast.USub):
            return lambda data, context: -operand(data, context)
        raise ExpressionError(f"Unsupported unary operator: {type(node.op).__name__}")

    def _compile_BoolOp(self, node: ast.BoolOp) -> Evaluator:
        values = [self.compile(value) for value in node.values]
        if isinstance(node.op, ast.And):
            def _and(data, context):
                result = True
                for value in values:
                    result = value(data, context)
                    if not result:
                        return result
                return result
            return _and

        def _or(data, context):
            result = False
            for value in values:
                result = value(data, context)
                if result:
                    return result
            return result
        return _or

    def _compile_Compare(self, node: ast.Compare) -> Evaluator:
        funcs = []
        for op in node.ops:
            func = _COMPARATORS.get(type(op))
            if func is None:
                raise ExpressionError(f"Unsupported comparison: {type(op).__name__}")
            funcs.append(func)
        operands = [self.compile(node.left)] + [self.compile(c) for c in node.comparators]

        def _compare(data, context):
            left = operands[0](data, context)
            for func, right_eval in zip(funcs, operands[1:]):
                right = right_eval(data, context)
                try:
                    if not func(left, right):
                        return False
                except TypeError:
                    return False
                left = right
            return True
        return _compare


@lru_cache(maxsize=512)
def compile_expression(source: str) -> Evaluator:
    """Compile an expression string into a reusable evaluator.

    Raises:
        ExpressionError: on syntax errors or anything outside the whitelist
    """
    if not isinstance(source, str) or not source.strip():
        raise ExpressionError("Expression must be a non-empty string")
    if len(source) > MAX_EXPRESSION_LENGTH:
        raise ExpressionError(f"Expression longer than {MAX_EXPRESSION_LENGTH} characters")
    try:
        tree = ast.parse(_normalize(source), mode="eval")
    except SyntaxError as e:
        raise ExpressionError(f"Invalid expression {source!r}: {e.msg}") from e
    return _Compiler().compile(tree)


def evaluate_expression(source: str, data: Any, context: dict) -> bool:
    """Compile (cached) and evaluate an expression to a boolean."""
    return bool(compile_expression(source)(data, context or {}))
