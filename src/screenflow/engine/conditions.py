"""
Predicate evaluation for conditional action branches and visibility rules.

Grammar (formula style):
- Identifiers: dotted paths into the flattened evaluation data
  (``ageGroup``, ``household.head.gender``, ``item.status``)
- Literals: 'single' or "double" quoted strings, numbers, true/false/null
- Comparison: ==, !=, <, <=, >, >=
- Boolean: && / and, || / or, ! / not, parentheses
- Calls: registered functions, ``fn:length(members) > 0`` or ``length(members) > 0``

``DEFAULT`` is the always-true fallback branch marker.

Evaluation:
1. The expression is translated into a Python expression whose identifiers
   are replaced by opaque names (so paths like ``a.0.b`` stay legal).
2. ``ast.parse`` validates the syntax.
3. The tree is walked under an explicit node/operator whitelist. No eval,
   no attribute access, no imports.

Every failure is fail-closed (``False``) and reported with a code that tells
a broken expression apart from one that simply evaluated to false.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from .context import ContextLike, EvaluationContext
from .diagnostics import DiagnosticCode, DiagnosticsSink, LoggingDiagnosticsSink, Severity, report
from .exceptions import PredicateEvaluationError, PredicateParseError, UnresolvedIdentifierError
from .functions import FunctionRegistry

logger = logging.getLogger(__name__)

COMPONENT = "conditions"
DEFAULT_PREDICATE = "DEFAULT"

_VARIABLE_PREFIX = "_v"
_FUNCTION_PREFIX = "_f"

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<string>'(?:\\.|[^'\\])*'|"(?:\\.|[^"\\])*")
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<op>&&|\|\||==|!=|<=|>=|<|>|!|\(|\)|,|-)
  | (?P<ident>(?:fn:)?[A-Za-z_][A-Za-z0-9_]*(?:\.(?:[A-Za-z_][A-Za-z0-9_]*|\d+))*)
    """,
    re.VERBOSE,
)

_KEYWORDS = {
    "and": "and",
    "or": "or",
    "not": "not",
    "true": "True",
    "True": "True",
    "false": "False",
    "False": "False",
    "null": "None",
    "None": "None",
}

_OPERATORS = {
    "&&": " and ",
    "||": " or ",
    "!": " not ",
}


@dataclass(frozen=True)
class CompiledPredicate:
    """Translated and parsed predicate, reusable across evaluations."""

    source: str
    tree: ast.Expression
    variables: Mapping[str, str]  # opaque name -> dotted path
    functions: Mapping[str, str]  # opaque name -> registry name


def _next_significant(tokens: list[tuple[str, str]], index: int) -> str | None:
    for kind, text in tokens[index + 1 :]:
        if kind != "ws":
            return text
    return None


@lru_cache(maxsize=1024)
def compile_predicate(expression: str) -> CompiledPredicate:
    """
    Translate and parse ``expression``.

    Raises:
        PredicateParseError: on unknown characters or invalid syntax
    """
    tokens: list[tuple[str, str]] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            raise PredicateParseError(
                expression, f"unexpected character {expression[position]!r} at {position}"
            )
        kind = match.lastgroup or ""
        tokens.append((kind, match.group(0)))
        position = match.end()

    if not any(kind != "ws" for kind, _ in tokens):
        raise PredicateParseError(expression, "empty expression")

    variables: dict[str, str] = {}
    functions: dict[str, str] = {}
    path_names: dict[str, str] = {}
    parts: list[str] = []

    for index, (kind, text) in enumerate(tokens):
        if kind == "ws":
            parts.append(" ")
        elif kind == "string":
            body = re.sub(r"\\(.)", r"\1", text[1:-1])
            parts.append(repr(body))
        elif kind == "number":
            parts.append(text)
        elif kind == "op":
            parts.append(_OPERATORS.get(text, text))
        elif kind == "ident":
            if text in _KEYWORDS:
                parts.append(f" {_KEYWORDS[text]} ")
            elif _next_significant(tokens, index) == "(":
                name = text.removeprefix("fn:")
                if "." in name:
                    raise PredicateParseError(expression, f"invalid function name {name!r}")
                opaque = f"{_FUNCTION_PREFIX}{len(functions)}"
                functions[opaque] = name
                parts.append(opaque)
            elif text.startswith("fn:"):
                raise PredicateParseError(expression, f"function {text!r} is missing '()'")
            else:
                opaque = path_names.get(text)
                if opaque is None:
                    opaque = f"{_VARIABLE_PREFIX}{len(variables)}"
                    path_names[text] = opaque
                    variables[opaque] = text
                parts.append(opaque)

    source = "".join(parts).strip()
    try:
        tree = ast.parse(source, mode="eval")
    except SyntaxError as e:
        raise PredicateParseError(expression, f"invalid syntax ({e.msg})") from e

    return CompiledPredicate(source=source, tree=tree, variables=variables, functions=functions)


def coerce_boolean_string(value: Any) -> Any:
    """Map the literal strings "true"/"false" to booleans; leave anything else."""
    if value == "true":
        return True
    if value == "false":
        return False
    return value


def flatten(data: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """
    Flatten nested mappings into a dot-path -> value mapping.

    Lists are kept as leaf values (reachable through functions only).
    String "true"/"false" leaves are coerced to booleans.

    Example:
        >>> flatten({"a": {"b": "true", "c": [1, 2]}, "d": 1})
        {'a.b': True, 'a.c': [1, 2], 'd': 1}
    """
    flat: dict[str, Any] = {}
    for key, value in data.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            flat.update(flatten(value, path))
        else:
            flat[path] = coerce_boolean_string(value)
    return flat


def merge_condition_data(
    form_data: Mapping[str, Any] | None, navigation: Mapping[str, Any] | None
) -> dict[str, Any]:
    """Form data merged with navigation params, boolean strings coerced."""
    merged: dict[str, Any] = {}
    for source in (form_data or {}, navigation or {}):
        for key, value in source.items():
            merged[key] = coerce_boolean_string(value)
    return merged


class ConditionEvaluator:
    """
    Safe AST-based predicate evaluator.

    Example:
        evaluator = ConditionEvaluator(functions, diagnostics)
        evaluator.evaluate("ageGroup == 'adult' && consent", {"ageGroup": "adult",
                                                              "consent": "true"})
        # True
        evaluator.evaluate("DEFAULT", {})   # True (fallback branch)
        evaluator.evaluate("age >", {})     # False + predicate_parse_error diagnostic
    """

    COMPARISONS: dict[type, Callable[[Any, Any], bool]] = {
        ast.Eq: operator.eq,
        ast.NotEq: operator.ne,
        ast.Lt: operator.lt,
        ast.LtE: operator.le,
        ast.Gt: operator.gt,
        ast.GtE: operator.ge,
    }

    def __init__(
        self,
        functions: FunctionRegistry | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ):
        self.diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()
        self.functions = functions if functions is not None else FunctionRegistry(self.diagnostics)

    def evaluate(self, expression: str | None, ctx: ContextLike | None = None) -> bool:
        """Evaluate ``expression`` against ``ctx``; never raises."""
        if expression is not None and expression.strip() == DEFAULT_PREDICATE:
            report(
                self.diagnostics,
                Severity.DEBUG,
                COMPONENT,
                DiagnosticCode.PREDICATE_DEFAULT,
                "DEFAULT predicate matched (fallback branch)",
                expression=DEFAULT_PREDICATE,
            )
            return True

        if isinstance(ctx, EvaluationContext):
            data = ctx.condition_data()
        else:
            data = dict(ctx or {})
        flat = flatten(data)

        try:
            compiled = compile_predicate(expression or "")
            result = self._eval_node(compiled.tree.body, compiled, flat, ctx)
            if not isinstance(result, bool):
                raise PredicateEvaluationError(
                    f"Predicate must evaluate to boolean, got {type(result).__name__}: {result!r}"
                )
        except PredicateParseError as e:
            self._report(Severity.WARNING, DiagnosticCode.PREDICATE_PARSE_ERROR, str(e), expression)
            return False
        except UnresolvedIdentifierError as e:
            self._report(Severity.INFO, DiagnosticCode.PREDICATE_UNRESOLVED, str(e), expression)
            return False
        except Exception as e:
            self._report(
                Severity.WARNING,
                DiagnosticCode.PREDICATE_EVALUATION_ERROR,
                f"Cannot evaluate predicate {expression!r}: {e}",
                expression,
            )
            return False

        logger.debug(f"Predicate {expression!r} -> {result}")
        if not result:
            self._report(
                Severity.DEBUG,
                DiagnosticCode.PREDICATE_FALSE,
                f"Predicate {expression!r} evaluated to false",
                expression,
            )
        return result

    def _report(
        self, severity: Severity, code: DiagnosticCode, message: str, expression: str | None
    ) -> None:
        report(self.diagnostics, severity, COMPONENT, code, message, expression=expression or "")

    def _eval_node(
        self,
        node: ast.AST,
        compiled: CompiledPredicate,
        flat: Mapping[str, Any],
        ctx: ContextLike | None,
    ) -> Any:
        if isinstance(node, ast.Constant):
            return node.value

        if isinstance(node, ast.Name):
            path = compiled.variables.get(node.id)
            if path is None:
                raise PredicateParseError(compiled.source, f"unexpected name {node.id!r}")
            if path not in flat:
                raise UnresolvedIdentifierError(path, list(flat.keys()))
            return flat[path]

        if isinstance(node, ast.BoolOp):
            # Short-circuit like the source language would
            if isinstance(node.op, ast.And):
                result: Any = True
                for value in node.values:
                    result = self._eval_node(value, compiled, flat, ctx)
                    if not result:
                        return result
                return result
            if isinstance(node.op, ast.Or):
                result = False
                for value in node.values:
                    result = self._eval_node(value, compiled, flat, ctx)
                    if result:
                        return result
                return result

        if isinstance(node, ast.UnaryOp):
            operand = self._eval_node(node.operand, compiled, flat, ctx)
            if isinstance(node.op, ast.Not):
                return not operand
            if isinstance(node.op, ast.USub) and isinstance(operand, (int, float)):
                return -operand

        if isinstance(node, ast.Compare):
            left = self._eval_node(node.left, compiled, flat, ctx)
            for op, comparator in zip(node.ops, node.comparators):
                compare = self.COMPARISONS.get(type(op))
                if compare is None:
                    raise PredicateParseError(
                        compiled.source, f"unsupported comparison {type(op).__name__}"
                    )
                right = self._eval_node(comparator, compiled, flat, ctx)
                if not compare(left, right):
                    return False
                left = right
            return True

        if isinstance(node, ast.Call):
            if (
                not isinstance(node.func, ast.Name)
                or node.func.id not in compiled.functions
                or node.keywords
            ):
                raise PredicateParseError(compiled.source, "only registered function calls allowed")
            name = compiled.functions[node.func.id]
            if not self.functions.has(name):
                raise PredicateEvaluationError(f"Unknown function '{name}'")
            args = [self._eval_node(arg, compiled, flat, ctx) for arg in node.args]
            return self.functions.call(name, args, ctx if ctx is not None else flat)

        raise PredicateParseError(
            compiled.source,
            f"unsupported expression type {type(node).__name__}; only literals, "
            f"identifiers, comparisons, boolean operators and function calls are allowed",
        )
