"""screenflow: expression and action runtime for config-driven screens.

Module-level helpers run against a throwaway session with default settings.
Hosts that dispatch repeatedly should own a ``Session`` instead.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from .engine import (
    ActionConfig,
    ConditionEvaluator,
    EvaluationContext,
    ExecutorRegistry,
    FunctionRegistry,
    Session,
    TemplateResolver,
    register_builtin_functions,
)
from .engine.context import ContextLike
from .engine.diagnostics import DiagnosticsSink

__version__ = "0.1.0"


def resolve_template(raw: Any, ctx: ContextLike, diagnostics: DiagnosticsSink | None = None) -> Any:
    """Resolve ``{{...}}`` placeholders in ``raw`` using the built-in functions."""
    functions = FunctionRegistry(diagnostics)
    register_builtin_functions(functions)
    return TemplateResolver(functions, diagnostics).resolve(raw, ctx)


def evaluate_condition(
    expression: str, ctx: ContextLike, diagnostics: DiagnosticsSink | None = None
) -> bool:
    """Evaluate a predicate; any failure yields False."""
    functions = FunctionRegistry(diagnostics)
    register_builtin_functions(functions)
    return ConditionEvaluator(functions, diagnostics).evaluate(expression, ctx)


async def execute_actions(
    actions: Sequence[ActionConfig | Mapping[str, Any]],
    ctx: EvaluationContext | Mapping[str, Any] | None = None,
    **session_options: Any,
) -> EvaluationContext:
    """Run an action list in a one-off session and return the final context."""
    async with Session(**session_options) as session:
        return await session.execute_actions(actions, ctx)


__all__ = [
    "__version__",
    "resolve_template",
    "evaluate_condition",
    "execute_actions",
    "ExecutorRegistry",
    "FunctionRegistry",
    "Session",
]
