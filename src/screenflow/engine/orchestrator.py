"""Action orchestrator: ordered, conditionally branching action lists.

Scanning walks the list in order:
- an entry without a condition is a direct action and runs on its own
- a maximal run of consecutive entries with a condition is a conditional
  group; predicates are evaluated in declared order against the current
  context and only the first true member's nested ``actions`` run
  (recursively, sequentially); no true member -> nothing runs
- after a group, scanning resumes at the first entry past it

Each executed action receives the context returned by the previous one.

Failure policy: every top-level step (a direct action or a whole group) is
isolated. When it raises, the failure is reported, the step's partial
context is discarded and the next step starts from the last committed
context. Nested failures abort their enclosing top-level step.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from .actions import DEFAULT_MAX_DEPTH, NESTING_CYCLIC, ActionConfig, parse_actions
from .conditions import ConditionEvaluator
from .context import EvaluationContext
from .diagnostics import DiagnosticCode, DiagnosticsSink, Severity, report
from .exceptions import ActionExecutionError, ActionNestingError, OwnerDisposedError
from .executor_base import ExecutorRegistry
from .runtime import ActionRuntime

logger = logging.getLogger(__name__)

COMPONENT = "orchestrator"


@dataclass(frozen=True)
class Step:
    """One unit of scanning: a direct action, or a conditional group."""

    index: int
    action: ActionConfig | None = None
    group: tuple[ActionConfig, ...] = ()

    @property
    def is_group(self) -> bool:
        return self.action is None

    @property
    def label(self) -> str:
        if self.action is not None:
            return self.action.label
        return f"conditional group of {len(self.group)}"


def iter_steps(actions: Sequence[ActionConfig]) -> Iterator[Step]:
    """Split an action list into direct actions and maximal conditional groups."""
    i = 0
    while i < len(actions):
        if actions[i].is_conditional:
            start = i
            while i < len(actions) and actions[i].is_conditional:
                i += 1
            yield Step(index=start, group=tuple(actions[start:i]))
        else:
            yield Step(index=i, action=actions[i])
            i += 1


class ActionOrchestrator:
    """
    Runs action lists through the executor registry.

    Example:
        orchestrator = ActionOrchestrator(registry, evaluator, runtime)
        final_ctx = await orchestrator.execute_actions(schema_actions, ctx)

    ``execute_actions`` never raises for configuration or executor problems;
    those become diagnostics. Task cancellation (``asyncio.CancelledError``)
    propagates.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        evaluator: ConditionEvaluator,
        runtime: ActionRuntime,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.registry = registry
        self.evaluator = evaluator
        self.runtime = runtime
        self.max_depth = max_depth

    @property
    def diagnostics(self) -> DiagnosticsSink:
        return self.runtime.diagnostics

    async def execute_actions(
        self,
        actions: Sequence[ActionConfig | Mapping[str, Any]] | None,
        context: EvaluationContext | Mapping[str, Any] | None = None,
    ) -> EvaluationContext:
        """
        Execute ``actions`` in order and return the final context.

        Args:
            actions: Parsed ActionConfig list or raw JSON list
            context: Starting context (a mapping is validated as EvaluationContext)

        Returns:
            Context after the last committed step
        """
        parsed = self._parse(actions)
        committed = self._coerce_context(context)

        for step in iter_steps(parsed):
            if not self.runtime.is_alive():
                self._report_cancelled(step, None)
                break
            try:
                committed = await self._run_step(step, committed, depth=0, path=())
            except OwnerDisposedError as e:
                self._report_cancelled(step, e)
                break
            except ActionNestingError as e:
                report(
                    self.diagnostics,
                    Severity.ERROR,
                    COMPONENT,
                    DiagnosticCode.NESTING_DEPTH_EXCEEDED,
                    str(e),
                    step=step.index,
                    depth=e.depth,
                    max_depth=e.max_depth,
                    cyclic=e.cyclic,
                )
            except ActionExecutionError as e:
                logger.debug(f"Step {step.index} failed", exc_info=True)
                report(
                    self.diagnostics,
                    Severity.ERROR,
                    COMPONENT,
                    DiagnosticCode.EXECUTOR_FAILURE,
                    str(e),
                    step=step.index,
                    action_type=e.action_type,
                    cause=type(e.cause).__name__,
                )

        return committed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _parse(
        self, actions: Sequence[ActionConfig | Mapping[str, Any]] | None
    ) -> list[ActionConfig]:
        if actions is not None and all(isinstance(a, ActionConfig) for a in actions):
            return list(actions)  # type: ignore[arg-type]
        return parse_actions(actions, max_depth=self.max_depth)

    @staticmethod
    def _coerce_context(context: EvaluationContext | Mapping[str, Any] | None) -> EvaluationContext:
        if context is None:
            return EvaluationContext()
        if isinstance(context, EvaluationContext):
            return context
        return EvaluationContext.model_validate(dict(context))

    async def _run_list(
        self,
        actions: Sequence[ActionConfig],
        context: EvaluationContext,
        depth: int,
        path: tuple[int, ...],
    ) -> EvaluationContext:
        """Run a nested list. Exceptions propagate to the top-level step."""
        if depth > self.max_depth:
            raise ActionNestingError(depth, self.max_depth)
        marker = id(actions)
        if marker in path:
            raise ActionNestingError(depth, self.max_depth, cyclic=True)

        for step in iter_steps(actions):
            self.runtime.ensure_alive(step.label)
            context = await self._run_step(step, context, depth, path + (marker,))
        return context

    async def _run_step(
        self,
        step: Step,
        context: EvaluationContext,
        depth: int,
        path: tuple[int, ...],
    ) -> EvaluationContext:
        if step.action is not None:
            return await self._run_action(step.action, context, depth)

        for member in step.group:
            expression = member.condition.expression if member.condition else None
            if self.evaluator.evaluate(expression, context):
                logger.debug(f"Condition {expression!r} matched at group {step.index}")
                return await self._run_list(member.actions, context, depth + 1, path)
        logger.debug(f"No condition matched in group at {step.index}")
        return context

    async def _run_action(
        self, action: ActionConfig, context: EvaluationContext, depth: int
    ) -> EvaluationContext:
        if action.nesting:
            raise ActionNestingError(depth, self.max_depth, cyclic=action.nesting == NESTING_CYCLIC)
        problem = action.problem
        if problem:
            report(
                self.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.MALFORMED_ACTION_CONFIG,
                f"Skipping malformed action: {problem}",
                action_type=action.action_type or "",
            )
            return context

        try:
            result = await self.registry.execute(action, context, self.runtime)
        except (OwnerDisposedError, ActionNestingError):
            raise
        except Exception as e:
            raise ActionExecutionError(action.action_type, e) from e
        self.runtime.ensure_alive(action.action_type)
        return result

    def _report_cancelled(self, step: Step, error: OwnerDisposedError | None) -> None:
        report(
            self.diagnostics,
            Severity.INFO,
            COMPONENT,
            DiagnosticCode.DISPATCH_CANCELLED,
            str(error) if error else "Owner disposed; remaining actions skipped",
            step=step.index,
        )
