"""Runtime exceptions for the expression and action runtime.

Read paths (template and predicate resolution) never let these escape to the
caller; they are raised internally and converted into diagnostics at the
resolver/evaluator boundary. Write paths (actions) raise them from executors
and the orchestrator reports them per top-level step.
"""

from __future__ import annotations


class ScreenflowError(Exception):
    """Base class for all screenflow runtime errors."""


class PredicateParseError(ScreenflowError):
    """Predicate expression is malformed or uses an unsupported construct."""

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Cannot parse predicate {expression!r}: {reason}")


class UnresolvedIdentifierError(ScreenflowError):
    """Predicate references an identifier absent from the evaluation data."""

    def __init__(self, identifier: str, available: list[str]):
        self.identifier = identifier
        self.available = available
        super().__init__(
            f"Identifier '{identifier}' not found. Available: {sorted(available)[:20]}"
        )


class PredicateEvaluationError(ScreenflowError):
    """Predicate parsed but could not be evaluated to a boolean."""


class ActionNestingError(ScreenflowError):
    """
    Nested conditional actions exceed the depth limit or form a cycle.

    Attributes:
        depth: Nesting depth at which the error was detected
        max_depth: Configured maximum depth
        cyclic: True when the same action list appears twice on the nesting path
    """

    def __init__(self, depth: int, max_depth: int, cyclic: bool = False):
        self.depth = depth
        self.max_depth = max_depth
        self.cyclic = cyclic
        if cyclic:
            message = f"Cyclic action nesting detected at depth {depth}"
        else:
            message = (
                f"Action nesting depth limit exceeded (depth: {depth}, limit: {max_depth}). "
                f"Set SCREENFLOW_MAX_ACTION_DEPTH to raise the limit."
            )
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"ActionNestingError(depth={self.depth}, limit={self.max_depth}, "
            f"cyclic={self.cyclic})"
        )


class OwnerDisposedError(ScreenflowError):  # noqa: N818
    """
    Owner of an in-flight action sequence was torn down.

    Raised by executors (via ``ActionRuntime.ensure_alive``) after a suspension
    point when the session is gone, so that effects are not applied after
    teardown. The orchestrator treats it as cancellation, not failure.
    """

    def __init__(self, action_type: str | None = None):
        self.action_type = action_type
        where = f" during '{action_type}'" if action_type else ""
        super().__init__(f"Owner disposed{where}; discarding pending result")


class FetchError(ScreenflowError):
    """Fetch/transform pipeline could not produce a result."""


class ActionExecutionError(ScreenflowError):
    """
    An executor raised while running an action.

    Attributes:
        action_type: Tag of the failing action
        cause: Original exception (also chained as ``__cause__``)
    """

    def __init__(self, action_type: str | None, cause: BaseException):
        self.action_type = action_type or "<unknown>"
        self.cause = cause
        super().__init__(f"Action '{self.action_type}' failed: {type(cause).__name__}: {cause}")
