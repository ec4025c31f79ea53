"""Executor base class and registry for action dispatch.

Executors implement one side effect each (navigate, create entities, emit an
event, fetch data). They are:
- Stateless: one instance serves every action of its type in a session
- Pluggable: any package can register more action types
- Pure with respect to context: they return a new EvaluationContext instead of
  mutating the one they were given

Executors raise on failure. The orchestrator catches, reports and moves on.
"""

from __future__ import annotations

import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, ClassVar

from pydantic import BaseModel

from .actions import ActionConfig
from .context import EvaluationContext
from .diagnostics import DiagnosticCode, DiagnosticsSink, LoggingDiagnosticsSink, Severity, report
from .runtime import ActionRuntime

logger = logging.getLogger(__name__)

COMPONENT = "executors"


class ActionProperties(BaseModel):
    """Base class for executor property validation (after template resolution)."""

    model_config = {"extra": "allow", "populate_by_name": True}


class ActionExecutor(ABC):
    """Base class for action executors.

    Subclasses must:
    1. Set ``action_types`` (tags this executor claims)
    2. Implement ``execute()``
    3. Optionally set ``properties_type`` for validated properties

    Example:
        class ToastExecutor(ActionExecutor):
            action_types = ("SHOW_TOAST",)

            async def execute(self, action, context, runtime):
                message = runtime.resolver.resolve(action.properties.get("message"), context)
                await runtime.require_event_bus().emit("toast", {"message": message})
                return context
    """

    action_types: ClassVar[tuple[str, ...]] = ()
    properties_type: ClassVar[type[ActionProperties]] = ActionProperties

    def can_handle(self, action_type: str) -> bool:
        return action_type in self.action_types

    @abstractmethod
    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        """Perform the side effect and return the context for the next action.

        Raises:
            Exception: any exception marks this action as failed
        """

    def resolve_properties(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> Any:
        """Resolve templated properties and validate them with ``properties_type``.

        Raises:
            pydantic.ValidationError: if resolved properties do not fit the model
        """
        resolved = runtime.resolver.resolve(action.properties, context)
        return self.properties_type.model_validate(resolved)


class ExecutorRegistry:
    """
    Ordered registry mapping action-type tags to executors.

    Dispatch goes to the first entry, in registration order, whose tag equals
    the action type or whose executor's ``can_handle`` claims it.

    Intended to be filled once at session start. Registration takes a lock so
    late registrations from other threads are safe.
    """

    def __init__(self, diagnostics: DiagnosticsSink | None = None):
        self.diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()
        self._executors: dict[str, ActionExecutor] = {}
        self._lock = threading.Lock()

    def register(self, action_type: str, executor: ActionExecutor) -> bool:
        """Bind ``executor`` to ``action_type``.

        The first registration of a tag wins; a duplicate is ignored with a
        warning diagnostic.

        Returns:
            True if the executor was registered
        """
        if not action_type:
            raise ValueError("action_type must be a non-empty string")
        with self._lock:
            existing = self._executors.get(action_type)
            if existing is not None:
                report(
                    self.diagnostics,
                    Severity.WARNING,
                    COMPONENT,
                    DiagnosticCode.DUPLICATE_REGISTRATION,
                    f"Executor for '{action_type}' already registered "
                    f"({type(existing).__name__}); ignoring {type(executor).__name__}",
                    action_type=action_type,
                )
                return False
            self._executors[action_type] = executor
            return True

    def register_executor(self, executor: ActionExecutor) -> int:
        """Register ``executor`` under each of its ``action_types``."""
        return sum(self.register(tag, executor) for tag in executor.action_types)

    def unregister(self, action_type: str) -> bool:
        with self._lock:
            return self._executors.pop(action_type, None) is not None

    def find(self, action_type: str) -> ActionExecutor | None:
        """First executor claiming ``action_type``, or None."""
        for tag, executor in list(self._executors.items()):
            if tag == action_type or executor.can_handle(action_type):
                return executor
        return None

    def has(self, action_type: str) -> bool:
        return self.find(action_type) is not None

    def list_types(self) -> list[str]:
        return list(self._executors.keys())

    def clear(self) -> None:
        """Drop every registration (session end)."""
        with self._lock:
            self._executors.clear()

    def __len__(self) -> int:
        return len(self._executors)

    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        """Dispatch ``action``; unhandled types return ``context`` unchanged.

        Raises:
            Exception: whatever the executor raises
            TypeError: if the executor returns something other than a context
        """
        action_type = action.action_type or ""
        executor = self.find(action_type)
        if executor is None:
            report(
                self.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.UNHANDLED_ACTION_TYPE,
                f"No executor registered for action type '{action_type}'. "
                f"Available: {self.list_types()}",
                action_type=action_type,
            )
            return context

        logger.debug(f"Executing '{action_type}' with {type(executor).__name__}")
        result = await executor.execute(action, context, runtime)
        if not isinstance(result, EvaluationContext):
            raise TypeError(
                f"{type(executor).__name__} returned {type(result).__name__}, "
                f"expected EvaluationContext"
            )
        return result

    def discover_entry_points(self, group: str = "screenflow.executors") -> int:
        """Discover and register executors from entry points.

        Third-party packages declare executors in their pyproject.toml:

            [project.entry-points."screenflow.executors"]
            sms = "my_package.executors:SendSmsExecutor"

        Returns:
            Number of executor tags registered
        """
        from importlib.metadata import entry_points

        discovered = 0
        for entry_point in entry_points().select(group=group):
            try:
                executor_class = entry_point.load()
            except Exception as e:
                logger.warning(f"Skipping executor entry point '{entry_point.name}': {e}")
                continue

            if not (inspect.isclass(executor_class) and issubclass(executor_class, ActionExecutor)):
                logger.warning(
                    f"Entry point '{entry_point.name}' is not an ActionExecutor subclass"
                )
                continue

            discovered += self.register_executor(executor_class())

        return discovered


def create_default_registry(diagnostics: DiagnosticsSink | None = None) -> ExecutorRegistry:
    """Create an ExecutorRegistry with every built-in executor registered.

    Each session builds its own registry; nothing is shared process-wide.

    Example:
        registry = create_default_registry(diagnostics)
        registry.register("SHOW_TOAST", ToastExecutor())
    """
    from .executors_crud import CrudCreateExecutor, CrudUpdateExecutor
    from .executors_event import EventExecutor
    from .executors_fetch import FetchTransformerExecutor
    from .executors_navigation import NavigationExecutor

    registry = ExecutorRegistry(diagnostics)
    registry.register_executor(NavigationExecutor())
    registry.register_executor(CrudCreateExecutor())
    registry.register_executor(CrudUpdateExecutor())
    registry.register_executor(EventExecutor())
    registry.register_executor(FetchTransformerExecutor())
    return registry
