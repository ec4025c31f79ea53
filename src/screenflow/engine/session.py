"""
Session: owner of every registry, cache and collaborator for one screen flow.

Nothing in the runtime is process-global. A Session builds its own function
registry, executor registry, resolver, evaluator, orchestrator, entity store
and schema cache, and tears all of them down on ``close()``.

Deferred dispatch (e.g. actions fired by a widget callback) goes through
``dispatch()``, which returns an ``asyncio.Task`` owned by the session: it is
either awaited by the caller or cancelled when the session closes, never
left running detached. After close, executors that resume from an await see
the session as dead and drop their result.

Example:
    async with Session(diagnostics=CollectingDiagnosticsSink()) as session:
        ctx = session.context(form_data={"ageGroup": "adult"})
        final = await session.execute_actions(schema.on_submit, ctx)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from ..config import RuntimeSettings
from .actions import ActionConfig
from .binding import BoundScreen, RebindResult, ScreenBinder
from .collaborators import (
    CrudSink,
    EntityStore,
    EventBus,
    FetchPipeline,
    InMemoryEventBus,
    Navigator,
    RecordingNavigator,
)
from .conditions import ConditionEvaluator
from .context import ContextLike, EvaluationContext
from .diagnostics import DiagnosticsSink, LoggingDiagnosticsSink
from .exceptions import OwnerDisposedError
from .executor_base import ActionExecutor, ExecutorRegistry, create_default_registry
from .functions import FunctionRegistry, TemplateFunction
from .functions_builtin import register_builtin_functions
from .load_result import LoadResult
from .loader import SchemaCache
from .orchestrator import ActionOrchestrator
from .runtime import ActionRuntime
from .schema import ScreenSchema
from .template import TemplateResolver

logger = logging.getLogger(__name__)

ActionList = Sequence[ActionConfig | Mapping[str, Any]]


class Session:
    """One screen-flow session and everything it owns."""

    def __init__(
        self,
        settings: RuntimeSettings | None = None,
        diagnostics: DiagnosticsSink | None = None,
        navigator: Navigator | None = None,
        crud: CrudSink | None = None,
        event_bus: EventBus | None = None,
        fetch_pipeline: FetchPipeline | None = None,
        discover_plugins: bool = False,
    ):
        self.settings = settings or RuntimeSettings.from_env()
        self.diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()

        self.functions = FunctionRegistry(self.diagnostics)
        register_builtin_functions(self.functions, date_format=self.settings.date_format)
        self.resolver = TemplateResolver(self.functions, self.diagnostics)
        self.evaluator = ConditionEvaluator(self.functions, self.diagnostics)

        self.executors: ExecutorRegistry = create_default_registry(self.diagnostics)
        if discover_plugins:
            count = self.executors.discover_entry_points()
            logger.info(f"Discovered {count} plugin executor tag(s)")

        self.entity_store = EntityStore()
        self.schemas = SchemaCache()
        self.navigator = navigator if navigator is not None else RecordingNavigator()
        self.event_bus = event_bus if event_bus is not None else InMemoryEventBus()
        self.crud = crud if crud is not None else self.entity_store

        self.runtime = ActionRuntime(
            resolver=self.resolver,
            diagnostics=self.diagnostics,
            navigator=self.navigator,
            crud=self.crud,
            event_bus=self.event_bus,
            fetch_pipeline=fetch_pipeline,
            liveness=self.is_alive,
        )
        self.orchestrator = ActionOrchestrator(
            self.executors,
            self.evaluator,
            self.runtime,
            max_depth=self.settings.max_action_depth,
        )
        self.binder = ScreenBinder(self.resolver, self.evaluator)

        self._alive = True
        self._tasks: set[asyncio.Task[EvaluationContext]] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def is_alive(self) -> bool:
        return self._alive

    @property
    def pending(self) -> int:
        """Number of dispatch tasks still running."""
        return sum(1 for task in self._tasks if not task.done())

    async def close(self) -> None:
        """Mark the session dead, cancel in-flight dispatches and clear caches."""
        if not self._alive:
            return
        self._alive = False

        tasks = [task for task in self._tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} in-flight dispatch(es)")

        self.clear()

    def clear(self) -> None:
        """Drop every registration and cached value owned by this session."""
        self._tasks.clear()
        self.functions.clear()
        self.executors.clear()
        self.entity_store.clear()
        self.schemas.clear()
        if isinstance(self.event_bus, InMemoryEventBus):
            self.event_bus.clear()

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_executor(self, action_type: str, executor: ActionExecutor) -> bool:
        return self.executors.register(action_type, executor)

    def register_function(self, name: str, fn: TemplateFunction) -> None:
        self.functions.register(name, fn)

    # ------------------------------------------------------------------
    # Resolution and execution
    # ------------------------------------------------------------------

    def context(
        self,
        form_data: Mapping[str, Any] | None = None,
        navigation_params: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> EvaluationContext:
        """Fresh context over the session's current entity snapshot."""
        return EvaluationContext.from_state(
            raw_state=self.entity_store.snapshot(),
            form_data=form_data,
            navigation_params=navigation_params,
            **kwargs,
        )

    def resolve_template(self, raw: Any, ctx: ContextLike) -> Any:
        return self.resolver.resolve(raw, ctx)

    def evaluate_condition(self, expression: str, ctx: ContextLike) -> bool:
        return self.evaluator.evaluate(expression, ctx)

    async def execute_actions(
        self, actions: ActionList | None, ctx: EvaluationContext | Mapping[str, Any] | None = None
    ) -> EvaluationContext:
        if not self._alive:
            raise OwnerDisposedError()
        return await self.orchestrator.execute_actions(actions, ctx)

    def dispatch(
        self, actions: ActionList | None, ctx: EvaluationContext | Mapping[str, Any] | None = None
    ) -> asyncio.Task[EvaluationContext]:
        """
        Schedule ``actions`` on the running loop and return the owned task.

        Raises:
            OwnerDisposedError: if the session is already closed
            RuntimeError: if no event loop is running
        """
        if not self._alive:
            raise OwnerDisposedError()
        task = asyncio.get_running_loop().create_task(
            self.orchestrator.execute_actions(actions, ctx)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def load_schema(self, path: str | Path) -> LoadResult[ScreenSchema]:
        return self.schemas.get(path)

    def bind(self, schema: ScreenSchema, ctx: EvaluationContext) -> BoundScreen:
        return self.binder.bind(schema, ctx)

    def rebind(
        self,
        schema: ScreenSchema,
        previous: BoundScreen,
        old_ctx: EvaluationContext,
        new_ctx: EvaluationContext,
    ) -> RebindResult:
        return self.binder.rebind(schema, previous, old_ctx, new_ctx)
