"""
Runtime handle injected into executors.

Executors are stateless and shared by every dispatch in a session; everything
they need beyond the action and the context comes through this object:
- template resolver (for templated action properties)
- diagnostics sink
- external collaborators (navigator, CRUD sink, event bus, fetch pipeline)
- liveness of the owning screen/session
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from .exceptions import OwnerDisposedError

if TYPE_CHECKING:
    from .collaborators import CrudSink, EventBus, FetchPipeline, Navigator
    from .diagnostics import DiagnosticsSink
    from .template import TemplateResolver


def _always_alive() -> bool:
    return True


class ActionRuntime:
    """
    Dependencies for action execution.

    Immutable after creation. A runtime without a given collaborator is
    valid; executors that need it fail with a clear error, which the
    orchestrator reports as an executor failure.
    """

    def __init__(
        self,
        resolver: TemplateResolver,
        diagnostics: DiagnosticsSink,
        navigator: Navigator | None = None,
        crud: CrudSink | None = None,
        event_bus: EventBus | None = None,
        fetch_pipeline: FetchPipeline | None = None,
        liveness: Callable[[], bool] | None = None,
    ):
        self.resolver = resolver
        self.diagnostics = diagnostics
        self.navigator = navigator
        self.crud = crud
        self.event_bus = event_bus
        self.fetch_pipeline = fetch_pipeline
        self._liveness = liveness or _always_alive

    def is_alive(self) -> bool:
        """True while the owning screen/session still exists."""
        return self._liveness()

    def ensure_alive(self, action_type: str | None = None) -> None:
        """
        Check liveness after a suspension point.

        Raises:
            OwnerDisposedError: if the owner was torn down meanwhile
        """
        if not self._liveness():
            raise OwnerDisposedError(action_type)

    def require_navigator(self) -> Navigator:
        if self.navigator is None:
            raise RuntimeError("No navigator configured for this session")
        return self.navigator

    def require_crud(self) -> CrudSink:
        if self.crud is None:
            raise RuntimeError("No CRUD sink configured for this session")
        return self.crud

    def require_event_bus(self) -> EventBus:
        if self.event_bus is None:
            raise RuntimeError("No event bus configured for this session")
        return self.event_bus

    def require_fetch_pipeline(self) -> FetchPipeline:
        if self.fetch_pipeline is None:
            raise RuntimeError("No fetch pipeline configured for this session")
        return self.fetch_pipeline


__all__ = ["ActionRuntime"]
