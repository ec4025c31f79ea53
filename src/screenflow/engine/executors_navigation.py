"""Navigation executor - move to another screen with resolved route params."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import Field, field_validator

from .actions import ActionConfig
from .context import EvaluationContext
from .executor_base import ActionExecutor, ActionProperties
from .runtime import ActionRuntime

logger = logging.getLogger(__name__)


def params_from_pairs(data: Any) -> dict[str, Any]:
    """
    Normalize navigation params.

    Accepts either a mapping or the list form authored in schemas:

        [{"key": "beneficiaryId", "value": "{{item.id}}"}, ...]

    Entries without a ``key`` are skipped.
    """
    if data is None:
        return {}
    if isinstance(data, Mapping):
        return dict(data)
    if isinstance(data, list):
        params: dict[str, Any] = {}
        for entry in data:
            if isinstance(entry, Mapping) and entry.get("key"):
                params[str(entry["key"])] = entry.get("value")
            else:
                logger.debug(f"Skipping navigation param entry without key: {entry!r}")
        return params
    raise ValueError(f"navigation data must be a list or object, got {type(data).__name__}")


class NavigationProperties(ActionProperties):
    """Resolved properties of a NAVIGATION action."""

    name: str = Field(min_length=1, description="Route name")
    data: Any = Field(default=None, description="Key/value list or mapping of params")
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _coerce_params(cls, v: Any) -> Any:
        return {} if v is None else v

    def route_params(self) -> dict[str, Any]:
        return {**params_from_pairs(self.data), **self.params}


class NavigationExecutor(ActionExecutor):
    """Resolve ``name`` and params, then ask the navigator to move there.

    The new screen's params are also recorded as the context's navigation
    params so later actions in the same sequence see them.
    """

    action_types = ("NAVIGATION",)
    properties_type = NavigationProperties

    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        props: NavigationProperties = self.resolve_properties(action, context, runtime)
        navigator = runtime.require_navigator()
        params = props.route_params()

        await navigator.navigate(props.name, params)
        runtime.ensure_alive(action.action_type)

        logger.info(f"Navigated to '{props.name}'")
        return context.with_navigation_params(params)
