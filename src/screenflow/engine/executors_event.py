"""Event executor - publish a named event on the session's event bus."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import Field, model_validator

from .actions import ActionConfig
from .context import EvaluationContext
from .executor_base import ActionExecutor, ActionProperties
from .runtime import ActionRuntime

logger = logging.getLogger(__name__)


class EventProperties(ActionProperties):
    name: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _payload_from_data(cls, values: Any) -> Any:
        # "data" is accepted as an alias of "payload"
        if isinstance(values, dict) and values.get("payload") is None:
            values = {**values, "payload": values.get("data") or {}}
        return values


class EventExecutor(ActionExecutor):
    action_types = ("EVENT",)
    properties_type = EventProperties

    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        props: EventProperties = self.resolve_properties(action, context, runtime)
        await runtime.require_event_bus().emit(props.name, props.payload)
        runtime.ensure_alive(action.action_type)
        logger.debug(f"Emitted event '{props.name}'")
        return context
