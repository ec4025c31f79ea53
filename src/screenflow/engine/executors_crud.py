"""CRUD executors - hand entity batches from the context to the CRUD sink.

CREATE_EVENT and UPDATE_EVENT read ``data["entities"]`` (usually placed there
by an earlier action or by the form submit) and dispatch the valid ones.
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from .actions import ActionConfig
from .collaborators import Entity
from .context import EvaluationContext
from .diagnostics import DiagnosticCode, Severity, report
from .executor_base import COMPONENT, ActionExecutor
from .runtime import ActionRuntime

logger = logging.getLogger(__name__)

ENTITIES_KEY = "entities"


def coerce_entities(raw: Any) -> tuple[list[Entity], list[str]]:
    """
    Split ``raw`` into valid entities and rejection reasons.

    Accepts Entity instances and mappings that validate as Entity. A single
    entity (not wrapped in a list) is accepted too.
    """
    if raw is None:
        return [], ["no entities in context"]
    if isinstance(raw, (Entity, Mapping)):
        raw = [raw]
    if not isinstance(raw, list):
        return [], [f"entities must be a list, got {type(raw).__name__}"]

    entities: list[Entity] = []
    rejected: list[str] = []
    for index, entry in enumerate(raw):
        if isinstance(entry, Entity):
            entities.append(entry)
            continue
        if not isinstance(entry, Mapping):
            rejected.append(f"[{index}] not an entity: {type(entry).__name__}")
            continue
        try:
            entities.append(Entity.model_validate(entry))
        except ValidationError as e:
            rejected.append(f"[{index}] {e.errors()[0]['msg']}")
    return entities, rejected


class _CrudExecutor(ActionExecutor):
    operation = ""

    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        entities, rejected = coerce_entities(context.data.get(ENTITIES_KEY))
        if rejected:
            logger.debug(f"{action.action_type}: rejected entities {rejected}")

        if not entities:
            report(
                runtime.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.INVALID_ENTITIES,
                f"{action.action_type}: no valid entities to {self.operation}",
                action_type=action.action_type,
                rejected=rejected,
            )
            return context

        await self.dispatch(runtime, entities)
        runtime.ensure_alive(action.action_type)
        logger.info(f"{action.action_type}: {self.operation}d {len(entities)} entities")
        return context

    @abstractmethod
    async def dispatch(self, runtime: ActionRuntime, entities: list[Entity]) -> None:
        """Hand the validated batch to the matching CrudSink method."""


class CrudCreateExecutor(_CrudExecutor):
    """Dispatch ``data["entities"]`` to ``CrudSink.create``."""

    action_types = ("CREATE_EVENT",)
    operation = "create"

    async def dispatch(self, runtime: ActionRuntime, entities: list[Entity]) -> None:
        await runtime.require_crud().create(entities)


class CrudUpdateExecutor(_CrudExecutor):
    """Dispatch ``data["entities"]`` to ``CrudSink.update``."""

    action_types = ("UPDATE_EVENT",)
    operation = "update"

    async def dispatch(self, runtime: ActionRuntime, entities: list[Entity]) -> None:
        await runtime.require_crud().update(entities)
