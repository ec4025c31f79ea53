"""
Interfaces to the collaborators the runtime drives but does not own.

Protocols:
- Navigator: route name + resolved params
- CrudSink: typed entity batches for create/update
- EventBus: named event + payload
- FetchPipeline: query definition -> transformed result

In-memory implementations (used by tests, the CLI, and hosts without a real
backend):
- RecordingNavigator
- InMemoryEventBus
- EntityStore: a CrudSink that also serves as the per-session CRUD snapshot
  cache, with an explicit ``clear()``
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)


class Entity(BaseModel):
    """
    Domain record accepted by the CRUD executors.

    Only ``entityType`` is required; every other field is carried through.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    entity_type: str = Field(alias="entityType", min_length=1)
    id: str | None = None
    client_reference_id: str | None = Field(default=None, alias="clientReferenceId")

    @property
    def key(self) -> str | None:
        """Identity used to match records on update."""
        return self.client_reference_id or self.id

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


@runtime_checkable
class Navigator(Protocol):
    async def navigate(self, route: str, params: Mapping[str, Any]) -> None: ...


@runtime_checkable
class CrudSink(Protocol):
    async def create(self, entities: Sequence[Entity]) -> None: ...

    async def update(self, entities: Sequence[Entity]) -> None: ...


@runtime_checkable
class EventBus(Protocol):
    async def emit(self, name: str, payload: Mapping[str, Any]) -> None: ...


@runtime_checkable
class FetchPipeline(Protocol):
    async def fetch_and_transform(self, query: Mapping[str, Any]) -> Any: ...


# ============================================================================
# In-memory implementations
# ============================================================================


@dataclass
class NavigationRecord:
    route: str
    params: dict[str, Any]


class RecordingNavigator:
    """Navigator that records every navigation request."""

    def __init__(self) -> None:
        self.history: list[NavigationRecord] = []

    async def navigate(self, route: str, params: Mapping[str, Any]) -> None:
        logger.debug(f"Navigate to '{route}' with {dict(params)}")
        self.history.append(NavigationRecord(route=route, params=dict(params)))

    @property
    def current(self) -> NavigationRecord | None:
        return self.history[-1] if self.history else None


EventHandler = Callable[[str, Mapping[str, Any]], Awaitable[None] | None]


class InMemoryEventBus:
    """Event bus keeping emitted events and fanning them out to subscribers."""

    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []
        self._subscribers: dict[str, list[EventHandler]] = {}

    def subscribe(self, name: str, handler: EventHandler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    async def emit(self, name: str, payload: Mapping[str, Any]) -> None:
        self.events.append((name, dict(payload)))
        for handler in self._subscribers.get(name, []):
            result = handler(name, payload)
            if inspect.isawaitable(result):
                await result

    def clear(self) -> None:
        self.events.clear()
        self._subscribers.clear()


class EntityStore:
    """
    In-memory CRUD sink and per-session entity snapshot cache.

    ``snapshot()`` feeds ``EvaluationContext.raw_state``. ``clear()`` must be
    called at session end so one session's entities never leak into the next.
    """

    def __init__(self) -> None:
        self._records: dict[str, list[dict[str, Any]]] = {}

    async def create(self, entities: Sequence[Entity]) -> None:
        for entity in entities:
            self._records.setdefault(entity.entity_type, []).append(entity.to_record())
        logger.debug(f"EntityStore: created {len(entities)} entities")

    async def update(self, entities: Sequence[Entity]) -> None:
        updated = 0
        for entity in entities:
            records = self._records.setdefault(entity.entity_type, [])
            for index, record in enumerate(records):
                if entity.key is not None and entity.key in (
                    record.get("clientReferenceId"),
                    record.get("id"),
                ):
                    records[index] = {**record, **entity.to_record()}
                    updated += 1
                    break
            else:
                logger.warning(
                    f"EntityStore: no {entity.entity_type} record with key {entity.key!r} to update"
                )
        logger.debug(f"EntityStore: updated {updated}/{len(entities)} entities")

    def records(self, entity_type: str) -> list[dict[str, Any]]:
        return [dict(record) for record in self._records.get(entity_type, [])]

    def snapshot(self) -> dict[str, list[dict[str, Any]]]:
        return {name: self.records(name) for name in self._records}

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return sum(len(records) for records in self._records.values())
