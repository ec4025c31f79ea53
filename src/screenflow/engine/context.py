"""
Evaluation context: the layered, read-only data view used for resolution.

Layers:
- raw_state: entity-type name -> ordered record list (CRUD snapshot)
- form_data: field id -> value (may nest)
- navigation_params: route parameters of the current screen
- data: values threaded through an action sequence (entities, fetch results)
- item / list_index: current list item while rendering a repeated child

The context is immutable per resolution pass. Executors never modify it in
place; they return a new instance built with the ``with_*`` helpers.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Root selectors understood by path expressions
ROOT_CONTEXT = "context"
ROOT_ITEM = "item"
ROOT_NAVIGATION = "navigation"
ROOT_FORM = "form"
ROOT_DATA = "data"
ROOT_LIST_INDEX = "listIndex"

ROOTS = frozenset(
    {ROOT_CONTEXT, ROOT_ITEM, ROOT_NAVIGATION, ROOT_FORM, ROOT_DATA, ROOT_LIST_INDEX}
)


class EvaluationContext(BaseModel):
    """
    Layered read-only data view for templates and predicates.

    Accepts camelCase keys when built from JSON (``rawState``, ``formData``,
    ``navigationParams``, ``listIndex``).

    Example:
        ctx = EvaluationContext(
            raw_state={"tasks": [{"id": "t1"}]},
            form_data={"ageGroup": "adult"},
        )
        ctx2 = ctx.with_data(entities=[...])   # ctx is unchanged
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    item: Any = None
    list_index: int | None = Field(default=None, alias="listIndex")
    raw_state: dict[str, list[Any]] = Field(default_factory=dict, alias="rawState")
    form_data: dict[str, Any] = Field(default_factory=dict, alias="formData")
    navigation_params: dict[str, Any] = Field(default_factory=dict, alias="navigationParams")
    data: dict[str, Any] = Field(default_factory=dict)

    def namespaces(self) -> dict[str, Any]:
        """Root selector -> value mapping used by path resolution.

        ``context`` is a merged view: raw state, then form data, then action
        data (later layers win on key clashes).
        """
        merged: dict[str, Any] = {}
        merged.update(self.raw_state)
        merged.update(self.form_data)
        merged.update(self.data)
        return {
            ROOT_CONTEXT: merged,
            ROOT_ITEM: self.item,
            ROOT_NAVIGATION: self.navigation_params,
            ROOT_FORM: self.form_data,
            ROOT_DATA: self.data,
            ROOT_LIST_INDEX: self.list_index,
        }

    def condition_data(self) -> dict[str, Any]:
        """Evaluation data for predicates: form data merged with navigation params.

        The current item, when present, is reachable under ``item.*``.
        """
        merged: dict[str, Any] = {}
        merged.update(self.form_data)
        merged.update(self.navigation_params)
        if isinstance(self.item, Mapping) and ROOT_ITEM not in merged:
            merged[ROOT_ITEM] = dict(self.item)
        return merged

    # ------------------------------------------------------------------
    # Copy-on-write helpers
    # ------------------------------------------------------------------

    def with_data(self, **updates: Any) -> EvaluationContext:
        """Return a new context with ``updates`` merged into ``data``."""
        return self.model_copy(update={"data": {**self.data, **updates}})

    def with_form_data(self, updates: Mapping[str, Any]) -> EvaluationContext:
        return self.model_copy(update={"form_data": {**self.form_data, **updates}})

    def with_navigation_params(self, params: Mapping[str, Any]) -> EvaluationContext:
        return self.model_copy(update={"navigation_params": dict(params)})

    def with_records(self, entity_type: str, records: list[Any]) -> EvaluationContext:
        """Return a new context with ``raw_state[entity_type]`` replaced."""
        return self.model_copy(update={"raw_state": {**self.raw_state, entity_type: list(records)}})

    def for_item(self, item: Any, list_index: int | None) -> EvaluationContext:
        """Context for rendering one element of a repeated child."""
        return self.model_copy(update={"item": item, "list_index": list_index})

    @classmethod
    def from_state(
        cls,
        raw_state: Mapping[str, list[Any]] | None = None,
        form_data: Mapping[str, Any] | None = None,
        navigation_params: Mapping[str, Any] | None = None,
        **kwargs: Any,
    ) -> EvaluationContext:
        """Build a fresh context from current page/session state."""
        return cls(
            raw_state=dict(raw_state or {}),
            form_data=dict(form_data or {}),
            navigation_params=dict(navigation_params or {}),
            **kwargs,
        )


ContextLike = EvaluationContext | Mapping[str, Any]


def namespaces_of(ctx: ContextLike) -> Mapping[str, Any]:
    """Namespaces for either an EvaluationContext or a plain root mapping.

    A plain mapping is taken as-is: its keys are the roots
    (``{"context": {...}, "item": {...}}``).
    """
    if isinstance(ctx, EvaluationContext):
        return ctx.namespaces()
    return ctx


__all__ = [
    "ROOTS",
    "ROOT_CONTEXT",
    "ROOT_ITEM",
    "ROOT_NAVIGATION",
    "ROOT_FORM",
    "ROOT_DATA",
    "ROOT_LIST_INDEX",
    "ContextLike",
    "EvaluationContext",
    "namespaces_of",
]
