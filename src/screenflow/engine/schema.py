"""
Screen schema models.

A screen is a tree of field/widget nodes:

    name: household-details
    onLoad:
      - actionType: FETCH_TRANSFORMER
        properties: {query: {url: /households}, resultKey: households}
    fields:
      - key: ageGroup
        format: dropdown
        label: "{{fn:default(item.label, 'Age group')}}"
        visible: "consent == true"
        onChange:
          - condition: {expression: "ageGroup == 'adult'"}
            actions: [{actionType: NAVIGATION, properties: {name: adultForm}}]
      - format: card
        repeat: "{{context.households}}"
        children:
          - {format: text, label: "{{item.name}} ({{listIndex}})"}

Widget-specific keys (``displayKey``, ``type``...) are kept as extras and
resolved like ``properties``.

Each node's dependency set (the dotted paths its bound values read) is
computed once at load; binding uses it to re-resolve only affected nodes.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from .actions import ActionConfig, parse_actions
from .conditions import compile_predicate
from .context import ROOT_CONTEXT, ROOT_FORM, ROOT_ITEM, ROOT_NAVIGATION
from .exceptions import PredicateParseError
from .load_result import LoadResult
from .template import find_references, has_placeholder


def predicate_references(expression: str) -> set[str]:
    """Dotted paths a predicate reads, expressed against context roots.

    Predicates see form data merged with navigation params (plus ``item.*``),
    so each identifier depends on both roots. Unparseable predicates read
    nothing.
    """
    try:
        compiled = compile_predicate(expression)
    except PredicateParseError:
        return set()

    found: set[str] = set()
    for path in compiled.variables.values():
        if path == ROOT_ITEM or path.startswith(f"{ROOT_ITEM}."):
            found.add(path)
        else:
            found.add(f"{ROOT_FORM}.{path}")
            found.add(f"{ROOT_NAVIGATION}.{path}")
    if compiled.functions:
        found.add(ROOT_CONTEXT)
    return found


class FieldSchema(BaseModel):
    """One field/widget node."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    key: str | None = Field(default=None, validation_alias=AliasChoices("key", "fieldName"))
    format: str | None = None
    label: Any = None
    visible: bool | str = True
    required: bool = False
    repeat: str | None = Field(
        default=None, description="Template yielding a list; children bind once per element"
    )
    properties: dict[str, Any] = Field(default_factory=dict)
    on_action: list[ActionConfig] = Field(default_factory=list, alias="onAction")
    on_change: list[ActionConfig] = Field(default_factory=list, alias="onChange")
    children: list[FieldSchema] = Field(default_factory=list)

    _node_id: str = PrivateAttr(default="")
    _dependencies: frozenset[str] = PrivateAttr(default_factory=frozenset)

    @field_validator("on_action", "on_change", mode="before")
    @classmethod
    def _parse_action_lists(cls, v: Any) -> Any:
        return parse_actions(v)

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("children", mode="before")
    @classmethod
    def _coerce_children(cls, v: Any) -> Any:
        return [] if v is None else v

    @property
    def node_id(self) -> str:
        """Position of the node in its screen ("0", "0.2", ...)."""
        return self._node_id

    @property
    def dependencies(self) -> frozenset[str]:
        return self._dependencies

    @property
    def extras(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    def bindable(self) -> dict[str, Any]:
        """Values resolved by the template resolver when the node is bound."""
        return {"label": self.label, "properties": self.properties, "extras": self.extras}

    def compute_dependencies(self) -> frozenset[str]:
        found = find_references(self.bindable())
        if isinstance(self.visible, str):
            if has_placeholder(self.visible):
                found |= find_references(self.visible)
            else:
                found |= predicate_references(self.visible)
        if self.repeat:
            found |= find_references(self.repeat)
            # Repeated children are rebound together with their parent
            for child in self.walk():
                if child is not self:
                    found |= find_references(child.bindable())
                    if isinstance(child.visible, str):
                        found |= find_references(child.visible) | predicate_references(
                            child.visible
                        )
        return frozenset(found)

    def walk(self) -> Iterator[FieldSchema]:
        """This node and all descendants, depth-first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def _index(self, node_id: str) -> None:
        self._node_id = node_id
        for position, child in enumerate(self.children):
            child._index(f"{node_id}.{position}")
        self._dependencies = self.compute_dependencies()


class ScreenSchema(BaseModel):
    """A screen: named tree of fields plus screen-level action lists."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str = Field(min_length=1, validation_alias=AliasChoices("name", "screenName"))
    description: str | None = None
    fields: list[FieldSchema] = Field(
        default_factory=list, validation_alias=AliasChoices("fields", "body", "children")
    )
    on_load: list[ActionConfig] = Field(
        default_factory=list, validation_alias=AliasChoices("onLoad", "on_load", "initActions")
    )
    on_submit: list[ActionConfig] = Field(
        default_factory=list, validation_alias=AliasChoices("onSubmit", "on_submit")
    )

    @field_validator("on_load", "on_submit", mode="before")
    @classmethod
    def _parse_action_lists(cls, v: Any) -> Any:
        return parse_actions(v)

    def model_post_init(self, __context: Any) -> None:
        for position, node in enumerate(self.fields):
            node._index(str(position))

    def iter_fields(self) -> Iterator[FieldSchema]:
        for node in self.fields:
            yield from node.walk()

    def field(self, key: str) -> FieldSchema | None:
        """First node with ``key``, depth-first."""
        return next((node for node in self.iter_fields() if node.key == key), None)

    def dependency_index(self) -> dict[str, frozenset[str]]:
        """node_id -> dependency set for every node."""
        return {node.node_id: node.dependencies for node in self.iter_fields()}

    @staticmethod
    def validate_dict(data: dict[str, Any]) -> LoadResult[ScreenSchema]:
        """Validate a parsed schema document.

        Returns:
            LoadResult.success(ScreenSchema) or LoadResult.failure(message)
        """
        try:
            return LoadResult.success(ScreenSchema.model_validate(data))
        except Exception as e:
            return LoadResult.failure(f"Screen schema validation failed:\n{e}")
