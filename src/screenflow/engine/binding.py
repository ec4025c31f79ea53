"""
View-model binding: schema + context -> resolved, render-ready tree.

Binding resolves every templated value of a node (label, properties, widget
extras), decides visibility and expands repeated children. Rebinding after a
context change re-resolves only the nodes whose dependency set (computed at
schema load) intersects the changed paths; every other node is reused as is.

Visibility rules:
- bool: used directly
- template ("{{form.consent}}"): visible only if it resolves to true/"true"
- anything else: evaluated as a predicate ("age >= 18 && consent")

An invisible node is bound without children.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .conditions import ConditionEvaluator
from .context import ROOTS, EvaluationContext
from .schema import FieldSchema, ScreenSchema
from .template import MISS, TemplateResolver, has_placeholder

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundField:
    node_id: str
    key: str | None
    format: str | None
    label: Any
    visible: bool
    required: bool
    properties: dict[str, Any] = field(default_factory=dict)
    extras: dict[str, Any] = field(default_factory=dict)
    children: tuple[BoundField, ...] = ()
    items: tuple[tuple[BoundField, ...], ...] | None = None

    def walk(self) -> Iterator[BoundField]:
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.node_id,
            "key": self.key,
            "format": self.format,
            "label": self.label,
            "visible": self.visible,
            "required": self.required,
            "properties": self.properties,
            **self.extras,
        }
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        if self.items is not None:
            data["items"] = [[child.to_dict() for child in row] for row in self.items]
        return data


@dataclass(frozen=True)
class BoundScreen:
    name: str
    fields: tuple[BoundField, ...]

    def iter_fields(self) -> Iterator[BoundField]:
        for node in self.fields:
            yield from node.walk()

    def find(self, key: str) -> BoundField | None:
        return next((node for node in self.iter_fields() if node.key == key), None)

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "fields": [node.to_dict() for node in self.fields]}


@dataclass(frozen=True)
class RebindResult:
    screen: BoundScreen
    rebound: frozenset[str]
    changes: frozenset[str]


def changed_paths(old: EvaluationContext, new: EvaluationContext) -> set[str]:
    """
    Top-level paths that differ between two contexts.

    Mapping roots are compared key by key ("form.ageGroup"); other roots
    ("item", "listIndex") are compared whole.
    """
    changes: set[str] = set()
    old_ns, new_ns = old.namespaces(), new.namespaces()
    for root in ROOTS:
        before, after = old_ns.get(root), new_ns.get(root)
        if before == after:
            continue
        if isinstance(before, Mapping) and isinstance(after, Mapping):
            for key in set(before) | set(after):
                if before.get(key, MISS) != after.get(key, MISS):
                    changes.add(f"{root}.{key}")
        else:
            changes.add(root)
    return changes


def is_affected(dependencies: frozenset[str] | set[str], changes: set[str]) -> bool:
    """True when any dependency is, contains or lies under a changed path."""
    for dependency in dependencies:
        for change in changes:
            if (
                dependency == change
                or dependency.startswith(f"{change}.")
                or change.startswith(f"{dependency}.")
            ):
                return True
    return False


class ScreenBinder:
    """
    Binds screen schemas against evaluation contexts.

    Example:
        binder = ScreenBinder(resolver, evaluator)
        screen = binder.bind(schema, ctx)
        result = binder.rebind(schema, screen, ctx, ctx.with_form_data({"consent": True}))
        result.rebound   # node ids re-resolved, e.g. {"1"}
    """

    def __init__(self, resolver: TemplateResolver, evaluator: ConditionEvaluator):
        self.resolver = resolver
        self.evaluator = evaluator

    def bind(self, schema: ScreenSchema, ctx: EvaluationContext) -> BoundScreen:
        return BoundScreen(
            name=schema.name,
            fields=tuple(self.bind_field(node, ctx) for node in schema.fields),
        )

    def rebind(
        self,
        schema: ScreenSchema,
        previous: BoundScreen,
        old_ctx: EvaluationContext,
        new_ctx: EvaluationContext,
    ) -> RebindResult:
        """Re-resolve only the nodes affected by the change ``old_ctx -> new_ctx``."""
        changes = changed_paths(old_ctx, new_ctx)
        rebound: set[str] = set()

        if previous.name != schema.name or len(previous.fields) != len(schema.fields):
            # Not a binding of this schema; start over
            screen = self.bind(schema, new_ctx)
            rebound = {node.node_id for node in schema.fields}
        else:
            screen = BoundScreen(
                name=schema.name,
                fields=tuple(
                    self._rebind_field(node, prev, new_ctx, changes, rebound)
                    for node, prev in zip(schema.fields, previous.fields)
                ),
            )

        logger.debug(f"Rebound {len(rebound)} node(s) of '{schema.name}' for changes {changes}")
        return RebindResult(screen=screen, rebound=frozenset(rebound), changes=frozenset(changes))

    def is_visible(self, node: FieldSchema, ctx: EvaluationContext) -> bool:
        visible = node.visible
        if isinstance(visible, bool):
            return visible
        text = visible.strip()
        if not text:
            return True
        if has_placeholder(text):
            value = self.resolver.resolve(text, ctx)
            return value is True or value == "true"
        return self.evaluator.evaluate(text, ctx)

    def bind_field(self, node: FieldSchema, ctx: EvaluationContext) -> BoundField:
        visible = self.is_visible(node, ctx)
        resolved = self.resolver.resolve(node.bindable(), ctx)

        children: tuple[BoundField, ...] = ()
        items: tuple[tuple[BoundField, ...], ...] | None = None
        if visible and node.repeat:
            source = self.resolver.resolve(node.repeat, ctx)
            elements = source if isinstance(source, list) else []
            items = tuple(
                tuple(
                    self.bind_field(child, ctx.for_item(element, index)) for child in node.children
                )
                for index, element in enumerate(elements)
            )
        elif visible:
            children = tuple(self.bind_field(child, ctx) for child in node.children)

        return BoundField(
            node_id=node.node_id,
            key=node.key,
            format=node.format,
            label=resolved["label"],
            visible=visible,
            required=node.required,
            properties=resolved["properties"],
            extras=resolved["extras"],
            children=children,
            items=items,
        )

    def _rebind_field(
        self,
        node: FieldSchema,
        previous: BoundField,
        ctx: EvaluationContext,
        changes: set[str],
        rebound: set[str],
    ) -> BoundField:
        if previous.node_id != node.node_id or is_affected(node.dependencies, changes):
            rebound.add(node.node_id)
            return self.bind_field(node, ctx)
        if not previous.visible or node.repeat or len(previous.children) != len(node.children):
            return previous

        children = tuple(
            self._rebind_field(child, prev, ctx, changes, rebound)
            for child, prev in zip(node.children, previous.children)
        )
        if all(new is old for new, old in zip(children, previous.children)):
            return previous
        return replace(previous, children=children)
