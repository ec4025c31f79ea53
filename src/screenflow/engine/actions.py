"""
Typed action configuration parsed once at the JSON boundary.

JSON shape (camelCase, as authored in screen schemas):

    {
      "actionType": "NAVIGATION",
      "properties": {"name": "beneficiaryDetails", "data": [...]},
      "condition": {"expression": "ageGroup == 'adult'"},
      "actions": [ ...nested action configs... ]
    }

Parsing never raises. Entries that are not objects, or objects pydantic cannot
validate, become malformed placeholders: they keep their position in the list
(so conditional grouping is unaffected) and run as no-ops with a diagnostic.
Nested lists past the depth limit, and entries that contain themselves, are
cut off here so a hostile document cannot exhaust the interpreter stack.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

from .conditions import DEFAULT_PREDICATE

DEFAULT_MAX_DEPTH = 32

NESTING_DEPTH = "depth"
NESTING_CYCLIC = "cyclic"


class Predicate(BaseModel):
    """Boolean formula gating a conditional branch.

    A bare string is accepted in place of ``{"expression": ...}``. A predicate
    without an expression is the ``DEFAULT`` fallback.
    """

    model_config = ConfigDict(frozen=True)

    expression: str = DEFAULT_PREDICATE

    @property
    def is_default(self) -> bool:
        return self.expression.strip() == DEFAULT_PREDICATE


class ActionConfig(BaseModel):
    """One configured action."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    action_type: str | None = Field(default=None, alias="actionType")
    name: str | None = Field(default=None, alias="action", description="Optional action label")
    properties: dict[str, Any] = Field(default_factory=dict)
    condition: Predicate | None = None
    actions: list[ActionConfig] = Field(default_factory=list)
    malformed: str | None = Field(
        default=None,
        exclude=True,
        description="Why the raw entry could not be parsed (placeholder only)",
    )
    nesting: str | None = Field(
        default=None,
        exclude=True,
        description="Set when nested actions were cut off at parse time (depth or cyclic)",
    )

    @field_validator("condition", mode="before")
    @classmethod
    def _coerce_condition(cls, v: Any) -> Any:
        if isinstance(v, str):
            return {"expression": v}
        if isinstance(v, Mapping) and "expression" in v and v["expression"] is None:
            return {}
        return v

    @field_validator("properties", mode="before")
    @classmethod
    def _coerce_properties(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("actions", mode="before")
    @classmethod
    def _coerce_actions(cls, v: Any, info: ValidationInfo) -> Any:
        if v is None:
            return []
        if not isinstance(v, Sequence) or isinstance(v, (str, bytes)):
            raise ValueError(f"actions must be a list, got {type(v).__name__}")
        ctx = info.context or {}
        depth = ctx.get("depth", 0) + 1
        max_depth = ctx.get("max_depth", DEFAULT_MAX_DEPTH)
        if depth > max_depth:
            return [cls.nesting_placeholder(NESTING_DEPTH)]
        ancestors = ctx.get("ancestors", frozenset())
        return [
            parse_action(entry, max_depth, depth=depth, ancestors=ancestors) for entry in v
        ]

    @property
    def is_conditional(self) -> bool:
        return self.condition is not None

    @property
    def problem(self) -> str | None:
        """Reason this entry cannot execute as a direct action, if any."""
        if self.malformed:
            return self.malformed
        if self.nesting == NESTING_CYCLIC:
            return "cyclic action nesting"
        if self.nesting:
            return "action nesting exceeds depth limit"
        if not self.is_conditional and not (self.action_type and self.action_type.strip()):
            return "missing actionType"
        return None

    @property
    def label(self) -> str:
        return self.action_type or self.name or "<unknown>"

    def with_properties(self, **updates: Any) -> ActionConfig:
        """Return a copy with ``updates`` merged into ``properties``."""
        return self.model_copy(update={"properties": {**self.properties, **updates}})

    @classmethod
    def malformed_placeholder(cls, reason: str) -> ActionConfig:
        return cls(malformed=reason)

    @classmethod
    def nesting_placeholder(cls, kind: str) -> ActionConfig:
        return cls(nesting=kind)


def parse_action(
    raw: Any,
    max_depth: int = DEFAULT_MAX_DEPTH,
    *,
    depth: int = 0,
    ancestors: frozenset[int] = frozenset(),
) -> ActionConfig:
    """Parse one raw action entry; never raises.

    ``depth`` is the nesting level of the list holding ``raw``. Nested lists
    beyond ``max_depth`` and entries that contain themselves are cut off at
    the parse boundary and replaced by a nesting placeholder.
    """
    if isinstance(raw, ActionConfig):
        return raw
    if not isinstance(raw, Mapping):
        return ActionConfig.malformed_placeholder(
            f"action entry must be an object, got {type(raw).__name__}"
        )
    if id(raw) in ancestors:
        return ActionConfig.nesting_placeholder(NESTING_CYCLIC)
    context = {"depth": depth, "max_depth": max_depth, "ancestors": ancestors | {id(raw)}}
    try:
        return ActionConfig.model_validate(raw, context=context)
    except ValidationError as e:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()
        )
        return ActionConfig.malformed_placeholder(f"invalid action config: {errors}")


def parse_actions(raw: Any, max_depth: int = DEFAULT_MAX_DEPTH) -> list[ActionConfig]:
    """Parse an ordered action list (``None`` -> empty list)."""
    if raw is None:
        return []
    if not isinstance(raw, Sequence) or isinstance(raw, (str, bytes)):
        return [
            ActionConfig.malformed_placeholder(
                f"action list must be a list, got {type(raw).__name__}"
            )
        ]
    return [parse_action(entry, max_depth) for entry in raw]


__all__ = [
    "DEFAULT_MAX_DEPTH",
    "NESTING_CYCLIC",
    "NESTING_DEPTH",
    "ActionConfig",
    "Predicate",
    "parse_action",
    "parse_actions",
]
