"""
Template resolution for ``{{...}}`` placeholders in schema configuration.

Placeholder forms:
- {{context.tasks.0.id}}            - dotted path from a root selector
- {{item.name}}                     - current list item
- {{navigation.beneficiaryId}}      - route parameters
- {{form.ageGroup}} / {{data.x}}    - form data / action data only
- {{name}}                          - no root: looked up in item, then context
- {{fn:name(arg, 'text', 3, a.b)}}  - registered function call; arguments are
                                      literals, quoted strings, paths or nested
                                      fn: calls, each resolved before the call

Rules:
- A string that is exactly one placeholder resolves to the native value
  (number, bool, dict, list keep their type).
- A string with surrounding text stringifies every placeholder independently.
- Misses (absent key, out-of-range index, unknown function) resolve to ``None``,
  which stringifies to ``""``. Resolution never raises.
- Values are returned raw. Escaping for markup is the renderer's job.

The scanner tracks quotes and parentheses so ``}}``, commas or nested calls
inside function arguments do not end or split the placeholder.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from functools import lru_cache
from typing import Any

from pydantic import BaseModel

from .context import ROOT_CONTEXT, ROOT_ITEM, ROOTS, ContextLike, namespaces_of
from .diagnostics import DiagnosticCode, DiagnosticsSink, LoggingDiagnosticsSink, Severity, report
from .functions import FunctionRegistry

logger = logging.getLogger(__name__)

COMPONENT = "template"
FUNCTION_PREFIX = "fn:"
OPEN = "{{"
CLOSE = "}}"

_NUMBER_PATTERN = re.compile(r"^-?\d+(\.\d+)?$")
_FUNCTION_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_KEYWORD_LITERALS: dict[str, Any] = {"true": True, "false": False, "null": None}


class _Miss:
    """Sentinel for a path segment that could not be resolved."""

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


# ============================================================================
# Parsed expression nodes
# ============================================================================


@dataclass(frozen=True)
class Placeholder:
    """A ``{{...}}`` occurrence inside a string."""

    expression: str
    start: int
    end: int


@dataclass(frozen=True)
class LiteralExpr:
    value: Any


@dataclass(frozen=True)
class PathExpr:
    segments: tuple[str, ...]

    @property
    def dotted(self) -> str:
        return ".".join(self.segments)


@dataclass(frozen=True)
class CallExpr:
    name: str
    args: tuple[LiteralExpr | PathExpr | CallExpr, ...]


Expr = LiteralExpr | PathExpr | CallExpr


# ============================================================================
# Scanning and parsing
# ============================================================================


def _skip_quoted(text: str, i: int) -> int:
    """Return index just past the quoted string starting at ``text[i]``.

    Returns ``len(text)`` when the quote is never closed.
    """
    quote = text[i]
    i += 1
    while i < len(text):
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == quote:
            return i + 1
        i += 1
    return len(text)


def scan_placeholders(text: str) -> list[Placeholder]:
    """
    Find every balanced ``{{...}}`` placeholder in ``text``.

    An opening ``{{`` without a matching close at depth zero is literal text.

    Example:
        >>> [p.expression for p in scan_placeholders("a {{x}} b {{fn:f('}}', 1)}}")]
        ['x', "fn:f('}}', 1)"]
    """
    placeholders: list[Placeholder] = []
    i = 0
    while True:
        start = text.find(OPEN, i)
        if start < 0:
            return placeholders

        j = start + len(OPEN)
        depth = 0
        end = -1
        while j < len(text):
            char = text[j]
            if char in ("'", '"'):
                j = _skip_quoted(text, j)
                continue
            if char == "(":
                depth += 1
            elif char == ")" and depth > 0:
                depth -= 1
            elif depth == 0 and text.startswith(CLOSE, j):
                end = j
                break
            j += 1

        if end < 0:
            # Unterminated: treat this "{{" as text and keep scanning after it
            i = start + len(OPEN)
            continue

        placeholders.append(
            Placeholder(
                expression=text[start + len(OPEN) : end].strip(),
                start=start,
                end=end + len(CLOSE),
            )
        )
        i = end + len(CLOSE)


def has_placeholder(value: Any) -> bool:
    """True if ``value`` is a string containing at least one placeholder."""
    return isinstance(value, str) and bool(scan_placeholders(value))


def split_arguments(text: str) -> list[str]:
    """Split a function argument list on top-level commas."""
    args: list[str] = []
    depth = 0
    current_start = 0
    i = 0
    while i < len(text):
        char = text[i]
        if char in ("'", '"'):
            i = _skip_quoted(text, i)
            continue
        if char == "(":
            depth += 1
        elif char == ")" and depth > 0:
            depth -= 1
        elif char == "," and depth == 0:
            args.append(text[current_start:i].strip())
            current_start = i + 1
        i += 1
    tail = text[current_start:].strip()
    if tail or args:
        args.append(tail)
    return args


def parse_path(text: str) -> tuple[str, ...]:
    """
    Split a path into segments.

    Dot notation plus bracket notation for keys with dots or spaces:
    - "context.tasks.0.id"        -> ("context", "tasks", "0", "id")
    - 'item["first name"]'        -> ("item", "first name")
    - "context.tasks[1]"          -> ("context", "tasks", "1")

    Raises:
        ValueError: on an unclosed or unquoted bracket
    """
    segments: list[str] = []
    current = ""
    i = 0
    text = text.strip()
    while i < len(text):
        char = text[i]
        if char == ".":
            if current:
                segments.append(current)
                current = ""
            i += 1
        elif char == "[":
            if current:
                segments.append(current)
                current = ""
            close = text.find("]", i)
            if close < 0:
                raise ValueError(f"Unclosed bracket in path: {text!r}")
            inner = text[i + 1 : close].strip()
            if len(inner) >= 2 and inner[0] == inner[-1] and inner[0] in ("'", '"'):
                segments.append(inner[1:-1])
            elif inner.isdigit():
                segments.append(inner)
            else:
                raise ValueError(f"Invalid bracket segment {inner!r} in path: {text!r}")
            i = close + 1
        else:
            current += char
            i += 1
    if current:
        segments.append(current)
    return tuple(segments)


def _unquote(text: str) -> str:
    body = text[1:-1]
    return re.sub(r"\\(.)", r"\1", body)


def _parse_argument(text: str) -> Expr:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"'):
        return LiteralExpr(_unquote(text))
    if _NUMBER_PATTERN.match(text):
        return LiteralExpr(float(text) if "." in text else int(text))
    if text in _KEYWORD_LITERALS:
        return LiteralExpr(_KEYWORD_LITERALS[text])
    return _parse(text)


def _parse(text: str) -> Expr:
    text = text.strip()
    if not text:
        raise ValueError("Empty expression")

    if text.startswith(FUNCTION_PREFIX):
        body = text[len(FUNCTION_PREFIX) :].strip()
        open_paren = body.find("(")
        if open_paren < 0:
            # Bare fn:name is a call with no arguments
            name, arg_text = body, ""
        else:
            if not body.endswith(")"):
                raise ValueError(f"Unbalanced function call: {text!r}")
            name = body[:open_paren].strip()
            arg_text = body[open_paren + 1 : -1]
        if not _FUNCTION_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid function name {name!r}")
        args = tuple(_parse_argument(arg) for arg in split_arguments(arg_text))
        return CallExpr(name=name, args=args)

    segments = parse_path(text)
    if not segments:
        raise ValueError(f"Empty path: {text!r}")
    return PathExpr(segments)


@lru_cache(maxsize=2048)
def parse_expression(text: str) -> Expr:
    """Parse the inside of a placeholder. Cached: expressions repeat per render.

    Raises:
        ValueError: if the expression is malformed
    """
    return _parse(text)


# ============================================================================
# Value access and formatting
# ============================================================================


def _as_mapping(value: Any) -> Mapping[str, Any] | None:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, BaseModel):
        dumped = value.model_dump()
        dumped.update(value.model_dump(by_alias=True))
        return dumped
    return None


def walk_path(value: Any, segments: Sequence[str]) -> Any:
    """
    Walk ``segments`` from ``value``.

    Only literal mapping keys and non-negative numeric list indices are valid
    accessors. Returns ``MISS`` on the first failing segment.
    """
    current = value
    for segment in segments:
        if current is None:
            return MISS
        mapping = _as_mapping(current)
        if mapping is not None:
            if segment not in mapping:
                return MISS
            current = mapping[segment]
        elif isinstance(current, (list, tuple)):
            if not segment.isdigit():
                return MISS
            index = int(segment)
            if index >= len(current):
                return MISS
            current = current[index]
        else:
            return MISS
    return current


def stringify(value: Any) -> str:
    """Format a resolved value for substitution into surrounding text."""
    if value is None or value is MISS:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    if isinstance(value, (Mapping, list, tuple)):
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError):
            return str(value)
    return str(value)


# ============================================================================
# Resolver
# ============================================================================


class TemplateResolver:
    """
    Substitute placeholders in strings, dicts and lists.

    Example:
        resolver = TemplateResolver(functions)
        resolver.resolve("{{context.count}}", ctx)             # 3 (int)
        resolver.resolve("Total: {{context.count}}", ctx)      # "Total: 3"
        resolver.resolve({"label": "{{item.name}}"}, ctx)      # {"label": "Asha"}
        resolver.resolve("{{context.missing}}", ctx)           # ""
    """

    def __init__(
        self,
        functions: FunctionRegistry | None = None,
        diagnostics: DiagnosticsSink | None = None,
    ):
        self.diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()
        self.functions = functions if functions is not None else FunctionRegistry(self.diagnostics)

    def resolve(self, raw: Any, ctx: ContextLike) -> Any:
        """Resolve every string leaf of ``raw`` against ``ctx``."""
        if isinstance(raw, str):
            return self.resolve_string(raw, ctx)
        if isinstance(raw, Mapping):
            return {key: self.resolve(value, ctx) for key, value in raw.items()}
        if isinstance(raw, list):
            return [self.resolve(item, ctx) for item in raw]
        if isinstance(raw, tuple):
            return tuple(self.resolve(item, ctx) for item in raw)
        return raw

    def resolve_string(self, text: str, ctx: ContextLike) -> Any:
        placeholders = scan_placeholders(text)
        if not placeholders:
            return text

        if len(placeholders) == 1:
            only = placeholders[0]
            if only.start == 0 and only.end == len(text):
                value = self.evaluate(only.expression, ctx)
                return "" if value is None else value

        parts: list[str] = []
        cursor = 0
        for placeholder in placeholders:
            parts.append(text[cursor : placeholder.start])
            parts.append(stringify(self.evaluate(placeholder.expression, ctx)))
            cursor = placeholder.end
        parts.append(text[cursor:])
        return "".join(parts)

    def evaluate(self, expression: str, ctx: ContextLike) -> Any:
        """Evaluate the inside of one placeholder; ``None`` on any miss."""
        try:
            parsed = parse_expression(expression)
        except ValueError as e:
            report(
                self.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.RESOLUTION_MISS,
                f"Malformed expression '{{{{{expression}}}}}': {e}",
                expression=expression,
            )
            return None
        value = self._evaluate_node(parsed, ctx)
        return None if value is MISS else value

    def _evaluate_node(self, node: Expr, ctx: ContextLike) -> Any:
        if isinstance(node, LiteralExpr):
            return node.value
        if isinstance(node, CallExpr):
            args = []
            for arg in node.args:
                value = self._evaluate_node(arg, ctx)
                args.append(None if value is MISS else value)
            return self.functions.call(node.name, args, ctx)
        return self._lookup(node, ctx)

    def _lookup(self, node: PathExpr, ctx: ContextLike) -> Any:
        namespaces = namespaces_of(ctx)
        head, *rest = node.segments

        if head in namespaces:
            value = walk_path(namespaces[head], rest)
        else:
            # No root selector: current item first, then the merged context
            value = walk_path(namespaces.get(ROOT_ITEM), node.segments)
            if value is MISS:
                value = walk_path(namespaces.get(ROOT_CONTEXT), node.segments)

        if value is MISS:
            report(
                self.diagnostics,
                Severity.DEBUG,
                COMPONENT,
                DiagnosticCode.RESOLUTION_MISS,
                f"Path '{node.dotted}' not found",
                path=node.dotted,
            )
        return value


# ============================================================================
# Dependency discovery
# ============================================================================


def _references_of(node: Expr, found: set[str]) -> None:
    if isinstance(node, PathExpr):
        found.add(node.dotted)
        if node.segments[0] not in ROOTS:
            # Rootless paths read item first, then context
            found.add(f"{ROOT_ITEM}.{node.dotted}")
            found.add(f"{ROOT_CONTEXT}.{node.dotted}")
    elif isinstance(node, CallExpr):
        # Functions receive the whole context
        found.add(ROOT_CONTEXT)
        for arg in node.args:
            _references_of(arg, found)


def find_references(raw: Any) -> set[str]:
    """
    Collect the dotted paths that resolving ``raw`` would read.

    Malformed expressions contribute nothing.

    Example:
        >>> sorted(find_references({"label": "Hi {{item.name}}"}))
        ['item.name']
    """
    found: set[str] = set()
    if isinstance(raw, str):
        for placeholder in scan_placeholders(raw):
            try:
                _references_of(parse_expression(placeholder.expression), found)
            except ValueError:
                continue
    elif isinstance(raw, Mapping):
        for value in raw.values():
            found |= find_references(value)
    elif isinstance(raw, (list, tuple)):
        for value in raw:
            found |= find_references(value)
    return found
