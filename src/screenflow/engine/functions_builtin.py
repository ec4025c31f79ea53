"""Built-in template functions registered at session start.

Registered names:
- getTaskCompletionDate(doseIndex, cycleIndex?, format?)
- formatDate(value, format?)
- length(value)
- default(value, fallback)
- join(values, separator?)

Date patterns use the ICU/intl style found in existing schemas
(``dd MMM yyyy``, ``d/M/yy HH:mm``). A pattern containing ``%`` is passed to
``strftime`` unchanged.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime
from functools import partial
from typing import Any

from .context import ContextLike, namespaces_of
from .functions import FunctionRegistry

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "dd MMM yyyy"
TASKS_COLLECTION = "tasks"

# One run of a pattern letter, or a quoted literal
_PATTERN_TOKEN = re.compile(r"'[^']*'|([A-Za-z])\1*|[^A-Za-z']+")


def _format_token(token: str, moment: datetime) -> str:
    letter, width = token[0], len(token)
    if letter == "y":
        return f"{moment.year % 100:02d}" if width == 2 else f"{moment.year:0{width}d}"
    if letter == "M":
        if width >= 4:
            return moment.strftime("%B")
        if width == 3:
            return moment.strftime("%b")
        return f"{moment.month:0{width}d}"
    if letter == "d":
        return f"{moment.day:0{width}d}"
    if letter == "E":
        return moment.strftime("%A") if width >= 4 else moment.strftime("%a")
    if letter == "H":
        return f"{moment.hour:0{width}d}"
    if letter == "h":
        return f"{(moment.hour % 12) or 12:0{width}d}"
    if letter == "m":
        return f"{moment.minute:0{width}d}"
    if letter == "s":
        return f"{moment.second:0{width}d}"
    if letter == "a":
        return moment.strftime("%p")
    raise ValueError(f"Unsupported date pattern letter {letter!r}")


def format_datetime(moment: datetime, pattern: str) -> str:
    """Format ``moment`` with an ICU-style or strftime pattern.

    Raises:
        ValueError: on an unsupported pattern letter
    """
    if "%" in pattern:
        return moment.strftime(pattern)
    parts: list[str] = []
    for match in _PATTERN_TOKEN.finditer(pattern):
        token = match.group(0)
        if token.startswith("'"):
            parts.append(token[1:-1] or "'")
        elif token[0].isalpha():
            parts.append(_format_token(token, moment))
        else:
            parts.append(token)
    return "".join(parts)


def to_datetime(value: Any) -> datetime | None:
    """Epoch milliseconds (int or numeric string), ISO string, or date → aware datetime."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC) if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return to_datetime(int(text))
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _additional_field_values(record: Mapping[str, Any]) -> dict[str, Any]:
    """``additionalFields.fields`` (or a bare field list) as key -> value."""
    additional = record.get("additionalFields")
    if isinstance(additional, Mapping):
        fields = additional.get("fields")
    elif isinstance(additional, list):
        fields = additional
    else:
        return {}
    if not isinstance(fields, list):
        return {}
    return {
        field["key"]: field.get("value")
        for field in fields
        if isinstance(field, Mapping) and "key" in field
    }


def get_task_completion_date(
    args: Sequence[Any], ctx: ContextLike, *, default_format: str = DEFAULT_DATE_FORMAT
) -> str:
    """
    Completion date of the task recorded for a dose (and optionally a cycle).

    Args (positional):
        0: dose index to match (required, >= 0)
        1: cycle index to match (optional; negative or absent matches any cycle)
        2: date pattern (optional)

    Scans ``context.tasks`` for records whose ``additionalFields.fields`` carry
    matching ``doseIndex``/``cycleIndex`` values and formats
    ``clientAuditDetails.createdTime`` (epoch millis).

    Returns ``""`` when no record matches, when more than one record matches,
    or when the timestamp is missing or cannot be formatted.

    Example:
        {{fn:getTaskCompletionDate(item.doseIndex, navigation.cycle, 'dd/MM/yyyy')}}
    """
    if not args:
        return ""
    dose_index = _to_int(args[0])
    if dose_index is None or dose_index < 0:
        return ""
    cycle_index = _to_int(args[1]) if len(args) > 1 and args[1] not in (None, "") else None
    if cycle_index is not None and cycle_index < 0:
        cycle_index = None
    pattern = str(args[2]) if len(args) > 2 and args[2] not in (None, "") else default_format

    context = namespaces_of(ctx).get("context") or {}
    tasks = context.get(TASKS_COLLECTION) if isinstance(context, Mapping) else None
    if not isinstance(tasks, list):
        return ""

    matches = []
    for task in tasks:
        if not isinstance(task, Mapping):
            continue
        fields = _additional_field_values(task)
        if _to_int(fields.get("doseIndex")) != dose_index:
            continue
        if cycle_index is not None and _to_int(fields.get("cycleIndex")) != cycle_index:
            continue
        matches.append(task)

    if len(matches) != 1:
        if len(matches) > 1:
            logger.debug(
                f"getTaskCompletionDate: {len(matches)} tasks match dose={dose_index} "
                f"cycle={cycle_index}; refusing to pick one"
            )
        return ""

    audit = matches[0].get("clientAuditDetails")
    if not isinstance(audit, Mapping):
        return ""
    moment = to_datetime(_to_int(audit.get("createdTime")))
    if moment is None:
        return ""
    try:
        return format_datetime(moment, pattern)
    except ValueError as e:
        logger.debug(f"getTaskCompletionDate: cannot format with {pattern!r}: {e}")
        return ""


def format_date(
    args: Sequence[Any], ctx: ContextLike, *, default_format: str = DEFAULT_DATE_FORMAT
) -> str:
    if not args:
        return ""
    moment = to_datetime(args[0])
    if moment is None:
        return ""
    pattern = str(args[1]) if len(args) > 1 and args[1] else default_format
    try:
        return format_datetime(moment, pattern)
    except ValueError:
        return ""


def length(args: Sequence[Any], ctx: ContextLike) -> int:
    if not args or not isinstance(args[0], (str, list, tuple, Mapping)):
        return 0
    return len(args[0])


def default(args: Sequence[Any], ctx: ContextLike) -> Any:
    value = args[0] if args else None
    fallback = args[1] if len(args) > 1 else ""
    return fallback if value in (None, "") else value


def join(args: Sequence[Any], ctx: ContextLike) -> str:
    if not args or not isinstance(args[0], (list, tuple)):
        return ""
    separator = str(args[1]) if len(args) > 1 and args[1] is not None else ", "
    return separator.join("" if v is None else str(v) for v in args[0])


def register_builtin_functions(
    registry: FunctionRegistry, date_format: str = DEFAULT_DATE_FORMAT
) -> FunctionRegistry:
    """Register every built-in function on ``registry`` and return it."""
    registry.register(
        "getTaskCompletionDate", partial(get_task_completion_date, default_format=date_format)
    )
    registry.register("formatDate", partial(format_date, default_format=date_format))
    registry.register("length", length)
    registry.register("default", default)
    registry.register("join", join)
    return registry
