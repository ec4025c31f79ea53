"""
Function registry for ``{{fn:name(args)}}`` template calls.

Functions are registered once during session setup and read thereafter.
Registration after startup is guarded by a lock.

Convention: functions are pure with respect to the context they receive. This
is documented, not enforced.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

from .diagnostics import DiagnosticCode, DiagnosticsSink, LoggingDiagnosticsSink, Severity, report

if TYPE_CHECKING:
    from .context import ContextLike

logger = logging.getLogger(__name__)

# fn(args, ctx) -> value
TemplateFunction = Callable[[Sequence[Any], "ContextLike"], Any]

COMPONENT = "functions"


class FunctionRegistry:
    """
    Registry of named lookup/format functions usable inside templates.

    Example:
        functions = FunctionRegistry()
        functions.register("upper", lambda args, ctx: str(args[0]).upper())
        functions.call("upper", ["abc"], ctx)   # "ABC"
        functions.call("missing", [], ctx)      # "" plus one diagnostic
    """

    def __init__(self, diagnostics: DiagnosticsSink | None = None):
        self.diagnostics = diagnostics if diagnostics is not None else LoggingDiagnosticsSink()
        self._functions: dict[str, TemplateFunction] = {}
        self._lock = threading.Lock()

    def register(self, name: str, fn: TemplateFunction, *, replace: bool = False) -> None:
        """Register ``fn`` under ``name``.

        The first registration wins unless ``replace`` is set; a duplicate is
        ignored with a warning diagnostic.
        """
        if not name:
            raise ValueError("Function name must be a non-empty string")
        with self._lock:
            if name in self._functions and not replace:
                report(
                    self.diagnostics,
                    Severity.WARNING,
                    COMPONENT,
                    DiagnosticCode.DUPLICATE_REGISTRATION,
                    f"Function '{name}' already registered; keeping the first registration",
                    name=name,
                )
                return
            self._functions[name] = fn

    def unregister(self, name: str) -> bool:
        with self._lock:
            return self._functions.pop(name, None) is not None

    def has(self, name: str) -> bool:
        return name in self._functions

    def get(self, name: str) -> TemplateFunction | None:
        return self._functions.get(name)

    def list_names(self) -> list[str]:
        return list(self._functions.keys())

    def clear(self) -> None:
        """Drop every registration (session end)."""
        with self._lock:
            self._functions.clear()

    def call(self, name: str, args: Sequence[Any], ctx: ContextLike) -> Any:
        """Invoke a registered function with pre-resolved positional args.

        Unknown names and raising functions both yield ``""`` and exactly one
        diagnostic; nothing propagates to the caller.
        """
        fn = self._functions.get(name)
        if fn is None:
            report(
                self.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.UNKNOWN_FUNCTION,
                f"Unknown template function '{name}'. Available: {self.list_names()}",
                name=name,
            )
            return ""
        try:
            return fn(list(args), ctx)
        except Exception as e:
            report(
                self.diagnostics,
                Severity.WARNING,
                COMPONENT,
                DiagnosticCode.FUNCTION_FAILED,
                f"Template function '{name}' failed: {e}",
                name=name,
                error=type(e).__name__,
            )
            return ""

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def __len__(self) -> int:
        return len(self._functions)
