"""Diagnostics: non-fatal structured reports from the runtime.

Every degraded resolution and every failed or skipped action surfaces here and
nowhere else. The runtime never raises past this boundary on read paths.

Sinks:
- LoggingDiagnosticsSink: forwards to stdlib logging (default)
- CollectingDiagnosticsSink: keeps diagnostics in memory (tests, debugging)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Diagnostic severity, ordered from least to most severe."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def log_level(self) -> int:
        return _LOG_LEVELS[self]


_LOG_LEVELS = {
    Severity.DEBUG: logging.DEBUG,
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class DiagnosticCode(str, Enum):
    """Stable identifiers for each kind of degraded outcome."""

    # Template resolution
    RESOLUTION_MISS = "resolution_miss"
    UNKNOWN_FUNCTION = "unknown_function"
    FUNCTION_FAILED = "function_failed"

    # Predicates: fallback, false outcome and broken expression each get a code
    PREDICATE_DEFAULT = "predicate_default"
    PREDICATE_FALSE = "predicate_false"
    PREDICATE_PARSE_ERROR = "predicate_parse_error"
    PREDICATE_UNRESOLVED = "predicate_unresolved"
    PREDICATE_EVALUATION_ERROR = "predicate_evaluation_error"

    # Actions
    UNHANDLED_ACTION_TYPE = "unhandled_action_type"
    EXECUTOR_FAILURE = "executor_failure"
    MALFORMED_ACTION_CONFIG = "malformed_action_config"
    NESTING_DEPTH_EXCEEDED = "nesting_depth_exceeded"
    DISPATCH_CANCELLED = "dispatch_cancelled"
    INVALID_ENTITIES = "invalid_entities"

    # Registries
    DUPLICATE_REGISTRATION = "duplicate_registration"


class Diagnostic(BaseModel):
    """A single diagnostic report."""

    model_config = {"frozen": True}

    severity: Severity
    component: str = Field(description="Reporting component (e.g. 'template', 'orchestrator')")
    code: DiagnosticCode
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.severity.value}] {self.component}/{self.code.value}: {self.message}"


@runtime_checkable
class DiagnosticsSink(Protocol):
    """Observability collaborator that accepts diagnostics."""

    def emit(self, diagnostic: Diagnostic) -> None: ...


class LoggingDiagnosticsSink:
    """Forward diagnostics to a stdlib logger at the matching level."""

    def __init__(self, log: logging.Logger | None = None):
        self._logger = log or logger

    def emit(self, diagnostic: Diagnostic) -> None:
        self._logger.log(
            diagnostic.severity.log_level,
            f"{diagnostic.component} [{diagnostic.code.value}] {diagnostic.message}",
            extra={
                "diagnostic_code": diagnostic.code.value,
                "diagnostic_component": diagnostic.component,
            },
        )


class CollectingDiagnosticsSink:
    """Keep every diagnostic in memory.

    Useful for tests and for hosts that want to show a debug overlay.
    """

    def __init__(self) -> None:
        self.diagnostics: list[Diagnostic] = []

    def emit(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)

    def codes(self) -> list[DiagnosticCode]:
        return [d.code for d in self.diagnostics]

    def of(self, code: DiagnosticCode) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.code == code]

    def clear(self) -> None:
        self.diagnostics.clear()

    def __len__(self) -> int:
        return len(self.diagnostics)


def report(
    sink: DiagnosticsSink,
    severity: Severity,
    component: str,
    code: DiagnosticCode,
    message: str,
    **details: Any,
) -> None:
    """Build a Diagnostic and hand it to the sink.

    A sink that raises must not take the runtime down with it, so sink
    failures are logged and dropped.
    """
    diagnostic = Diagnostic(
        severity=severity,
        component=component,
        code=code,
        message=message,
        details=details,
    )
    try:
        sink.emit(diagnostic)
    except Exception as e:
        logger.error(f"Diagnostics sink failed while reporting {code.value}: {e}", exc_info=True)
