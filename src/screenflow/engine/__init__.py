"""Expression and action runtime for config-driven screens.

Key Components:

- EvaluationContext: Immutable layered data view (raw state, form data,
  navigation params, action data, current item)
- TemplateResolver: ``{{path}}`` / ``{{fn:name(args)}}`` substitution
- ConditionEvaluator: Safe predicate evaluation with distinct diagnostics
- FunctionRegistry: Named functions callable from templates and predicates
- ActionConfig: Typed action model parsed once at the JSON boundary
- ExecutorRegistry / ActionExecutor: Pluggable side-effect executors
- ActionOrchestrator: Ordered execution with first-match conditional groups
- ScreenSchema / ScreenBinder: Schema model and incremental view-model binding
- Session: Owner of registries, caches and in-flight dispatches
- LoadResult: Schema load outcome with source and skipped-file warnings
"""

from .actions import ActionConfig, Predicate, parse_action, parse_actions
from .binding import BoundField, BoundScreen, RebindResult, ScreenBinder
from .collaborators import (
    CrudSink,
    Entity,
    EntityStore,
    EventBus,
    FetchPipeline,
    InMemoryEventBus,
    Navigator,
    RecordingNavigator,
)
from .conditions import DEFAULT_PREDICATE, ConditionEvaluator
from .context import EvaluationContext
from .diagnostics import (
    CollectingDiagnosticsSink,
    Diagnostic,
    DiagnosticCode,
    DiagnosticsSink,
    LoggingDiagnosticsSink,
    Severity,
)
from .exceptions import (
    ActionExecutionError,
    ActionNestingError,
    FetchError,
    OwnerDisposedError,
    PredicateParseError,
    ScreenflowError,
    UnresolvedIdentifierError,
)
from .executor_base import (
    ActionExecutor,
    ActionProperties,
    ExecutorRegistry,
    create_default_registry,
)
from .executors_crud import CrudCreateExecutor, CrudUpdateExecutor
from .executors_event import EventExecutor
from .executors_fetch import FetchTransformerExecutor, HttpFetchPipeline
from .executors_navigation import NavigationExecutor
from .functions import FunctionRegistry
from .functions_builtin import register_builtin_functions
from .load_result import LoadResult
from .loader import SchemaCache, discover_schemas, load_schema_from_file, load_schema_from_yaml
from .orchestrator import ActionOrchestrator
from .runtime import ActionRuntime
from .schema import FieldSchema, ScreenSchema
from .session import Session
from .template import TemplateResolver, find_references

__all__ = [
    # Context and resolution
    "EvaluationContext",
    "TemplateResolver",
    "find_references",
    "ConditionEvaluator",
    "DEFAULT_PREDICATE",
    "FunctionRegistry",
    "register_builtin_functions",
    # Actions
    "ActionConfig",
    "Predicate",
    "parse_action",
    "parse_actions",
    "ActionOrchestrator",
    "ActionRuntime",
    # Executors
    "ActionExecutor",
    "ActionProperties",
    "ExecutorRegistry",
    "create_default_registry",
    "NavigationExecutor",
    "CrudCreateExecutor",
    "CrudUpdateExecutor",
    "EventExecutor",
    "FetchTransformerExecutor",
    "HttpFetchPipeline",
    # Collaborators
    "Navigator",
    "CrudSink",
    "EventBus",
    "FetchPipeline",
    "Entity",
    "EntityStore",
    "InMemoryEventBus",
    "RecordingNavigator",
    # Diagnostics
    "Diagnostic",
    "DiagnosticCode",
    "DiagnosticsSink",
    "Severity",
    "LoggingDiagnosticsSink",
    "CollectingDiagnosticsSink",
    # Exceptions
    "ScreenflowError",
    "PredicateParseError",
    "UnresolvedIdentifierError",
    "ActionExecutionError",
    "ActionNestingError",
    "OwnerDisposedError",
    "FetchError",
    # Schemas
    "FieldSchema",
    "ScreenSchema",
    "ScreenBinder",
    "BoundField",
    "BoundScreen",
    "RebindResult",
    "LoadResult",
    "SchemaCache",
    "load_schema_from_file",
    "load_schema_from_yaml",
    "discover_schemas",
    # Session
    "Session",
]
