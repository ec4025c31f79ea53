"""Shared test configuration for screenflow tests.

Provides:
- Collecting diagnostics sink
- Instrumented executor recording call order
- Evaluation contexts with task records
- HTTP mock server for the fetch pipeline
"""

import json
from typing import Any

import pytest
from pytest_httpserver import HTTPServer
from werkzeug.wrappers import Request, Response

from screenflow.config import RuntimeSettings
from screenflow.engine import (
    ActionExecutor,
    CollectingDiagnosticsSink,
    ConditionEvaluator,
    EvaluationContext,
    FunctionRegistry,
    TemplateResolver,
    register_builtin_functions,
)

# 2024-03-05T10:00:00Z and 2024-04-09T08:30:00Z in epoch millis
MARCH_5 = 1709632800000
APRIL_9 = 1712651400000


class RecordingExecutor(ActionExecutor):
    """Executor that records every action type it runs, in order.

    ``calls`` may be shared between several instances to observe a global
    ordering.
    """

    def __init__(self, *action_types: str, calls: list[str] | None = None):
        self.action_types = tuple(action_types)
        self.calls = calls if calls is not None else []

    async def execute(self, action, context, runtime):
        self.calls.append(action.action_type)
        seen = [*context.data.get("seen", []), action.action_type]
        return context.with_data(seen=seen)


class FailingExecutor(ActionExecutor):
    def __init__(self, *action_types: str, error: Exception | None = None):
        self.action_types = tuple(action_types)
        self.error = error or RuntimeError("boom")

    async def execute(self, action, context, runtime):
        raise self.error


def task_record(dose: Any, cycle: Any, created: Any) -> dict[str, Any]:
    return {
        "id": f"task-{dose}-{cycle}",
        "additionalFields": {
            "fields": [
                {"key": "doseIndex", "value": dose},
                {"key": "cycleIndex", "value": cycle},
            ]
        },
        "clientAuditDetails": {"createdTime": created},
    }


@pytest.fixture
def diagnostics() -> CollectingDiagnosticsSink:
    return CollectingDiagnosticsSink()


@pytest.fixture
def functions(diagnostics) -> FunctionRegistry:
    return register_builtin_functions(FunctionRegistry(diagnostics))


@pytest.fixture
def resolver(functions, diagnostics) -> TemplateResolver:
    return TemplateResolver(functions, diagnostics)


@pytest.fixture
def evaluator(functions, diagnostics) -> ConditionEvaluator:
    return ConditionEvaluator(functions, diagnostics)


@pytest.fixture
def settings() -> RuntimeSettings:
    return RuntimeSettings(max_action_depth=8)


@pytest.fixture
def tasks_ctx() -> EvaluationContext:
    return EvaluationContext(
        raw_state={
            "tasks": [
                task_record(1, 1, MARCH_5),
                task_record(2, 1, APRIL_9),
                task_record(3, 1, MARCH_5),
                task_record(3, 1, APRIL_9),
            ]
        }
    )


@pytest.fixture
def api_mock(httpserver: HTTPServer) -> HTTPServer:
    """
    Local HTTP server standing in for a backend search API.

    - GET /households: echoes query args and returns a fixed list under "items"
    - POST /search: echoes the JSON body under "query"
    - GET /broken: returns HTTP 500
    - GET /text: returns a non-JSON body
    """

    def households_handler(request: Request) -> Response:
        data = {
            "args": dict(request.args),
            "items": [{"id": "h1", "name": "Asha"}, {"id": "h2", "name": "Ravi"}],
        }
        return Response(json.dumps(data), content_type="application/json")

    def search_handler(request: Request) -> Response:
        data = {"query": request.get_json(silent=True), "count": 1}
        return Response(json.dumps(data), content_type="application/json")

    httpserver.expect_request("/households", method="GET").respond_with_handler(
        households_handler
    )
    httpserver.expect_request("/search", method="POST").respond_with_handler(search_handler)
    httpserver.expect_request("/broken").respond_with_data("oops", status=500)
    httpserver.expect_request("/text").respond_with_data("plain text", content_type="text/plain")
    return httpserver
