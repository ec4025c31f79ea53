"""Tests for the executor registry."""

import importlib.metadata

import pytest
from conftest import RecordingExecutor

from screenflow.engine import (
    ActionConfig,
    ActionRuntime,
    DiagnosticCode,
    EvaluationContext,
    ExecutorRegistry,
    create_default_registry,
)


class ReturnsNothingExecutor(RecordingExecutor):
    async def execute(self, action, context, runtime):
        return None


class PrefixExecutor(RecordingExecutor):
    """Claims every action type starting with ``SHOW_``."""

    def can_handle(self, action_type):
        return action_type.startswith("SHOW_")


@pytest.fixture
def registry(diagnostics):
    return ExecutorRegistry(diagnostics)


@pytest.fixture
def runtime(resolver, diagnostics):
    return ActionRuntime(resolver=resolver, diagnostics=diagnostics)


def test_default_registry_has_builtin_types(diagnostics):
    registry = create_default_registry(diagnostics)
    assert registry.list_types() == [
        "NAVIGATION",
        "CREATE_EVENT",
        "UPDATE_EVENT",
        "EVENT",
        "FETCH_TRANSFORMER",
    ]
    assert len(registry) == 5
    assert diagnostics.codes() == []


def test_first_registration_wins(registry, diagnostics):
    first = RecordingExecutor("A")
    second = RecordingExecutor("A")

    assert registry.register("A", first) is True
    assert registry.register("A", second) is False
    assert registry.find("A") is first
    assert diagnostics.codes() == [DiagnosticCode.DUPLICATE_REGISTRATION]


def test_register_executor_uses_declared_types(registry):
    executor = RecordingExecutor("A", "B")
    assert registry.register_executor(executor) == 2
    assert registry.has("A") and registry.has("B")


def test_empty_tag_is_rejected(registry):
    with pytest.raises(ValueError):
        registry.register("", RecordingExecutor("A"))


def test_find_falls_back_to_can_handle(registry):
    registry.register("SHOW_*", PrefixExecutor())
    assert registry.find("SHOW_ADULT_FORM") is not None
    assert registry.find("HIDE_FORM") is None


def test_unregister_and_clear(registry):
    registry.register_executor(RecordingExecutor("A", "B"))
    assert registry.unregister("A") is True
    assert registry.unregister("A") is False
    assert registry.list_types() == ["B"]

    registry.clear()
    assert len(registry) == 0
    assert not registry.has("B")


@pytest.mark.asyncio
async def test_execute_dispatches_to_executor(registry, runtime):
    executor = RecordingExecutor("A")
    registry.register_executor(executor)

    ctx = await registry.execute(ActionConfig(action_type="A"), EvaluationContext(), runtime)

    assert executor.calls == ["A"]
    assert ctx.data["seen"] == ["A"]


@pytest.mark.asyncio
async def test_unhandled_type_returns_context_unchanged(registry, runtime, diagnostics):
    ctx = EvaluationContext(form_data={"x": 1})

    result = await registry.execute(ActionConfig(action_type="NOPE"), ctx, runtime)

    assert result is ctx
    assert diagnostics.codes() == [DiagnosticCode.UNHANDLED_ACTION_TYPE]
    assert diagnostics.diagnostics[0].details["action_type"] == "NOPE"


@pytest.mark.asyncio
async def test_non_context_result_is_type_error(registry, runtime):
    registry.register_executor(ReturnsNothingExecutor("A"))
    with pytest.raises(TypeError, match="expected EvaluationContext"):
        await registry.execute(ActionConfig(action_type="A"), EvaluationContext(), runtime)


class _EntryPoint:
    def __init__(self, name, target):
        self.name = name
        self._target = target

    def load(self):
        if isinstance(self._target, Exception):
            raise self._target
        return self._target


class _EntryPoints:
    def __init__(self, points):
        self._points = points

    def select(self, group):
        return self._points if group == "screenflow.executors" else []


class PluginExecutor(RecordingExecutor):
    action_types = ("SEND_SMS",)

    def __init__(self):
        super().__init__("SEND_SMS")


def test_discover_entry_points(registry, monkeypatch):
    points = _EntryPoints(
        [
            _EntryPoint("sms", PluginExecutor),
            _EntryPoint("broken", ImportError("missing module")),
            _EntryPoint("wrong", dict),
        ]
    )
    monkeypatch.setattr(importlib.metadata, "entry_points", lambda: points)

    assert registry.discover_entry_points() == 1
    assert registry.list_types() == ["SEND_SMS"]
