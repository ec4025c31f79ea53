"""Tests for the built-in executors and the HTTP fetch pipeline."""

import httpx
import pytest
from pydantic import ValidationError

from screenflow.engine import (
    ActionConfig,
    ActionRuntime,
    CrudCreateExecutor,
    CrudUpdateExecutor,
    DiagnosticCode,
    Entity,
    EntityStore,
    EvaluationContext,
    EventExecutor,
    FetchError,
    FetchTransformerExecutor,
    HttpFetchPipeline,
    InMemoryEventBus,
    NavigationExecutor,
    OwnerDisposedError,
    RecordingNavigator,
    Session,
)
from screenflow.engine.executors_crud import _CrudExecutor, coerce_entities
from screenflow.engine.executors_navigation import params_from_pairs


class FakePipeline:
    def __init__(self, result):
        self.result = result
        self.queries = []

    async def fetch_and_transform(self, query):
        self.queries.append(dict(query))
        return self.result


@pytest.fixture
def navigator():
    return RecordingNavigator()


@pytest.fixture
def store():
    return EntityStore()


@pytest.fixture
def bus():
    return InMemoryEventBus()


@pytest.fixture
def runtime(resolver, diagnostics, navigator, store, bus):
    return ActionRuntime(
        resolver=resolver,
        diagnostics=diagnostics,
        navigator=navigator,
        crud=store,
        event_bus=bus,
    )


def dead_runtime(runtime):
    """Same collaborators as ``runtime``, but its owner is already gone."""
    return ActionRuntime(
        resolver=runtime.resolver,
        diagnostics=runtime.diagnostics,
        navigator=runtime.navigator,
        crud=runtime.crud,
        liveness=lambda: False,
    )


# ============================================================================
# Navigation
# ============================================================================


def test_params_from_pairs():
    assert params_from_pairs(None) == {}
    assert params_from_pairs({"a": 1}) == {"a": 1}
    assert params_from_pairs([{"key": "a", "value": 1}, {"value": 2}, "x"]) == {"a": 1}
    with pytest.raises(ValueError):
        params_from_pairs("a=1")


@pytest.mark.asyncio
async def test_navigation_resolves_params(runtime, navigator):
    action = ActionConfig(
        action_type="NAVIGATION",
        properties={
            "name": "beneficiaryDetails",
            "data": [{"key": "beneficiaryId", "value": "{{item.id}}"}],
            "params": {"mode": "{{navigation.mode}}"},
        },
    )
    ctx = EvaluationContext(item={"id": "b1"}, navigation_params={"mode": "edit"})

    result = await NavigationExecutor().execute(action, ctx, runtime)

    assert navigator.current.route == "beneficiaryDetails"
    assert navigator.current.params == {"beneficiaryId": "b1", "mode": "edit"}
    assert result.navigation_params == {"beneficiaryId": "b1", "mode": "edit"}
    assert ctx.navigation_params == {"mode": "edit"}


@pytest.mark.asyncio
async def test_navigation_requires_route_name(runtime, navigator):
    action = ActionConfig(action_type="NAVIGATION", properties={"name": "{{context.missing}}"})
    with pytest.raises(ValidationError):
        await NavigationExecutor().execute(action, EvaluationContext(), runtime)
    assert navigator.history == []


@pytest.mark.asyncio
async def test_navigation_without_navigator(resolver, diagnostics):
    action = ActionConfig(action_type="NAVIGATION", properties={"name": "home"})
    runtime = ActionRuntime(resolver=resolver, diagnostics=diagnostics)
    with pytest.raises(RuntimeError, match="No navigator"):
        await NavigationExecutor().execute(action, EvaluationContext(), runtime)


@pytest.mark.asyncio
async def test_navigation_after_dispose_discards_result(runtime):
    action = ActionConfig(action_type="NAVIGATION", properties={"name": "home"})
    with pytest.raises(OwnerDisposedError, match="NAVIGATION"):
        await NavigationExecutor().execute(action, EvaluationContext(), dead_runtime(runtime))


# ============================================================================
# CRUD
# ============================================================================


def test_coerce_entities():
    entities, rejected = coerce_entities(
        [{"entityType": "household", "id": "h1"}, {"name": "no type"}, 42]
    )
    assert [e.key for e in entities] == ["h1"]
    assert len(rejected) == 2
    assert rejected[1] == "[2] not an entity: int"

    single, _ = coerce_entities({"entityType": "member"})
    assert len(single) == 1
    assert coerce_entities(None) == ([], ["no entities in context"])
    assert coerce_entities("x")[1] == ["entities must be a list, got str"]


@pytest.mark.asyncio
async def test_create_then_update(runtime, store):
    ctx = EvaluationContext().with_data(
        entities=[
            {"entityType": "household", "clientReferenceId": "h1", "name": "Asha"},
            {"name": "rejected"},
        ]
    )
    await CrudCreateExecutor().execute(ActionConfig(action_type="CREATE_EVENT"), ctx, runtime)
    assert store.records("household") == [
        {"entityType": "household", "clientReferenceId": "h1", "name": "Asha"}
    ]

    update = ctx.with_data(
        entities=[Entity(entityType="household", clientReferenceId="h1", name="Ravi")]
    )
    result = await CrudUpdateExecutor().execute(
        ActionConfig(action_type="UPDATE_EVENT"), update, runtime
    )

    assert result is update
    assert store.records("household")[0]["name"] == "Ravi"
    assert len(store) == 1


@pytest.mark.asyncio
async def test_crud_without_entities_reports(runtime, store, diagnostics):
    ctx = EvaluationContext()
    result = await CrudCreateExecutor().execute(
        ActionConfig(action_type="CREATE_EVENT"), ctx, runtime
    )

    assert result is ctx
    assert len(store) == 0
    assert diagnostics.codes() == [DiagnosticCode.INVALID_ENTITIES]
    assert diagnostics.diagnostics[0].details["rejected"] == ["no entities in context"]


def test_crud_executor_requires_dispatch():
    class Incomplete(_CrudExecutor):
        action_types = ("ARCHIVE_EVENT",)
        operation = "archive"

    with pytest.raises(TypeError, match="dispatch"):
        Incomplete()


@pytest.mark.asyncio
async def test_crud_after_dispose(runtime):
    ctx = EvaluationContext().with_data(entities=[{"entityType": "household"}])
    with pytest.raises(OwnerDisposedError):
        await CrudCreateExecutor().execute(
            ActionConfig(action_type="CREATE_EVENT"), ctx, dead_runtime(runtime)
        )


@pytest.mark.asyncio
async def test_entity_store_snapshot_and_clear():
    store = EntityStore()
    await store.create([Entity(entityType="task", id="t1")])

    snapshot = store.snapshot()
    snapshot["task"][0]["id"] = "changed"

    assert store.records("task") == [{"entityType": "task", "id": "t1"}]
    store.clear()
    assert store.snapshot() == {}


# ============================================================================
# Events
# ============================================================================


@pytest.mark.asyncio
async def test_event_payload_is_resolved(runtime, bus):
    received = []

    async def on_saved(name, payload):
        received.append(payload["id"])

    bus.subscribe("household_saved", on_saved)
    action = ActionConfig(
        action_type="EVENT",
        properties={"name": "household_saved", "data": {"id": "{{context.id}}"}},
    )

    await EventExecutor().execute(action, EvaluationContext(form_data={"id": "h1"}), runtime)

    assert bus.events == [("household_saved", {"id": "h1"})]
    assert received == ["h1"]


@pytest.mark.asyncio
async def test_event_sync_subscriber_and_payload(runtime, bus):
    received = []
    bus.subscribe("ping", lambda name, payload: received.append(name))

    action = ActionConfig(action_type="EVENT", properties={"name": "ping", "payload": {"n": 1}})
    await EventExecutor().execute(action, EvaluationContext(), runtime)

    assert bus.events == [("ping", {"n": 1})]
    assert received == ["ping"]


# ============================================================================
# Fetch
# ============================================================================


@pytest.mark.asyncio
async def test_fetch_threads_result_into_context(runtime):
    pipeline = FakePipeline([{"id": "t1"}, {"id": "t2"}])
    action = ActionConfig(
        action_type="FETCH_TRANSFORMER",
        properties={
            "query": {"url": "/tasks", "params": {"projectId": "{{navigation.projectId}}"}},
            "resultKey": "tasks",
            "stateKey": "tasks",
        },
    )
    ctx = EvaluationContext(navigation_params={"projectId": "p1"})

    runtime = ActionRuntime(runtime.resolver, runtime.diagnostics, fetch_pipeline=pipeline)

    result = await FetchTransformerExecutor().execute(action, ctx, runtime)

    assert pipeline.queries == [{"url": "/tasks", "params": {"projectId": "p1"}}]
    assert result.data["tasks"] == [{"id": "t1"}, {"id": "t2"}]
    assert result.raw_state["tasks"] == [{"id": "t1"}, {"id": "t2"}]


@pytest.mark.asyncio
async def test_fetch_default_result_key(resolver, diagnostics):
    pipeline = FakePipeline({"count": 3})
    runtime = ActionRuntime(resolver, diagnostics, fetch_pipeline=pipeline)

    result = await FetchTransformerExecutor().execute(
        ActionConfig(action_type="FETCH_TRANSFORMER", properties={"query": {"url": "/c"}}),
        EvaluationContext(),
        runtime,
    )

    assert result.data == {"fetchResult": {"count": 3}}
    assert result.raw_state == {}


@pytest.mark.asyncio
async def test_fetch_result_dropped_after_dispose(resolver, diagnostics):
    runtime = ActionRuntime(
        resolver, diagnostics, fetch_pipeline=FakePipeline([]), liveness=lambda: False
    )
    with pytest.raises(OwnerDisposedError):
        await FetchTransformerExecutor().execute(
            ActionConfig(action_type="FETCH_TRANSFORMER", properties={"query": {"url": "/x"}}),
            EvaluationContext(),
            runtime,
        )


@pytest.mark.asyncio
async def test_http_pipeline_get_with_select(api_mock):
    pipeline = HttpFetchPipeline(base_url=api_mock.url_for("/"))

    items = await pipeline.fetch_and_transform({"url": "/households", "select": "items"})
    args = await pipeline.fetch_and_transform(
        {"url": "/households", "params": {"village": "v1"}, "select": "args"}
    )

    assert [item["name"] for item in items] == ["Asha", "Ravi"]
    assert args == {"village": "v1"}


@pytest.mark.asyncio
async def test_http_pipeline_post_json(api_mock):
    pipeline = HttpFetchPipeline(base_url=api_mock.url_for("/"))

    body = await pipeline.fetch_and_transform(
        {"url": "/search", "method": "post", "json": {"q": "asha"}}
    )

    assert body == {"query": {"q": "asha"}, "count": 1}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "query,match",
    [
        ({"url": "/broken"}, "HTTP 500"),
        ({"url": "/text"}, "not valid JSON"),
        ({"url": "/households", "select": "missing.path"}, "not found"),
    ],
)
async def test_http_pipeline_failures(api_mock, query, match):
    pipeline = HttpFetchPipeline(base_url=api_mock.url_for("/"))
    with pytest.raises(FetchError, match=match):
        await pipeline.fetch_and_transform(query)


@pytest.mark.asyncio
async def test_http_pipeline_transport_errors():
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    def stall(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(FetchError, match="failed"):
        await HttpFetchPipeline(transport=httpx.MockTransport(refuse)).fetch_and_transform(
            {"url": "https://api.test/tasks"}
        )
    with pytest.raises(FetchError, match="timeout"):
        await HttpFetchPipeline(
            timeout=2, transport=httpx.MockTransport(stall)
        ).fetch_and_transform({"url": "https://api.test/tasks"})


@pytest.mark.asyncio
async def test_http_pipeline_substitutes_env_vars(monkeypatch):
    monkeypatch.setenv("SCREENFLOW_TEST_TOKEN", "secret123")
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["client"] = request.headers["X-Client"]
        return httpx.Response(200, json={"ok": True})

    pipeline = HttpFetchPipeline(
        headers={"X-Client": "screenflow"}, transport=httpx.MockTransport(handler)
    )
    result = await pipeline.fetch_and_transform(
        {
            "url": "https://api.test/tasks",
            "headers": {"Authorization": "Bearer ${SCREENFLOW_TEST_TOKEN}"},
        }
    )

    assert result == {"ok": True}
    assert seen == {"auth": "Bearer secret123", "client": "screenflow"}


@pytest.mark.asyncio
async def test_fetch_failure_is_reported_by_session(api_mock, diagnostics):
    pipeline = HttpFetchPipeline(base_url=api_mock.url_for("/"))
    actions = [
        {"actionType": "FETCH_TRANSFORMER", "properties": {"query": {"url": "/broken"}}},
        {
            "actionType": "FETCH_TRANSFORMER",
            "properties": {"query": {"url": "/households", "select": "items"}, "stateKey": "hh"},
        },
    ]

    async with Session(diagnostics=diagnostics, fetch_pipeline=pipeline) as session:
        result = await session.execute_actions(actions)

    assert [record["id"] for record in result.raw_state["hh"]] == ["h1", "h2"]
    [failure] = diagnostics.of(DiagnosticCode.EXECUTOR_FAILURE)
    assert failure.details["cause"] == "FetchError"
