"""Fetch/transform executor and an HTTP-backed fetch pipeline.

FETCH_TRANSFORMER properties (after template resolution):

    {
      "query": {"url": "https://api/tasks", "params": {"projectId": "{{navigation.projectId}}"},
                "select": "items"},
      "resultKey": "tasks",     # where the result lands in context data (default fetchResult)
      "stateKey": "tasks"       # optional: also replace raw_state[stateKey]
    }

The pipeline itself is a collaborator (``FetchPipeline``); the executor only
resolves the query, awaits the pipeline and threads the result into the
returned context. Liveness is checked after the await so a result is never
applied for a screen that is already gone.
"""

from __future__ import annotations

import json
import os
import re
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import BaseModel, Field, field_validator

from .actions import ActionConfig
from .context import EvaluationContext
from .exceptions import FetchError
from .executor_base import ActionExecutor, ActionProperties
from .runtime import ActionRuntime
from .template import MISS, parse_path, walk_path

DEFAULT_RESULT_KEY = "fetchResult"


class FetchProperties(ActionProperties):
    query: dict[str, Any] = Field(default_factory=dict)
    result_key: str = Field(default=DEFAULT_RESULT_KEY, alias="resultKey", min_length=1)
    state_key: str | None = Field(default=None, alias="stateKey")

    @field_validator("query", mode="before")
    @classmethod
    def _coerce_query(cls, v: Any) -> Any:
        return {} if v is None else v


class FetchTransformerExecutor(ActionExecutor):
    action_types = ("FETCH_TRANSFORMER",)
    properties_type = FetchProperties

    async def execute(
        self, action: ActionConfig, context: EvaluationContext, runtime: ActionRuntime
    ) -> EvaluationContext:
        props: FetchProperties = self.resolve_properties(action, context, runtime)
        pipeline = runtime.require_fetch_pipeline()

        result = await pipeline.fetch_and_transform(props.query)
        runtime.ensure_alive(action.action_type)

        updated = context.with_data(**{props.result_key: result})
        if props.state_key:
            records = result if isinstance(result, list) else [result]
            updated = updated.with_records(props.state_key, records)
        return updated


# ============================================================================
# HTTP fetch pipeline
# ============================================================================


class FetchQuery(BaseModel):
    """Query understood by HttpFetchPipeline.

    Field names follow ``httpx.AsyncClient.request()`` where they overlap.
    """

    model_config = {"populate_by_name": True}

    url: str = Field(description="Request URL (supports ${ENV_VAR} substitution)")
    method: str = Field(default="GET")
    params: dict[str, Any] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    json_body: Any = Field(default=None, alias="json")
    select: str | None = Field(
        default=None, description="Dotted path into the JSON response (e.g. 'data.items')"
    )


class HttpFetchPipeline:
    """
    FetchPipeline issuing one HTTP request per query and returning parsed JSON.

    Example:
        pipeline = HttpFetchPipeline(base_url="https://api.example.org", timeout=10)
        tasks = await pipeline.fetch_and_transform({"url": "/tasks", "select": "items"})

    Raises FetchError on transport failures, non-2xx responses, non-JSON
    bodies and ``select`` paths that do not exist in the response.
    """

    def __init__(
        self,
        base_url: str = "",
        timeout: float = 30.0,
        headers: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.headers = dict(headers or {})
        self._transport = transport

    async def fetch_and_transform(self, query: Mapping[str, Any]) -> Any:
        parsed = FetchQuery.model_validate(dict(query))
        url = _substitute_env_vars(parsed.url)
        headers = {
            **self.headers,
            **{key: _substitute_env_vars(value) for key, value in parsed.headers.items()},
        }

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.request(
                    method=parsed.method.upper(),
                    url=url,
                    params=parsed.params or None,
                    headers=headers,
                    json=parsed.json_body,
                )
            except httpx.TimeoutException as e:
                raise FetchError(f"Request timeout after {self.timeout}s: {url}") from e
            except httpx.HTTPError as e:
                raise FetchError(f"Request to {url} failed: {e}") from e

        if not 200 <= response.status_code < 300:
            raise FetchError(f"{parsed.method.upper()} {url} returned HTTP {response.status_code}")

        try:
            body = response.json()
        except json.JSONDecodeError as e:
            raise FetchError(f"Response from {url} is not valid JSON") from e

        if not parsed.select:
            return body
        selected = walk_path(body, parse_path(parsed.select))
        if selected is MISS:
            raise FetchError(f"Path '{parsed.select}' not found in response from {url}")
        return selected


def _substitute_env_vars(text: str) -> str:
    """Substitute ``${ENV_VAR}`` references; unknown variables become ''.

    Examples:
        >>> os.environ['API_KEY'] = 'secret123'
        >>> _substitute_env_vars('Bearer ${API_KEY}')
        'Bearer secret123'
    """
    return re.sub(
        r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}",
        lambda match: os.environ.get(match.group(1), ""),
        text,
    )
