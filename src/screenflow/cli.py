"""Command-line entry point.

Usage:
    screenflow bind SCHEMA [--context CTX.json]
    screenflow run ACTIONS [--context CTX.json]

``bind`` prints the bound view model of a screen schema. ``run`` executes an
action list with recording collaborators and prints the final context, the
navigation/event/entity records and the diagnostics.

Logging goes to stderr at SCREENFLOW_LOG_LEVEL; results go to stdout as JSON.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from . import __version__
from .config import RuntimeSettings
from .engine import CollectingDiagnosticsSink, EvaluationContext, HttpFetchPipeline, Session
from .engine.collaborators import InMemoryEventBus, RecordingNavigator

logger = logging.getLogger(__name__)


class CliError(Exception):
    """Input the CLI cannot work with (reported on stderr, exit code 1)."""


def _read_document(path: str) -> Any:
    file_path = Path(path)
    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        raise CliError(f"Cannot read {path}: {e}") from e
    try:
        if file_path.suffix.lower() == ".json":
            return json.loads(content)
        return yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CliError(f"Cannot parse {path}: {e}") from e


def _load_context(path: str | None) -> EvaluationContext:
    if path is None:
        return EvaluationContext()
    data = _read_document(path)
    if not isinstance(data, dict):
        raise CliError(f"Context file {path} must contain an object")
    try:
        return EvaluationContext.model_validate(data)
    except ValueError as e:
        raise CliError(f"Invalid context in {path}: {e}") from e


def _dump(data: Any) -> None:
    json.dump(data, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")


async def _bind(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    ctx = _load_context(args.context)
    async with Session(settings=settings) as session:
        result = session.load_schema(args.schema)
        if not result.is_success:
            raise CliError(result.error or "Schema load failed")
        _dump(session.bind(result.unwrap(), ctx).to_dict())
    return 0


async def _run(args: argparse.Namespace, settings: RuntimeSettings) -> int:
    ctx = _load_context(args.context)
    document = _read_document(args.actions)
    actions = document.get("actions") if isinstance(document, dict) else document
    if not isinstance(actions, list):
        raise CliError(f"{args.actions} must contain a list of actions (or an 'actions' list)")

    diagnostics = CollectingDiagnosticsSink()
    navigator = RecordingNavigator()
    event_bus = InMemoryEventBus()
    fetch_pipeline = (
        HttpFetchPipeline(base_url=args.base_url, timeout=settings.fetch_timeout)
        if args.base_url
        else None
    )

    async with Session(
        settings=settings,
        diagnostics=diagnostics,
        navigator=navigator,
        event_bus=event_bus,
        fetch_pipeline=fetch_pipeline,
    ) as session:
        final = await session.execute_actions(actions, ctx)
        entities = session.entity_store.snapshot()
        events = [{"name": name, "payload": payload} for name, payload in event_bus.events]

    _dump(
        {
            "context": final.model_dump(by_alias=True),
            "navigation": [
                {"route": record.route, "params": record.params} for record in navigator.history
            ],
            "events": events,
            "entities": entities,
            "diagnostics": [d.model_dump(mode="json") for d in diagnostics.diagnostics],
        }
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="screenflow", description="Config-driven screen runtime tools"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    bind = subparsers.add_parser("bind", help="Print the bound view model of a screen schema")
    bind.add_argument("schema", help="Schema file (.json, .yaml, .yml)")
    bind.add_argument("--context", help="Evaluation context file (JSON or YAML)")

    run = subparsers.add_parser("run", help="Execute an action list")
    run.add_argument("actions", help="Action list file (JSON or YAML)")
    run.add_argument("--context", help="Evaluation context file (JSON or YAML)")
    run.add_argument("--base-url", help="Base URL for FETCH_TRANSFORMER queries")

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = RuntimeSettings.from_env()

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    handler = _bind if args.command == "bind" else _run
    try:
        return asyncio.run(handler(args, settings))
    except CliError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
