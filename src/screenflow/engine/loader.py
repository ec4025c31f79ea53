"""
Screen schema loader.

Loads screen schemas from JSON or YAML files/strings into validated
ScreenSchema models. Nothing here raises for bad input: every entry point
returns a LoadResult.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

import yaml

from .load_result import LoadResult
from .schema import ScreenSchema

logger = logging.getLogger(__name__)

SCHEMA_SUFFIXES = (".json", ".yaml", ".yml")


def load_schema_from_file(file_path: str | Path) -> LoadResult[ScreenSchema]:
    """
    Load and validate a screen schema file (``.json``, ``.yaml`` or ``.yml``).

    Example:
        result = load_schema_from_file("screens/household.yaml")
        if result.is_success:
            bound = binder.bind(result.value, ctx)
        else:
            print(f"Failed to load: {result.error}")
    """
    path = Path(file_path)
    source = str(file_path)

    if not path.exists():
        return LoadResult.failure(f"Schema file not found: {file_path}", source=source)

    if not path.is_file():
        return LoadResult.failure(f"Path is not a file: {file_path}", source=source)

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        return LoadResult.failure(f"Failed to read file '{file_path}': {e}", source=source)

    if path.suffix.lower() == ".json":
        return load_schema_from_json(content, source=source)
    return load_schema_from_yaml(content, source=source)


def load_schema_from_json(content: str, source: str = "<string>") -> LoadResult[ScreenSchema]:
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        return LoadResult.failure(f"Invalid JSON in {source}: {e}", source=source)
    return _validate(data, source)


def load_schema_from_yaml(content: str, source: str = "<string>") -> LoadResult[ScreenSchema]:
    """
    Load and validate a screen schema from a YAML (or JSON) string.

    Example:
        result = load_schema_from_yaml('''
        name: consent
        fields:
          - key: consent
            format: checkbox
        ''')
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        return LoadResult.failure(f"Invalid YAML syntax in {source}: {e}", source=source)
    return _validate(data, source)


def _validate(data: Any, source: str) -> LoadResult[ScreenSchema]:
    if not isinstance(data, dict):
        return LoadResult.failure(
            f"Schema {source} must be an object, got {type(data).__name__}", source=source
        )

    result = ScreenSchema.validate_dict(data)
    if not result.is_success:
        return LoadResult.failure(f"{result.error} (in {source})", source=source)
    return LoadResult.success(result.unwrap(), source=source)


def discover_schemas(directory: str | Path) -> LoadResult[list[ScreenSchema]]:
    """
    Load every schema file in ``directory`` (not recursive).

    Invalid files are skipped and do not fail the operation. Each one is
    logged and listed in the result's ``warnings`` as ``"<file>: <error>"``.
    """
    dir_path = Path(directory)

    if not dir_path.exists():
        return LoadResult.failure(f"Directory not found: {directory}", source=str(directory))

    if not dir_path.is_dir():
        return LoadResult.failure(f"Path is not a directory: {directory}", source=str(directory))

    schemas: list[ScreenSchema] = []
    errors: list[str] = []

    for schema_file in sorted(dir_path.iterdir()):
        if schema_file.suffix.lower() not in SCHEMA_SUFFIXES:
            continue
        result = load_schema_from_file(schema_file)
        if result.is_success and result.value is not None:
            schemas.append(result.value)
        else:
            errors.append(f"{schema_file.name}: {result.error}")

    if errors:
        logger.warning(f"{len(errors)} schema(s) failed to load:")
        for error in errors:
            logger.warning(f"  - {error}")

    return LoadResult.success(schemas, source=str(directory), warnings=tuple(errors))


class SchemaCache:
    """
    Per-session cache of loaded schemas, keyed by resolved path.

    An entry is reused while the file's mtime is unchanged. Failures are not
    cached. Call ``clear()`` at session end.
    """

    def __init__(self) -> None:
        self._entries: dict[Path, tuple[float, ScreenSchema]] = {}
        self._lock = threading.Lock()

    def get(self, file_path: str | Path) -> LoadResult[ScreenSchema]:
        path = Path(file_path).resolve()
        try:
            mtime = path.stat().st_mtime
        except OSError:
            return load_schema_from_file(path)

        with self._lock:
            cached = self._entries.get(path)
        if cached is not None and cached[0] == mtime:
            logger.debug(f"Schema cache hit: {path}")
            return LoadResult.success(cached[1], source=str(path), cached=True)

        result = load_schema_from_file(path)
        if result.is_success and result.value is not None:
            with self._lock:
                self._entries[path] = (mtime, result.value)
        return result

    def invalidate(self, file_path: str | Path) -> bool:
        with self._lock:
            return self._entries.pop(Path(file_path).resolve(), None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
