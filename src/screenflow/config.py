"""Runtime settings read from environment variables.

Environment Variables:
    SCREENFLOW_MAX_ACTION_DEPTH: Max nesting depth of conditional actions
        (default 32, clamped to 1-1000)
    SCREENFLOW_DATE_FORMAT: Default pattern for date functions (default "dd MMM yyyy")
    SCREENFLOW_LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default INFO)
    SCREENFLOW_FETCH_TIMEOUT: HTTP fetch timeout in seconds (default 30, clamped to 1-600)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .engine.functions_builtin import DEFAULT_DATE_FORMAT
from .engine.orchestrator import DEFAULT_MAX_DEPTH

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def get_max_action_depth() -> int:
    """Maximum action nesting depth (1-1000, clamped automatically)."""
    try:
        depth = int(os.getenv("SCREENFLOW_MAX_ACTION_DEPTH", str(DEFAULT_MAX_DEPTH)))
        return max(1, min(1000, depth))
    except ValueError:
        return DEFAULT_MAX_DEPTH


def get_fetch_timeout() -> float:
    try:
        timeout = float(os.getenv("SCREENFLOW_FETCH_TIMEOUT", "30"))
        return max(1.0, min(600.0, timeout))
    except ValueError:
        return 30.0


def get_log_level() -> str:
    """Log level name; invalid values fall back to INFO with a warning."""
    level = os.getenv("SCREENFLOW_LOG_LEVEL", "INFO").upper()
    if level not in VALID_LOG_LEVELS:
        logger.warning(
            f"Invalid SCREENFLOW_LOG_LEVEL '{level}'. "
            f"Valid levels: {', '.join(sorted(VALID_LOG_LEVELS))}. Using INFO."
        )
        return "INFO"
    return level


@dataclass(frozen=True)
class RuntimeSettings:
    max_action_depth: int = DEFAULT_MAX_DEPTH
    date_format: str = DEFAULT_DATE_FORMAT
    log_level: str = "INFO"
    fetch_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> RuntimeSettings:
        return cls(
            max_action_depth=get_max_action_depth(),
            date_format=os.getenv("SCREENFLOW_DATE_FORMAT") or DEFAULT_DATE_FORMAT,
            log_level=get_log_level(),
            fetch_timeout=get_fetch_timeout(),
        )
