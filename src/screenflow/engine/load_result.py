"""Outcome of loading one schema file, a schema string or a schema directory.

Loading never raises for bad input. A result carries either the loaded value
or an error message, plus where it came from. Directory scans also carry the
per-file problems that were skipped, so callers can surface them instead of
relying on the log.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class LoadResult(Generic[T]):  # noqa: UP046
    value: T | None = None
    error: str | None = None
    source: str | None = None
    warnings: tuple[str, ...] = ()
    cached: bool = False

    def __post_init__(self) -> None:
        if (self.value is None) == (self.error is None):
            raise ValueError("LoadResult needs exactly one of value or error")

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @classmethod
    def success(
        cls,
        value: T,
        source: str | None = None,
        warnings: tuple[str, ...] = (),
        cached: bool = False,
    ) -> "LoadResult[T]":
        return cls(value=value, source=source, warnings=tuple(warnings), cached=cached)

    @classmethod
    def failure(cls, error: str, source: str | None = None) -> "LoadResult[T]":
        return cls(error=error, source=source)

    def __bool__(self) -> bool:
        return self.is_success

    def unwrap(self) -> T:
        """Return the loaded value, or raise ValueError with the load error."""
        if self.value is None:
            where = self.source or "<unknown>"
            raise ValueError(f"Cannot unwrap failed load of {where}: {self.error}")
        return self.value
