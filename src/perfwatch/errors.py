"""Exception taxonomy for perfwatch."""

from __future__ import annotations


class PerfwatchError(Exception):
    """Base class for perfwatch errors."""


class MalformedSampleIgnored(PerfwatchError):
    """A request field could not be read; a default was substituted."""

    def __init__(self, field_name: str, raw: object) -> None:
        super().__init__(f"Malformed {field_name}: {raw!r}")
        self.field_name = field_name
        self.raw = raw


class InsufficientDataError(PerfwatchError):
    """Not enough history yet. Callers should retry later or show 'no data'."""


class MaintenanceTaskFailure(PerfwatchError):
    """A single maintenance task run failed."""

    def __init__(self, task_name: str, cause: BaseException) -> None:
        super().__init__(f"Maintenance task {task_name} failed: {cause}")
        self.task_name = task_name
        self.cause = cause


class UnsupportedReclamation(PerfwatchError):
    """The host offers no memory reclamation capability."""


class ConfigError(PerfwatchError, ValueError):
    """An option was given a value of the wrong type or range."""
