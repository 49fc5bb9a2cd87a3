"""Exception taxonomy for valgate.

Only ``ConfigError``, ``TaskSourceError`` and ``ReportWriteError`` are fatal.
Every other error is contained where it happens and surfaces as an
``ExecutionResult`` with status ERROR or as a logged exclusion.
"""

from __future__ import annotations


class ValgateError(Exception):
    """Base class for all valgate errors."""


class ConfigError(ValgateError):
    """The configuration file is unreadable or malformed."""


class TaskSourceError(ValgateError):
    """The task source tree cannot be read at all."""


class ReportWriteError(ValgateError):
    """A final report artifact could not be written."""


class DescriptorParseError(ValgateError):
    """A task document has no title or no numbered sections."""

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(f"{name}: {reason}")
        self.name = name
        self.reason = reason


class PlatformUnavailableError(ValgateError):
    """A pre-execution check failed for a task on a platform."""


class ExecutionTimeoutError(ValgateError):
    """An execution exceeded its per-task deadline."""

    def __init__(self, task: str, platform: str, timeout_ms: int) -> None:
        super().__init__(f"Execution of {task} on {platform} timed out after {timeout_ms}ms")
        self.task = task
        self.platform = platform
        self.timeout_ms = timeout_ms


class AggregationInputError(ValgateError):
    """A malformed result reached the aggregator."""


class RegressionBaselineMissing(ValgateError):
    """No baseline exists yet for a key; the current run establishes one.

    Informational: raised and caught inside the regression detector.
    """


class BaselineConflictError(ValgateError):
    """A baseline file on disk records a different key than the one requested."""
