# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class PipelineError(Exception):
    """
    Structured pipeliner error with enough context for:
      - a clean one-line CLI message
      - debugging without full tracebacks
    """
    kind: str
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


class WorkflowValidationError(PipelineError):
    """Raised before execution when a workflow file is malformed."""

    def __init__(self, issues: list[str], source: Optional[str] = None):
        self.issues = list(issues)
        body = "\n".join(f"  - {issue}" for issue in self.issues)
        details = {"file": source} if source else {}
        super().__init__(
            kind="validation",
            message=f"Invalid workflow structure:\n{body}",
            details=details,
        )


class StepFailure(PipelineError):
    """A step failed with no recovery path; aborts the workflow."""

    def __init__(
        self,
        step_index: int,
        reason: str,
        line: Optional[int] = None,
        exit_code: Optional[int] = None,
        label: str = "Step",
    ):
        self.step_index = step_index
        self.line = line
        self.exit_code = exit_code
        where = f"{label} {step_index + 1}"
        if line is not None:
            where += f" (line {line})"
        details: dict = {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(kind="step", message=f"{where} failed: {reason}", details=details)


class WorkflowFailed(PipelineError):
    """Raised by a `fail` step."""

    def __init__(self, message: str, step_index: Optional[int] = None):
        self.step_index = step_index
        super().__init__(kind="fail", message=message)


class ProfileNotFound(PipelineError):
    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = list(available)
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(
            kind="profile",
            message=f"Profile '{name}' not found. Available profiles: {listing}",
        )


class ScheduleFileError(PipelineError):
    """A schedule file could not be read or has the wrong overall shape."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(kind="schedule-file", message=message, details={"file": path} if path else {})


class SchedulerError(PipelineError):
    def __init__(self, message: str):
        super().__init__(kind="scheduler", message=message)


class DaemonStartError(PipelineError):
    """The detached scheduler never became live."""

    def __init__(self, message: str, error_log: Optional[str] = None):
        self.error_log = error_log
        super().__init__(kind="daemon", message=message)


class WorkflowStopped(PipelineError):
    """A step with `continue: false` finished; the run ends as failed."""

    def __init__(self, step_index: int, line: Optional[int] = None):
        self.step_index = step_index
        self.line = line
        where = f"Step {step_index + 1}"
        if line is not None:
            where += f" (line {line})"
        super().__init__(
            kind="stopped",
            message=f"{where} completed, but workflow stopped due to continue: false",
        )


class ScheduleStoreError(PipelineError):
    """The persisted schedules could not be read; the file is left as is."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(kind="schedule-store", message=message, details={"file": path} if path else {})
