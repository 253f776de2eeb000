"""Test configuration and fixtures."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

import pytest

from pipeliner.executor import Executor
from pipeliner.model import Option
from pipeliner.runner import TaskResult


class RecordingOutput:
    """Output port that keeps every call for assertions."""

    def __init__(self) -> None:
        self.events: List[tuple] = []
        self._lock = threading.Lock()

    def _add(self, *event) -> None:
        with self._lock:
            self.events.append(event)

    def step_header(self, title, line_number=None, file_name=None):
        self._add("header", title)

    def step_output(self, line, stream="stdout"):
        self._add("line", stream, line)

    def step_footer(self, success, duration):
        self._add("footer", success)

    def error(self, message):
        self._add("error", message)

    def info(self, message):
        self._add("info", message)

    def parallel_start(self, count):
        self._add("parallel_start", count)

    def parallel_end(self, success, duration):
        self._add("parallel_end", success)

    def total_duration(self, seconds):
        self._add("total")

    def timeline(self, records):
        self._add("timeline", len(records))

    def print_scheduler_started(self, count, daemon_mode):
        self._add("scheduler_started", count, daemon_mode)

    def print_schedule_run(self, name, status, duration=None):
        self._add("schedule_run", name, status)

    def of(self, kind: str) -> List[tuple]:
        return [e for e in self.events if e[0] == kind]


class ScriptedPrompt:
    """Prompt port answering from queues; records every question."""

    def __init__(self, choices: Sequence[str] = (), texts: Sequence[str] = ()):
        self.choices = list(choices)
        self.texts = list(texts)
        self.asked: List[str] = []

    def choose(self, message: str, options: Sequence[Option]) -> Option:
        self.asked.append(message)
        wanted = self.choices.pop(0)
        return next(o for o in options if o.id == wanted)

    def text(self, message: str, default: Optional[str] = None) -> str:
        self.asked.append(message)
        return self.texts.pop(0) if self.texts else (default or "")


class FakeRunner:
    """
    TaskRunner stand-in. `script` maps a command to a TaskResult or to a
    callable returning one; anything unscripted succeeds with no output.
    """

    def __init__(self, script: Optional[Dict[str, object]] = None):
        self.script = dict(script or {})
        self.commands: List[str] = []
        self.calls: List[dict] = []
        self._lock = threading.Lock()

    def run(self, command, **kwargs) -> TaskResult:
        with self._lock:
            self.commands.append(command)
            self.calls.append({"command": command, **kwargs})
        entry = self.script.get(command)
        if callable(entry):
            return entry()
        if isinstance(entry, TaskResult):
            return TaskResult(entry.success, list(entry.stdout), list(entry.stderr), entry.exit_code, entry.timed_out)
        return TaskResult(True, [], [], exit_code=0)


def ok(*stdout: str) -> TaskResult:
    return TaskResult(True, list(stdout), [], exit_code=0)


def failed(code: int = 1, *stderr: str) -> TaskResult:
    return TaskResult(False, [], list(stderr), exit_code=code)


@pytest.fixture
def output() -> RecordingOutput:
    return RecordingOutput()


@pytest.fixture
def make_executor(output: RecordingOutput) -> Callable[..., Executor]:
    """Build an Executor wired to fakes; retries never sleep."""

    def _make(runner=None, prompt=None, **kwargs) -> Executor:
        return Executor(
            prompt=prompt or ScriptedPrompt(),
            output=output,
            runner=runner or FakeRunner(),
            sleep=lambda _s: None,
            **kwargs,
        )

    return _make


@pytest.fixture
def temp_state_dir(tmp_path: Path) -> Path:
    """Provide a temporary state directory."""
    state_dir = tmp_path / ".pipeliner"
    state_dir.mkdir()
    return state_dir


@pytest.fixture
def write_file(tmp_path: Path) -> Callable[[str, str], Path]:
    def _write(name: str, text: str) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
