# executor.py
from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from . import settings
from .capture import parse_capture
from .conditions import evaluate
from .errors import PipelineError, StepFailure, WorkflowFailed, WorkflowStopped
from .history import HistoryStore, Recorder, StepRecord
from .model import (
    ChooseStep,
    FailStep,
    Option,
    ParallelStep,
    PromptStep,
    RunStep,
    Step,
    Workflow,
)
from .runner import TaskResult, TaskRunner
from .template import substitute
from .workspace import Workspace

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Ports
# ----------------------------------------------------------------------

class PromptPort(Protocol):
    def choose(self, message: str, options: Sequence[Option]) -> Option: ...

    def text(self, message: str, default: Optional[str] = None) -> str: ...


class OutputPort(Protocol):
    def step_header(self, title: str, line_number: Optional[int] = None, file_name: Optional[str] = None) -> None: ...

    def step_output(self, line: str, stream: str = "stdout") -> None: ...

    def step_footer(self, success: bool, duration: float) -> None: ...

    def error(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def parallel_start(self, count: int) -> None: ...

    def parallel_end(self, success: bool, duration: float) -> None: ...

    def total_duration(self, seconds: float) -> None: ...

    def timeline(self, records: Sequence[StepRecord]) -> None: ...


def default_backoff(attempt: int) -> float:
    """Seconds to wait before retry `attempt + 1`: 1, 2, 4, ... capped."""
    return min(2 ** (attempt - 1), settings.RETRY_BACKOFF_CAP)


STEP_TYPE_NAMES = {
    RunStep: "run",
    ChooseStep: "choose",
    PromptStep: "prompt",
    ParallelStep: "parallel",
    FailStep: "fail",
}


@dataclass
class BranchOutcome:
    success: bool
    transcript: List[Tuple[str, TaskResult]] = field(default_factory=list)
    error: Optional[str] = None


# ----------------------------------------------------------------------
# Executor
# ----------------------------------------------------------------------

class Executor:
    """
    Interprets a parsed Workflow step by step.

    Args:
        prompt: asks the user for choices and free text
        output: renders step progress; the executor never reads it back
        execution_vars: profile/CLI variables; bound names skip prompts
        runner: TaskRunner (defaults to one writing to `output`)
        history_store: where the run's history is saved, if anywhere
        backoff: attempt number -> seconds to wait before the next retry
        sleep: used for retry waits
    """

    def __init__(
        self,
        prompt: PromptPort,
        output: OutputPort,
        execution_vars: Optional[Dict[str, str]] = None,
        runner: Optional[TaskRunner] = None,
        history_store: Optional[HistoryStore] = None,
        backoff: Callable[[int], float] = default_backoff,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.prompt = prompt
        self.output = output
        self.execution_vars: Dict[str, str] = dict(execution_vars or {})
        self.runner = runner or TaskRunner(output)
        self.history_store = history_store
        self.backoff = backoff
        self.sleep = sleep
        self.recorder = Recorder()
        self.workspace = Workspace()
        self.last_history_path: Optional[Path] = None

    def execute(self, workflow: Workflow, execution_vars: Optional[Dict[str, str]] = None) -> None:
        """
        Run every step in order.

        Raises:
            StepFailure: a run/parallel step failed with no recovery path
            WorkflowFailed: a `fail` step was reached
            WorkflowStopped: a step with `continue: false` finished
        """
        bound = dict(self.execution_vars)
        bound.update(execution_vars or {})

        ws = Workspace()
        for name, value in bound.items():
            ws.set_variable(name, value)
        self.workspace = ws
        self.recorder.reset()

        started = time.monotonic()
        try:
            for index, step in enumerate(workflow.steps):
                if step.when is not None and not evaluate(step.when, ws, self._exists_for(workflow)):
                    logger.debug("step %d skipped by condition", index + 1)
                    continue
                try:
                    self._execute_step(workflow, step, index, ws, bound)
                except PipelineError:
                    raise
                except Exception:
                    ws.set_step_result(index, False)
                    raise

            self.output.total_duration(time.monotonic() - started)
            self.output.timeline(self.recorder.history().records)
        finally:
            self._save_history()

    # ------------------------------------------------------------------
    # Step dispatch
    # ------------------------------------------------------------------

    def _execute_step(self, workflow: Workflow, step: Step, index: int, ws: Workspace, bound: Dict[str, str]) -> None:
        if isinstance(step, RunStep):
            self._execute_run(workflow, step, index, ws)
        elif isinstance(step, ChooseStep):
            self._execute_choose(step, index, ws, bound)
        elif isinstance(step, PromptStep):
            self._execute_prompt(step, index, ws, bound)
        elif isinstance(step, ParallelStep):
            self._execute_parallel(workflow, step, index, ws)
        elif isinstance(step, FailStep):
            self._execute_fail(step, index, ws)
        else:
            raise TypeError(f"unknown step type: {type(step).__name__}")

    def _execute_run(self, workflow: Workflow, step: RunStep, index: int, ws: Workspace) -> None:
        started = time.time()
        command, result = self._run_with_recovery(workflow, step, index, ws, transcript=None)
        ws.set_step_result(index, result.success, result.exit_code)
        if result.success:
            self._apply_captures(step, result, ws)
        self._record(workflow, step, index, ws, result, started, resolved_command=command)

        if not result.success and step.continue_on_error is not True:
            raise StepFailure(index, _failure_reason(result), line=workflow.line_of(index), exit_code=result.exit_code)
        if not result.success:
            self.output.info(f"Step {index + 1} failed, continuing")
        if step.continue_on_error is False:
            raise WorkflowStopped(index, line=workflow.line_of(index))

    def _execute_choose(self, step: ChooseStep, index: int, ws: Workspace, bound: Dict[str, str]) -> None:
        started = time.time()
        variable = step.variable
        selected = bound.get(variable)
        if selected is not None and selected not in {o.id for o in step.options}:
            logger.warning("bound value %r for '%s' is not an option; prompting", selected, variable)
            selected = None
        if selected is None:
            selected = self.prompt.choose(substitute(step.message, ws), step.options).id
        ws.set_choice(selected, selected)
        ws.set_variable(variable, selected)
        ws.set_step_result(index, True)
        self._record(None, step, index, ws, None, started, choice_value=selected)

    def _execute_prompt(self, step: PromptStep, index: int, ws: Workspace, bound: Dict[str, str]) -> None:
        started = time.time()
        if step.store_as in bound:
            value = bound[step.store_as]
        else:
            default = substitute(step.default, ws) if step.default is not None else None
            value = self.prompt.text(substitute(step.message, ws), default=default)
        ws.set_variable(step.store_as, value)
        ws.set_fact(step.store_as, value)
        ws.set_step_result(index, True)
        self._record(None, step, index, ws, None, started, prompt_value=value)

    def _execute_fail(self, step: FailStep, index: int, ws: Workspace) -> None:
        message = substitute(step.message, ws)
        ws.set_step_result(index, False)
        self._record(None, step, index, ws, None, time.time(), status="failure")
        raise WorkflowFailed(message, step_index=index)

    # ------------------------------------------------------------------
    # Parallel
    # ------------------------------------------------------------------

    def _execute_parallel(self, workflow: Workflow, step: ParallelStep, index: int, ws: Workspace) -> None:
        exists = self._exists_for(workflow)
        active: List[Tuple[int, Step, Workspace]] = []
        for b, branch in enumerate(step.branches):
            clone = ws.clone()
            if branch.when is not None and not evaluate(branch.when, clone, exists):
                continue
            active.append((b, branch, clone))

        if not active:
            self.output.info(f"Parallel step {index + 1}: all branches skipped")
            ws.set_step_result(index, True)
            return

        self.output.parallel_start(len(active))
        started = time.monotonic()
        outcomes: Dict[int, BranchOutcome] = {}

        with ThreadPoolExecutor(max_workers=len(active)) as pool:
            futures = {
                pool.submit(self._run_branch, workflow, branch, clone, index * settings.PARALLEL_INDEX_STRIDE + b): b
                for b, branch, clone in active
            }
            # every branch settles; a failure never cancels its siblings
            for fut in as_completed(futures):
                b = futures[fut]
                try:
                    outcomes[b] = fut.result()
                except Exception as e:
                    logger.exception("parallel branch %d crashed", b + 1)
                    outcomes[b] = BranchOutcome(success=False, error=str(e))

        for b, _branch, clone in active:
            outcome = outcomes[b]
            for title, result in outcome.transcript:
                self._show_buffered(title, result)
            if outcome.error:
                self.output.error(f"Branch {b + 1}: {outcome.error}")
            for name, value in clone.all_facts().items():
                ws.set_fact(name, value)
            for name, value in clone.all_variables().items():
                ws.set_variable(name, value)

        ok = all(outcomes[b].success for b, _, _ in active)
        ws.set_step_result(index, ok)
        self.output.parallel_end(ok, time.monotonic() - started)

        if not ok:
            raise StepFailure(
                index,
                "one or more branches failed",
                line=workflow.line_of(index),
                label="Parallel step",
            )

    def _run_branch(self, workflow: Workflow, branch: Step, ws: Workspace, branch_index: int) -> BranchOutcome:
        if isinstance(branch, FailStep):
            message = substitute(branch.message, ws)
            ws.set_step_result(branch_index, False)
            self._record(None, branch, branch_index, ws, None, time.time(), status="failure")
            return BranchOutcome(success=False, error=message)
        if not isinstance(branch, RunStep):
            raise TypeError(f"{STEP_TYPE_NAMES.get(type(branch), type(branch).__name__)} step cannot run in parallel")

        transcript: List[Tuple[str, TaskResult]] = []
        started = time.time()
        command, result = self._run_with_recovery(workflow, branch, None, ws, transcript=transcript)
        ws.set_step_result(branch_index, result.success, result.exit_code)
        if result.success:
            self._apply_captures(branch, result, ws)
        self._record(workflow, branch, branch_index, ws, result, started, resolved_command=command)
        return BranchOutcome(
            success=result.success or branch.continue_on_error is True,
            transcript=transcript,
        )

    # ------------------------------------------------------------------
    # Run + retry + onError
    # ------------------------------------------------------------------

    def _run_with_recovery(
        self,
        workflow: Workflow,
        step: RunStep,
        index: Optional[int],
        ws: Workspace,
        transcript: Optional[List[Tuple[str, TaskResult]]],
    ) -> Tuple[str, TaskResult]:
        command = substitute(step.command, ws)
        shell = step.shell or workflow.shell
        buffered = bool(step.captures) or transcript is not None
        line = workflow.line_of(index) if index is not None else None

        def attempt(cmd: str, timeout: Optional[float], retry: float) -> TaskResult:
            tries = 0
            while True:
                tries += 1
                result = self.runner.run(
                    cmd,
                    cwd=workflow.base_dir,
                    shell=shell,
                    timeout=timeout,
                    buffered=buffered,
                    title=cmd,
                    line_number=line,
                    file_name=workflow.file_name,
                )
                if transcript is not None:
                    transcript.append((cmd, result))
                elif buffered:
                    self._show_buffered(cmd, result)
                if result.success or tries > retry:
                    return result
                delay = self.backoff(tries)
                logger.info("retrying %r in %.1fs (attempt %d)", cmd, delay, tries + 1)
                if transcript is None:
                    self.output.info(f"Retrying in {delay:g}s ({tries}/{_fmt_retry(retry)})")
                self.sleep(delay)

        result = attempt(command, step.timeout, step.retry)
        if result.success or step.on_error is None:
            return command, result

        for fallback in step.on_error.chain():
            fallback_cmd = substitute(fallback.command, ws)
            if transcript is None:
                self.output.info(f"Running onError fallback: {fallback_cmd}")
            result = attempt(fallback_cmd, fallback.timeout, fallback.retry)
            if result.success:
                break
        return command, result

    def _apply_captures(self, step: RunStep, result: TaskResult, ws: Workspace) -> None:
        for capture in step.captures:
            value = parse_capture(capture, result.stdout)
            if value is not None:
                ws.set_variable(capture.store_as, value)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _show_buffered(self, title: str, result: TaskResult) -> None:
        self.output.step_header(title)
        for line in result.stdout:
            self.output.step_output(line, stream="stdout")
        for line in result.stderr:
            self.output.step_output(line, stream="stderr")
        self.output.step_footer(result.success, result.duration)

    def _exists_for(self, workflow: Workflow) -> Callable[[str], bool]:
        base = Path(workflow.base_dir) if workflow.base_dir else Path.cwd()
        return lambda p: (base / Path(p).expanduser()).exists()

    def _record(
        self,
        workflow: Optional[Workflow],
        step: Step,
        index: int,
        ws: Workspace,
        result: Optional[TaskResult],
        started: float,
        status: Optional[str] = None,
        resolved_command: Optional[str] = None,
        choice_value: Optional[str] = None,
        prompt_value: Optional[str] = None,
    ) -> None:
        output: Dict = {}
        if result is not None:
            output = {
                "success": result.success,
                "exitCode": result.exit_code,
                "stdout": list(result.stdout),
                "stderr": list(result.stderr),
            }
            status = status or ("success" if result.success else "failure")
        self.recorder.record(StepRecord(
            step={"type": STEP_TYPE_NAMES[type(step)], **asdict(step)},
            context={
                "stepIndex": index,
                "lineNumber": workflow.line_of(index) if workflow else None,
                "variables": ws.all_variables(),
            },
            output=output,
            duration=time.time() - started,
            status=status or "success",
            started_at=started,
            resolved_command=resolved_command,
            choice_value=choice_value,
            prompt_value=prompt_value,
        ))

    def _save_history(self) -> None:
        if self.history_store is None:
            return
        try:
            self.last_history_path = self.history_store.save(self.recorder.history())
        except OSError as e:
            logger.warning("could not save workflow history: %s", e)


def _failure_reason(result: TaskResult) -> str:
    if result.timed_out:
        return result.stderr[-1] if result.stderr else "timed out"
    if result.exit_code is None:
        return result.stderr[-1] if result.stderr else "command could not be started"
    return f"exit code {result.exit_code}"


def _fmt_retry(retry: float) -> str:
    return "∞" if retry == float("inf") else str(int(retry))
