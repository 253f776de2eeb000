# ui/console.py
"""Console output formatting for pipeliner."""

from __future__ import annotations

import sys
import threading
from datetime import datetime
from typing import Optional, Sequence


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, silent: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
            silent: If True, suppress step output (errors are still printed)
        """
        self.debug = debug
        self.silent = silent
        self._lock = threading.Lock()

    def _out(self, text: str = "", err: bool = False) -> None:
        with self._lock:
            print(text, file=sys.stderr if err else sys.stdout, flush=True)

    # ---- steps ----

    def step_header(
        self,
        title: str,
        line_number: Optional[int] = None,
        file_name: Optional[str] = None,
    ) -> None:
        if self.silent:
            return
        where = ""
        if file_name and line_number:
            where = f"  ({file_name}:{line_number})"
        elif line_number:
            where = f"  (line {line_number})"
        self._out(f"\n▶ {title}{where}")

    def step_output(self, line: str, stream: str = "stdout") -> None:
        if self.silent:
            return
        self._out(f"  {line}", err=(stream == "stderr"))

    def step_footer(self, success: bool, duration: float) -> None:
        if self.silent:
            return
        status = "success" if success else "failed"
        self._out(f"STATUS: {status} ({duration:.1f}s)")

    # ---- parallel ----

    def parallel_start(self, count: int) -> None:
        if not self.silent:
            self._out(f"\nPARALLEL: {count} branch(es)")

    def parallel_end(self, success: bool, duration: float) -> None:
        if not self.silent:
            status = "success" if success else "failed"
            self._out(f"PARALLEL {status.upper()} ({duration:.1f}s)")

    # ---- summaries ----

    def total_duration(self, seconds: float) -> None:
        if not self.silent:
            self._out(f"\nTotal duration: {seconds:.1f}s")

    def timeline(self, records: Sequence) -> None:
        if self.silent or not records:
            return
        self._out("\nTIMELINE")
        self._out("-" * 8)
        for record in records:
            when = datetime.fromtimestamp(record.started_at).strftime("%H:%M:%S")
            kind = record.step.get("type", "?")
            label = record.resolved_command or record.choice_value or record.prompt_value or ""
            mark = "ok" if record.status == "success" else "FAILED"
            self._out(f"  {when}  {kind:<8} {record.duration:6.1f}s  {mark:<6} {label}")

    # ---- general ----

    def info(self, message: str) -> None:
        """Print informational message."""
        if not self.silent:
            self._out(message)

    def error(self, message: str) -> None:
        self._out(f"ERROR: {message}", err=True)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        self._out(f"\nERROR: {title}", err=True)
        self._out(message, err=True)
        for detail in details or []:
            self._out(f"  {detail}", err=True)
        if suggestion:
            self._out(f"\n{suggestion}", err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            self._out(f"Error: {exc}", err=True)

    # ---- scheduler ----

    def print_scheduler_started(self, count: int, daemon_mode: bool) -> None:
        mode = "daemon" if daemon_mode else "foreground"
        self._out("\nSCHEDULER STARTED")
        self._out(f"Mode: {mode}")
        self._out(f"Active schedules: {count}")

    def print_schedule_run(self, name: str, status: str, duration: Optional[float] = None) -> None:
        line = f"SCHEDULE {status.upper()}: {name}"
        if duration is not None:
            line += f" ({duration:.1f}s)"
        self._out(line)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
