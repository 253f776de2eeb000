# runner.py
from __future__ import annotations

import codecs
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass, field
from typing import IO, List, Optional, Sequence, Tuple

KILL_GRACE_SECONDS = 2.0
READER_JOIN_SECONDS = 5.0


@dataclass
class TaskResult:
    success: bool
    stdout: List[str] = field(default_factory=list)
    stderr: List[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    timed_out: bool = False
    duration: float = 0.0


def resolve_shell_argv(command: str, shell: Optional[Sequence[str]] = None) -> List[str]:
    """argv for running `command`: configured shell, else the user's shell."""
    if shell:
        return [*shell, command]
    if os.name == "nt":
        return ["cmd.exe", "/c", command]
    return [os.environ.get("SHELL") or "/bin/sh", "-c", command]


def split_lines(chunk: str, pending: str = "") -> Tuple[List[str], str]:
    """
    Line-buffer a chunk of process output.

    Returns the complete lines and the incomplete trailing text, which the
    caller feeds back in with the next chunk.
    """
    parts = (pending + chunk).split("\n")
    return [p.rstrip("\r") for p in parts[:-1]], parts[-1]


class TaskRunner:
    """Runs one shell command, streaming or buffering its output."""

    def __init__(self, output=None):
        self.output = output

    def run(
        self,
        command: str,
        *,
        cwd: Optional[str] = None,
        shell: Optional[Sequence[str]] = None,
        timeout: Optional[float] = None,
        buffered: bool = False,
        title: Optional[str] = None,
        line_number: Optional[int] = None,
        file_name: Optional[str] = None,
    ) -> TaskResult:
        realtime = not buffered and self.output is not None
        if realtime:
            self.output.step_header(title or command, line_number=line_number, file_name=file_name)

        started = time.monotonic()
        result = self._spawn_and_wait(command, cwd, shell, timeout, realtime)
        result.duration = time.monotonic() - started

        if realtime:
            self.output.step_footer(result.success, result.duration)
        return result

    # ------------------------------------------------------------------

    def _spawn_and_wait(self, command, cwd, shell, timeout, realtime: bool) -> TaskResult:
        stdout: List[str] = []
        stderr: List[str] = []

        try:
            proc = subprocess.Popen(
                resolve_shell_argv(command, shell),
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=(os.name != "nt"),
            )
        except OSError as e:
            line = f"Error: {e}"
            stderr.append(line)
            if realtime:
                self.output.step_output(line, stream="stderr")
            return TaskResult(success=False, stdout=stdout, stderr=stderr)

        readers = [
            threading.Thread(target=self._drain, args=(proc.stdout, stdout, "stdout", realtime), daemon=True),
            threading.Thread(target=self._drain, args=(proc.stderr, stderr, "stderr", realtime), daemon=True),
        ]
        for t in readers:
            t.start()

        timed_out = False
        try:
            proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _terminate(proc)
        except KeyboardInterrupt:
            _terminate(proc)
            raise
        finally:
            for t in readers:
                t.join(READER_JOIN_SECONDS)

        if timed_out:
            line = f"Command timed out after {timeout:g} seconds"
            stderr.append(line)
            if realtime:
                self.output.step_output(line, stream="stderr")
            return TaskResult(False, stdout, stderr, exit_code=proc.returncode, timed_out=True)

        return TaskResult(proc.returncode == 0, stdout, stderr, exit_code=proc.returncode)

    def _drain(self, stream: IO[bytes], sink: List[str], name: str, realtime: bool) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while True:
                data = stream.read1(4096)
                if not data:
                    break
                lines, pending = split_lines(decoder.decode(data), pending)
                self._emit(lines, sink, name, realtime)
        except (OSError, ValueError):
            pass  # pipe closed underneath us after a kill
        finally:
            tail = pending + decoder.decode(b"", final=True)
            if tail.strip():
                self._emit([tail.rstrip("\r")], sink, name, realtime)
            stream.close()

    def _emit(self, lines: List[str], sink: List[str], name: str, realtime: bool) -> None:
        for line in lines:
            sink.append(line)
            if realtime:
                self.output.step_output(line, stream=name)


def _terminate(proc: subprocess.Popen) -> None:
    """SIGTERM the whole process group, SIGKILL if it lingers."""
    try:
        if os.name == "nt":
            proc.terminate()
        else:
            os.killpg(proc.pid, signal.SIGTERM)
    except (ProcessLookupError, PermissionError):
        pass
    try:
        proc.wait(timeout=KILL_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        if os.name == "nt":
            proc.kill()
        else:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
        proc.wait()
