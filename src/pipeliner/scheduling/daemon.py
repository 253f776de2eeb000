# scheduling/daemon.py
from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from pipeliner import settings
from pipeliner.errors import DaemonStartError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DaemonStatus:
    running: bool
    pid: Optional[int] = None
    started_at: Optional[datetime] = None

    @property
    def uptime(self) -> Optional[float]:
        if not self.running or self.started_at is None:
            return None
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()


def is_process_alive(pid: int) -> bool:
    """
    Signal-0 probe: nothing is delivered, only existence is checked.

    A PID we may not signal belongs to another user, so it is not our daemon.
    """
    try:
        os.kill(pid, 0)
    except OSError:
        return False
    return True


class DaemonManager:
    """PID/start-time bookkeeping and the detached background spawn."""

    def __init__(self, state_dir: Path, sleep: Callable[[float], None] = time.sleep):
        self.dir = Path(state_dir) / "daemon"
        self.pid_file = self.dir / "scheduler.pid"
        self.started_file = self.dir / "scheduler.started"
        self.error_log = self.dir / "error.log"
        self.log_file = self.dir / "scheduler.log"
        self.sleep = sleep

    # ---- pid files ----

    def get_pid(self) -> Optional[int]:
        """PID of a live daemon, removing the PID file if it is stale or garbage."""
        try:
            text = self.pid_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            pid = int(text)
        except ValueError:
            logger.warning("removing invalid PID file %s", self.pid_file)
            self.remove_pid()
            return None
        if pid <= 0 or not is_process_alive(pid):
            logger.info("removing stale PID file for %s", pid)
            self.remove_pid()
            return None
        return pid

    def is_running(self) -> bool:
        return self.get_pid() is not None

    def save_pid(self, pid: Optional[int] = None) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)
        self.pid_file.write_text(str(pid or os.getpid()), encoding="utf-8")
        self.started_file.write_text(datetime.now(timezone.utc).isoformat(), encoding="utf-8")

    def remove_pid(self) -> None:
        for path in (self.pid_file, self.started_file):
            path.unlink(missing_ok=True)

    def start_time(self) -> Optional[datetime]:
        try:
            return datetime.fromisoformat(self.started_file.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            pass
        try:
            return datetime.fromtimestamp(self.pid_file.stat().st_mtime, tz=timezone.utc)
        except FileNotFoundError:
            return None

    def status(self) -> DaemonStatus:
        pid = self.get_pid()
        if pid is None:
            return DaemonStatus(running=False)
        return DaemonStatus(running=True, pid=pid, started_at=self.start_time())

    # ---- error log ----

    def write_error(self, message: str) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now(timezone.utc).isoformat()
        with self.error_log.open("a", encoding="utf-8") as f:
            f.write(f"[{stamp}] {message}\n")

    def read_error_log(self) -> Optional[str]:
        try:
            text = self.error_log.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        return text or None

    def clear_error_log(self) -> None:
        self.error_log.unlink(missing_ok=True)

    # ---- process control ----

    def spawn_background(self, argv: List[str]) -> int:
        """
        Start a detached copy of the CLI and wait until it is alive.

        Raises:
            DaemonStartError: the child exited or never came up
        """
        self.dir.mkdir(parents=True, exist_ok=True)
        self.clear_error_log()
        env = dict(os.environ)
        env[settings.DAEMON_MODE_ENV] = "1"

        proc = subprocess.Popen(
            argv,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )
        logger.info("spawned background scheduler pid=%s", proc.pid)

        for _ in range(settings.DAEMON_START_ATTEMPTS):
            self.sleep(settings.DAEMON_START_DELAY)
            if proc.poll() is not None:
                break
            if self.get_pid() == proc.pid:
                return proc.pid

        if proc.poll() is None and is_process_alive(proc.pid):
            return proc.pid

        raise DaemonStartError(
            f"Background scheduler exited during startup (exit code {proc.returncode})",
            error_log=self.read_error_log(),
        )

    def stop(self) -> bool:
        """SIGTERM the daemon, SIGKILL after a grace period. False if none ran."""
        pid = self.get_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            self.remove_pid()
            return True
        self.sleep(settings.DAEMON_STOP_GRACE)
        if is_process_alive(pid):
            logger.warning("scheduler pid=%s ignored SIGTERM, killing", pid)
            try:
                os.kill(pid, getattr(signal, "SIGKILL", signal.SIGTERM))
            except ProcessLookupError:
                pass
            self.sleep(0.5)
        self.remove_pid()
        return True


class ShutdownSignals:
    """
    SIGINT/SIGTERM handling for a running scheduler.

    The first signal requests shutdown; any later one is ignored while
    cleanup runs.
    """

    def __init__(self) -> None:
        self.stop_requested = threading.Event()
        self.cleaning_up = False

    def install(self) -> None:
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame) -> None:
        if self.cleaning_up:
            return
        self.cleaning_up = True
        logger.info("received signal %s, shutting down", signum)
        self.stop_requested.set()

    def wait(self, poll: float = 1.0) -> None:
        while not self.stop_requested.wait(poll):
            pass


def run_until_signal(scheduler, daemon_mode: bool, signals: Optional[ShutdownSignals] = None) -> None:
    """Block until SIGINT/SIGTERM, then shut the scheduler down once."""
    signals = signals or ShutdownSignals()
    signals.install()
    try:
        signals.wait()
    except KeyboardInterrupt:
        signals.cleaning_up = True
    scheduler.shutdown(daemon_mode)
