"""Unit tests for daemon PID bookkeeping and signal handling."""

import os
import signal
import subprocess
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pipeliner.errors import DaemonStartError
from pipeliner.scheduling.daemon import DaemonManager, ShutdownSignals, is_process_alive, run_until_signal


@pytest.fixture
def manager(temp_state_dir: Path) -> DaemonManager:
    return DaemonManager(temp_state_dir, sleep=lambda _s: None)


def dead_pid() -> int:
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def test_no_pid_file_means_not_running(manager: DaemonManager) -> None:
    assert manager.get_pid() is None
    status = manager.status()
    assert status.running is False
    assert status.uptime is None


def test_own_pid_is_running_with_uptime(manager: DaemonManager) -> None:
    manager.save_pid()
    status = manager.status()

    assert status.running is True
    assert status.pid == os.getpid()
    assert status.started_at is not None
    assert 0 <= status.uptime < 60


def test_stale_pid_file_is_cleaned_up(manager: DaemonManager) -> None:
    manager.save_pid(dead_pid())
    assert manager.pid_file.exists()

    assert manager.is_running() is False
    assert not manager.pid_file.exists()
    assert not manager.started_file.exists()


def test_garbage_pid_file_is_cleaned_up(manager: DaemonManager) -> None:
    manager.dir.mkdir(parents=True, exist_ok=True)
    manager.pid_file.write_text("not-a-pid")
    assert manager.get_pid() is None
    assert not manager.pid_file.exists()


def test_start_time_falls_back_to_pid_file_mtime(manager: DaemonManager) -> None:
    manager.save_pid()
    manager.started_file.unlink()
    started = manager.start_time()
    assert started is not None
    assert abs((datetime.now(timezone.utc) - started).total_seconds()) < 60


def test_error_log_roundtrip(manager: DaemonManager) -> None:
    assert manager.read_error_log() is None
    manager.write_error("boom: cannot bind")
    assert "boom: cannot bind" in manager.read_error_log()
    manager.clear_error_log()
    assert manager.read_error_log() is None


def test_is_process_alive() -> None:
    assert is_process_alive(os.getpid())
    assert not is_process_alive(dead_pid())


def test_pid_owned_by_another_user_is_not_our_daemon(manager: DaemonManager, monkeypatch) -> None:
    def refuse(pid, sig):
        raise PermissionError(1, "Operation not permitted")

    manager.save_pid(4242)
    monkeypatch.setattr(os, "kill", refuse)

    assert not is_process_alive(4242)
    assert manager.get_pid() is None
    assert not manager.pid_file.exists()


def test_stop_when_not_running(manager: DaemonManager) -> None:
    assert manager.stop() is False


@pytest.mark.skipif(sys.platform == "win32", reason="posix signals")
def test_stop_terminates_daemon_process(manager: DaemonManager) -> None:
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    try:
        manager.save_pid(proc.pid)
        manager.sleep = lambda _s: proc.wait(timeout=10)
        assert manager.stop() is True
        assert proc.poll() is not None
        assert not manager.pid_file.exists()
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()


def test_spawn_background_reports_error_log(manager: DaemonManager) -> None:
    # the child writes the error log and exits, as a failed daemon start does
    script = (
        "import sys, pathlib; "
        f"pathlib.Path({str(manager.error_log)!r}).write_text('scheduler crashed: bad config'); "
        "sys.exit(1)"
    )
    manager.sleep = lambda _s: time.sleep(0.3)

    with pytest.raises(DaemonStartError) as excinfo:
        manager.spawn_background([sys.executable, "-c", script])
    assert "bad config" in excinfo.value.error_log


def test_spawn_background_returns_pid_once_child_registers(manager: DaemonManager) -> None:
    script = (
        "import os, pathlib, time; "
        f"p = pathlib.Path({str(manager.pid_file)!r}); "
        "p.write_text(str(os.getpid())); "
        "time.sleep(30)"
    )
    manager.sleep = lambda _s: time.sleep(0.3)
    pid = manager.spawn_background([sys.executable, "-c", script])
    try:
        assert is_process_alive(pid)
    finally:
        os.kill(pid, signal.SIGTERM)


def test_second_signal_is_ignored() -> None:
    signals = ShutdownSignals()
    signals._handler(signal.SIGTERM, None)
    assert signals.stop_requested.is_set()
    assert signals.cleaning_up is True

    signals.stop_requested.clear()
    signals._handler(signal.SIGINT, None)
    assert not signals.stop_requested.is_set()


def test_run_until_signal_shuts_down_once(monkeypatch) -> None:
    class FakeScheduler:
        def __init__(self):
            self.calls = []

        def shutdown(self, daemon_mode):
            self.calls.append(daemon_mode)

    signals = ShutdownSignals()
    monkeypatch.setattr(signals, "install", lambda: None)
    signals._handler(signal.SIGTERM, None)
    signals._handler(signal.SIGTERM, None)

    scheduler = FakeScheduler()
    run_until_signal(scheduler, daemon_mode=True, signals=signals)
    assert scheduler.calls == [True]
