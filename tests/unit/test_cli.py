"""Tests for the command line interface."""

from pathlib import Path

import pytest
from click.testing import CliRunner

from pipeliner import cli as cli_mod
from pipeliner import settings
from pipeliner.cli import cli, format_duration
from pipeliner.scheduling.store import ScheduleStore


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, temp_state_dir: Path) -> Path:
    monkeypatch.setattr(settings, "STATE_DIR", temp_state_dir)
    monkeypatch.delenv(settings.DAEMON_MODE_ENV, raising=False)
    monkeypatch.setattr(cli_mod, "configure_logging", lambda *a, **k: None)
    return temp_state_dir


@pytest.fixture
def invoke():
    runner = CliRunner()

    def _invoke(*args):
        return runner.invoke(cli, list(args))

    return _invoke


GREETING = """\
profiles:
  - name: ci
    var: {who: profile}
steps:
  - run: echo hello {{who}}
"""


def test_run_with_cli_variable(invoke, write_file) -> None:
    path = write_file("greet.yaml", GREETING)
    result = invoke("run", str(path), "-v", "who=world")
    assert result.exit_code == 0, result.output
    assert "hello world" in result.output


def test_cli_variable_overrides_profile(invoke, write_file) -> None:
    path = write_file("greet.yaml", GREETING)
    assert "hello profile" in invoke("run", str(path), "-p", "ci").output
    assert "hello cli" in invoke("run", str(path), "-p", "ci", "-v", "who=cli").output


def test_run_writes_history(invoke, write_file, isolated_state: Path) -> None:
    path = write_file("greet.yaml", GREETING)
    invoke("run", str(path), "-v", "who=x")
    saved = list((isolated_state / "workflow-history").glob("workflow-*.json"))
    assert len(saved) == 1


def test_failed_step_exits_nonzero(invoke, write_file) -> None:
    path = write_file("bad.yaml", "steps:\n  - run: exit 3\n")
    result = invoke("run", str(path))
    assert result.exit_code == 1
    assert "Workflow failed" in result.output
    assert "exit code 3" in result.output


def test_unknown_profile(invoke, write_file) -> None:
    path = write_file("greet.yaml", GREETING)
    result = invoke("run", str(path), "-p", "nope")
    assert result.exit_code == 1
    assert "Available profiles: ci" in result.output


def test_missing_and_invalid_workflow(invoke, write_file, tmp_path: Path) -> None:
    result = invoke("run", str(tmp_path / "nope.yaml"))
    assert result.exit_code == 1
    assert "Workflow file not found" in result.output

    path = write_file("broken.yaml", "steps:\n  - bogus: 1\n")
    result = invoke("run", str(path))
    assert result.exit_code == 1
    assert "Unknown step type" in result.output


def test_malformed_var_is_usage_error(invoke, write_file) -> None:
    path = write_file("greet.yaml", GREETING)
    result = invoke("run", str(path), "-v", "novalue")
    assert result.exit_code == 2
    assert "KEY=VALUE" in result.output


def test_schedule_add_list_toggle_remove(invoke, write_file, isolated_state: Path) -> None:
    write_file("wf.yaml", "steps:\n  - run: echo hi\n")
    schedules = write_file(
        "schedules.yaml",
        """\
schedules:
  - {name: nightly, cron: "0 2 * * *", workflow: wf.yaml, timezone: "+9"}
  - {name: broken, cron: "nope", workflow: wf.yaml}
""",
    )

    result = invoke("schedule", "add", str(schedules))
    assert result.exit_code == 0, result.output
    assert "nightly" in result.output
    assert "'broken'" in result.output

    store = ScheduleStore(isolated_state / "schedules" / "schedules.json")
    [saved] = store.load()

    listing = invoke("schedule", "list").output
    assert saved.id in listing and "enabled" in listing and "tz=+9" in listing

    assert "disabled" in invoke("schedule", "toggle", saved.id).output
    assert store.get(saved.id).enabled is False

    assert invoke("schedule", "remove", saved.id).exit_code == 0
    assert store.load() == []
    assert invoke("schedule", "remove", saved.id).exit_code == 1


def test_schedule_add_with_nothing_valid_fails(invoke, write_file) -> None:
    schedules = write_file(
        "schedules.yaml",
        "schedules:\n  - {name: gone, cron: '* * * * *', workflow: missing.yaml}\n",
    )
    result = invoke("schedule", "add", str(schedules))
    assert result.exit_code == 1
    assert "workflow file not found" in result.output


def test_schedule_add_rejects_bad_file(invoke, write_file) -> None:
    result = invoke("schedule", "add", str(write_file("s.yaml", "schedules: []\n")))
    assert result.exit_code == 1
    assert "Invalid schedule file" in result.output


def test_status_and_stop_without_daemon(invoke) -> None:
    status = invoke("schedule", "status").output
    assert "Daemon: not running" in status
    assert "Schedules: 0 (0 enabled)" in status

    assert "not running" in invoke("schedule", "stop").output


def test_list_empty(invoke) -> None:
    assert "No schedules." in invoke("schedule", "list").output


@pytest.mark.parametrize(
    "seconds, expected",
    [(5, "5s"), (65, "1m 5s"), (3 * 3600 + 120, "3h 2m")],
)
def test_format_duration(seconds, expected) -> None:
    assert format_duration(seconds) == expected


def test_continue_false_exits_nonzero(invoke, write_file) -> None:
    path = write_file(
        "stop.yaml",
        "steps:\n  - run: echo first-ran\n    continue: false\n  - run: echo second-ran\n",
    )
    result = invoke("run", str(path))
    assert result.exit_code == 1
    assert "first-ran" in result.output
    assert "second-ran" not in result.output
    assert "completed, but workflow stopped due to continue: false" in result.output


@pytest.mark.parametrize(
    "args",
    [("schedule", "list"), ("schedule", "status"), ("schedule", "toggle", "abcd"), ("schedule", "remove", "abcd")],
)
def test_corrupt_store_is_reported_and_kept(invoke, isolated_state: Path, args) -> None:
    path = isolated_state / "schedules" / "schedules.json"
    path.parent.mkdir(parents=True)
    path.write_text("{broken")

    result = invoke(*args)

    assert result.exit_code == 1
    assert "Schedule store unreadable" in result.output
    assert path.read_text() == "{broken"


def test_schedule_add_refuses_to_overwrite_corrupt_store(invoke, write_file, isolated_state: Path) -> None:
    write_file("wf.yaml", "steps:\n  - run: echo hi\n")
    schedules = write_file("s.yaml", "schedules:\n  - {name: n, cron: '* * * * *', workflow: wf.yaml}\n")
    path = isolated_state / "schedules" / "schedules.json"
    path.parent.mkdir(parents=True)
    path.write_text('{"schedules": [{"cron": 5}]}')

    result = invoke("schedule", "add", str(schedules))

    assert result.exit_code == 1
    assert path.read_text() == '{"schedules": [{"cron": 5}]}'
