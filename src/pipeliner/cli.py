# cli.py
from __future__ import annotations

import functools
import os
import sys
import traceback
from pathlib import Path

import click

from pipeliner import settings
from pipeliner.errors import (
    DaemonStartError,
    PipelineError,
    ScheduleFileError,
    ScheduleStoreError,
    SchedulerError,
    WorkflowValidationError,
)
from pipeliner.executor import Executor
from pipeliner.history import HistoryStore
from pipeliner.logging_config import configure_logging
from pipeliner.parser import load_workflow, resolve_profile
from pipeliner.scheduling.daemon import DaemonManager, run_until_signal
from pipeliner.scheduling.schedule_file import add_schedules_from_file
from pipeliner.scheduling.scheduler import Scheduler
from pipeliner.scheduling.store import ScheduleStore
from pipeliner.ui.console import Console, get_console, set_console
from pipeliner.ui.prompts import ClickPrompt


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------

def schedule_store() -> ScheduleStore:
    return ScheduleStore(settings.STATE_DIR / "schedules" / "schedules.json")


def daemon_manager() -> DaemonManager:
    return DaemonManager(settings.STATE_DIR)


def build_executor(console: Console) -> Executor:
    return Executor(
        prompt=ClickPrompt(),
        output=console,
        history_store=HistoryStore(settings.STATE_DIR / "workflow-history"),
    )


def build_scheduler(console: Console) -> Scheduler:
    def executor_factory(silent: bool = False) -> Executor:
        return build_executor(Console(debug=console.debug, silent=silent))

    return Scheduler(
        executor_factory=executor_factory,
        output=console,
        store=schedule_store(),
        daemon=daemon_manager(),
    )


def reports_store_errors(command):
    """Turn an unreadable schedule store into a one-line error and exit 1."""

    @functools.wraps(command)
    def wrapper(*args, **kwargs):
        try:
            return command(*args, **kwargs)
        except ScheduleStoreError as e:
            get_console().print_error("Schedule store unreadable", str(e))
            sys.exit(1)

    return wrapper


def parse_vars(pairs: tuple[str, ...]) -> dict[str, str]:
    """KEY=VALUE pairs from repeated -v options."""
    out: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got '{pair}'", param_hint="'-v/--var'")
        out[key.strip()] = value
    return out


def format_duration(seconds: float) -> str:
    seconds = int(seconds)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------

@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """pipeliner: run declarative YAML/JSON task workflows, now or on a schedule."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    if not os.environ.get(settings.DAEMON_MODE_ENV):
        configure_logging("DEBUG" if debug else "WARNING")


@cli.command()
@click.argument("workflow_file", type=click.Path(dir_okay=False))
@click.option("-p", "--profile", default=None, help="Use a profile's variables (skips their prompts)")
@click.option("-v", "--var", "variables", multiple=True, metavar="KEY=VALUE", help="Set a variable; repeatable")
@click.option("-s", "--silent", is_flag=True, default=False, help="Only print errors")
@click.pass_context
def run(ctx, workflow_file, profile, variables, silent):
    """Run a workflow file."""
    console = get_console()
    console.silent = silent
    cli_vars = parse_vars(variables)

    try:
        workflow = load_workflow(workflow_file)
        execution_vars = resolve_profile(workflow, profile) if profile else {}
        # CLI values win over the profile's
        execution_vars.update(cli_vars)
        build_executor(console).execute(workflow, execution_vars=execution_vars)

    except KeyboardInterrupt:
        console.error("Interrupted by user")
        sys.exit(130)
    except FileNotFoundError as e:
        console.print_error("Workflow file not found", str(e))
        sys.exit(1)
    except WorkflowValidationError as e:
        console.print_error("Invalid workflow", str(e))
        sys.exit(1)
    except PipelineError as e:
        console.error(f"Workflow failed: {e}")
        sys.exit(1)
    except click.exceptions.Abort:
        console.error("Aborted")
        sys.exit(1)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)


@cli.group()
def schedule():
    """Manage scheduled workflows and the scheduler daemon."""


@schedule.command("add")
@click.argument("schedule_file", type=click.Path(dir_okay=False))
@reports_store_errors
def schedule_add(schedule_file):
    """Add the schedules defined in a YAML/JSON schedule file."""
    console = get_console()
    try:
        report = add_schedules_from_file(Path(schedule_file), schedule_store())
    except ScheduleFileError as e:
        console.print_error("Invalid schedule file", str(e))
        sys.exit(1)

    for s in report.added:
        tz = f" [{s.timezone}]" if s.timezone else ""
        console.info(f"Added {s.id}: {s.display_name} ({s.cron}{tz})")
    if report.errors:
        console.print_error(
            "Some schedules were rejected",
            f"{len(report.errors)} schedule(s) not added:",
            details=report.errors,
        )
    if report.added and daemon_manager().is_running():
        console.info("The scheduler daemon is running; restart it to pick up new schedules.")
    if not report.added:
        sys.exit(1)


@schedule.command("list")
@reports_store_errors
def schedule_list():
    """List all schedules."""
    console = get_console()
    schedules = schedule_store().load()
    if not schedules:
        console.info("No schedules.")
        return
    for s in schedules:
        state = "enabled" if s.enabled else "disabled"
        last = s.last_run.isoformat(timespec="seconds") if s.last_run else "never"
        extras = []
        if s.timezone:
            extras.append(f"tz={s.timezone}")
        if s.profile:
            extras.append(f"profile={s.profile}")
        if s.silent:
            extras.append("silent")
        suffix = f"  ({', '.join(extras)})" if extras else ""
        console.info(f"{s.id}  {s.display_name}  '{s.cron}'  {state}  last run: {last}{suffix}")
        console.info(f"          {s.workflow_path}")


@schedule.command("remove")
@click.argument("schedule_id")
@reports_store_errors
def schedule_remove(schedule_id):
    """Remove a schedule by id."""
    console = get_console()
    if not schedule_store().remove(schedule_id):
        console.print_error("Schedule not found", f"No schedule with id '{schedule_id}'")
        sys.exit(1)
    console.info(f"Removed {schedule_id}")


@schedule.command("toggle")
@click.argument("schedule_id")
@reports_store_errors
def schedule_toggle(schedule_id):
    """Enable or disable a schedule."""
    console = get_console()
    s = schedule_store().toggle(schedule_id)
    if s is None:
        console.print_error("Schedule not found", f"No schedule with id '{schedule_id}'")
        sys.exit(1)
    console.info(f"{s.id} is now {'enabled' if s.enabled else 'disabled'}")


@schedule.command("start")
@click.option("-d", "--daemon", "daemon_flag", is_flag=True, default=False, help="Run detached in the background")
def schedule_start(daemon_flag):
    """Start the scheduler (foreground, or detached with --daemon)."""
    console = get_console()

    if os.environ.get(settings.DAEMON_MODE_ENV):
        _run_daemon_child()
        return

    if daemon_flag:
        daemon = daemon_manager()
        pid = daemon.get_pid()
        if pid is not None:
            console.print_error("Scheduler already running", f"Scheduler daemon is already running (PID: {pid})")
            sys.exit(1)
        try:
            pid = daemon.spawn_background([sys.executable, "-m", "pipeliner", "schedule", "start", "--daemon"])
        except DaemonStartError as e:
            console.print_error(
                "Scheduler daemon failed to start",
                str(e),
                details=(e.error_log or "no error log written").splitlines(),
                suggestion=f"See {daemon.error_log}",
            )
            sys.exit(1)
        console.info(f"Scheduler daemon started (PID: {pid})")
        return

    scheduler = build_scheduler(console)
    try:
        scheduler.start(
            daemon_mode=False,
            on_schedule_started=lambda s: console.info(f"  {s.id}  {s.display_name}  '{s.cron}'"),
        )
    except SchedulerError as e:
        console.print_error("Cannot start scheduler", str(e))
        sys.exit(1)
    console.info("Press Ctrl+C to stop.")
    run_until_signal(scheduler, daemon_mode=False)


def _run_daemon_child() -> None:
    """Body of the detached process; startup failures go to the error log."""
    daemon = daemon_manager()
    try:
        configure_logging(settings.LOG_LEVEL, log_file=daemon.log_file)
        console = Console(silent=False)
        set_console(console)
        scheduler = build_scheduler(console)
        scheduler.start(daemon_mode=True)
    except Exception as e:
        daemon.write_error(f"{e}\n{traceback.format_exc()}")
        daemon.remove_pid()
        sys.exit(1)
    run_until_signal(scheduler, daemon_mode=True)


@schedule.command("stop")
def schedule_stop():
    """Stop the background scheduler daemon."""
    console = get_console()
    if build_scheduler(console).stop_daemon():
        console.info("Scheduler daemon stopped")
    else:
        console.info("Scheduler daemon is not running")


@schedule.command("status")
@reports_store_errors
def schedule_status():
    """Show daemon state and schedule counts."""
    console = get_console()
    status = daemon_manager().status()
    schedules = schedule_store().load()
    enabled = sum(1 for s in schedules if s.enabled)

    if status.running:
        console.info(f"Daemon: running (PID: {status.pid})")
        if status.started_at is not None:
            console.info(f"Started: {status.started_at.isoformat(timespec='seconds')}")
        if status.uptime is not None:
            console.info(f"Uptime: {format_duration(status.uptime)}")
    else:
        console.info("Daemon: not running")
    console.info(f"Schedules: {len(schedules)} ({enabled} enabled)")


if __name__ == "__main__":
    cli()
