# scheduling/scheduler.py
from __future__ import annotations

import logging
import os
import time
from typing import Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from pipeliner.errors import ScheduleStoreError, SchedulerError
from pipeliner.parser import load_workflow, resolve_profile

from .cron import build_trigger
from .daemon import DaemonManager
from .store import Schedule, ScheduleStore
from .timezone import resolve_timezone

logger = logging.getLogger(__name__)


class Scheduler:
    """
    Registers one cron job per enabled schedule and runs the referenced
    workflow on every fire.

    Args:
        executor_factory: builds a fresh Executor; `silent` mutes its output
        output: Console-like object for scheduler messages
        store: where schedules are read from
        daemon: PID bookkeeping
    """

    def __init__(
        self,
        executor_factory: Callable[..., object],
        output,
        store: ScheduleStore,
        daemon: DaemonManager,
        scheduler_factory: Callable[[], BackgroundScheduler] = BackgroundScheduler,
    ):
        self.executor_factory = executor_factory
        self.output = output
        self.store = store
        self.daemon = daemon
        self._scheduler_factory = scheduler_factory
        self._scheduler: Optional[BackgroundScheduler] = None
        self._on_schedule_started: Optional[Callable[[Schedule], None]] = None
        self.jobs: Dict[str, object] = {}

    def start(self, daemon_mode: bool = False, on_schedule_started: Optional[Callable[[Schedule], None]] = None) -> int:
        """
        Start the cron scheduler and register every enabled schedule.

        Returns:
            number of schedules registered

        Raises:
            SchedulerError: a background daemon already owns the schedules
        """
        if not daemon_mode:
            pid = self.daemon.get_pid()
            if pid is not None:
                raise SchedulerError(
                    f"Scheduler daemon is already running (PID: {pid}). "
                    "Use 'pipeliner schedule stop' to stop it first."
                )

        self._on_schedule_started = on_schedule_started
        if daemon_mode:
            self.daemon.save_pid()

        self._scheduler = self._scheduler_factory()
        self._scheduler.start()
        count = self.reload()
        self.output.print_scheduler_started(count, daemon_mode)
        logger.info("scheduler started pid=%s daemon=%s schedules=%d", os.getpid(), daemon_mode, count)
        return count

    def reload(self) -> int:
        self.stop()
        if self._scheduler is None:
            raise SchedulerError("Scheduler is not started")

        try:
            enabled = [s for s in self.store.load() if s.enabled]
        except ScheduleStoreError as e:
            self.output.error(str(e))
            return 0
        if not enabled:
            self.output.info("No enabled schedules.")
            return 0

        for schedule in enabled:
            try:
                self._register(schedule)
            except Exception as e:
                logger.exception("could not register schedule %s", schedule.id)
                self.output.error(f"Schedule {schedule.id} could not be started: {e}")
        return len(self.jobs)

    def _register(self, schedule: Schedule) -> None:
        timezone = None
        if schedule.timezone:
            timezone = resolve_timezone(schedule.timezone)
            if timezone is None:
                self.output.error(f"Schedule {schedule.id}: invalid timezone '{schedule.timezone}'")
                return
        try:
            trigger = build_trigger(schedule.cron, timezone)
        except ValueError as e:
            self.output.error(f"Schedule {schedule.id}: invalid cron expression '{schedule.cron}' ({e})")
            return

        job = self._scheduler.add_job(
            self.run_schedule,
            trigger=trigger,
            args=[schedule],
            id=schedule.id,
            name=schedule.display_name,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self.jobs[schedule.id] = job
        if self._on_schedule_started is not None:
            self._on_schedule_started(schedule)

    def run_schedule(self, schedule: Schedule) -> bool:
        """One cron fire. Never raises, so the job stays registered."""
        name = schedule.display_name
        if not schedule.silent:
            suffix = f" (profile: {schedule.profile})" if schedule.profile else ""
            self.output.print_schedule_run(name + suffix, "started")

        started = time.monotonic()
        try:
            workflow = load_workflow(schedule.workflow_path)
            execution_vars = resolve_profile(workflow, schedule.profile) if schedule.profile else {}
            executor = self.executor_factory(silent=schedule.silent)
            executor.execute(workflow, execution_vars=execution_vars)
        except Exception as e:
            logger.exception("scheduled workflow %s failed", name)
            if not schedule.silent:
                self.output.print_schedule_run(name, "failed", time.monotonic() - started)
                self.output.error(str(e))
            return False

        try:
            self.store.update_last_run(schedule.id)
        except ScheduleStoreError as e:
            logger.error("could not record last run for %s: %s", schedule.id, e)
            self.output.error(str(e))

        if not schedule.silent:
            self.output.print_schedule_run(name, "completed", time.monotonic() - started)
        return True

    def stop(self) -> None:
        """Remove every registered cron job; the scheduler itself keeps running."""
        if self._scheduler is not None:
            for job_id in list(self.jobs):
                try:
                    self._scheduler.remove_job(job_id)
                except JobLookupError:
                    logger.debug("job %s already removed", job_id)
        self.jobs.clear()

    def shutdown(self, daemon_mode: bool = False) -> None:
        self.output.info(f"Stopping scheduler{' daemon' if daemon_mode else ''}...")
        self.stop()
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        self.daemon.remove_pid()
        logger.info("scheduler stopped")

    def stop_daemon(self) -> bool:
        return self.daemon.stop()
