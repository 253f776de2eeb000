# scheduling/store.py
from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from pipeliner.errors import ScheduleStoreError

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Schedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: secrets.token_hex(4))
    name: Optional[str] = None
    workflow_path: str = Field(alias="workflowPath")
    cron: str
    enabled: bool = True
    timezone: Optional[str] = None
    profile: Optional[str] = None
    silent: bool = False
    created_at: datetime = Field(default_factory=_now, alias="createdAt")
    last_run: Optional[datetime] = Field(default=None, alias="lastRun")

    @property
    def display_name(self) -> str:
        return self.name or Path(self.workflow_path).name


class ScheduleFileModel(BaseModel):
    schedules: List[Schedule] = Field(default_factory=list)


class ScheduleStore:
    """Schedules persisted as one JSON document; whole-file read and write."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[Schedule]:
        """
        Raises:
            ScheduleStoreError: the file exists but is unreadable or malformed
        """
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise ScheduleStoreError(f"Could not read schedule store {self.path}: {e}", str(self.path)) from e
        try:
            return ScheduleFileModel.model_validate(json.loads(text)).schedules
        except (ValueError, ValidationError) as e:
            logger.error("schedule store %s is corrupt: %s", self.path, e)
            raise ScheduleStoreError(
                f"Schedule store {self.path} is corrupt; fix or remove it. ({e})",
                str(self.path),
            ) from e

    def save(self, schedules: List[Schedule]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        doc = {"schedules": [s.model_dump(mode="json", by_alias=True) for s in schedules]}
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(doc, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def add(
        self,
        workflow_path: str,
        cron: str,
        name: Optional[str] = None,
        timezone: Optional[str] = None,
        profile: Optional[str] = None,
        silent: bool = False,
    ) -> Schedule:
        schedules = self.load()
        taken = {s.id for s in schedules}
        schedule = Schedule(
            workflow_path=workflow_path,
            cron=cron,
            name=name,
            timezone=timezone,
            profile=profile,
            silent=silent,
        )
        while schedule.id in taken:
            schedule.id = secrets.token_hex(4)
        schedules.append(schedule)
        self.save(schedules)
        return schedule

    def get(self, schedule_id: str) -> Optional[Schedule]:
        for s in self.load():
            if s.id == schedule_id:
                return s
        return None

    def remove(self, schedule_id: str) -> bool:
        schedules = self.load()
        kept = [s for s in schedules if s.id != schedule_id]
        if len(kept) == len(schedules):
            return False
        self.save(kept)
        return True

    def toggle(self, schedule_id: str) -> Optional[Schedule]:
        schedules = self.load()
        for s in schedules:
            if s.id == schedule_id:
                s.enabled = not s.enabled
                self.save(schedules)
                return s
        return None

    def update_last_run(self, schedule_id: str, when: Optional[datetime] = None) -> None:
        schedules = self.load()
        for s in schedules:
            if s.id == schedule_id:
                s.last_run = when or _now()
                self.save(schedules)
                return
