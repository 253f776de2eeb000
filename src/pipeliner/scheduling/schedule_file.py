# scheduling/schedule_file.py
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pipeliner.errors import ScheduleFileError
from pipeliner.parser import load_document

from .cron import build_trigger
from .store import Schedule, ScheduleStore
from .timezone import resolve_timezone


class ScheduleDefinition(BaseModel):
    """One entry of a schedule file."""
    model_config = ConfigDict(populate_by_name=True)

    name: str
    cron: str
    workflow: str
    base_dir: Optional[str] = Field(default=None, alias="baseDir")
    timezone: Optional[str] = None
    silent: bool = False
    profile: Optional[str] = None

    @field_validator("timezone", mode="before")
    @classmethod
    def _coerce_offset(cls, v):
        # `timezone: 9` or `timezone: -5` in YAML arrive as ints
        if isinstance(v, int) and not isinstance(v, bool):
            return f"{v:+d}" if v else "0"
        return v


class ScheduleFile(BaseModel):
    schedules: List[ScheduleDefinition] = Field(min_length=1)


@dataclass
class AddReport:
    added: List[Schedule] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def parse_schedule_file(path: Path) -> ScheduleFile:
    """
    Raises:
        ScheduleFileError: missing file, unparsable document or wrong shape
    """
    path = Path(path)
    if not path.exists():
        raise ScheduleFileError(f"Schedule file not found: {path}", str(path))
    try:
        data = load_document(path)
    except (ValueError, yaml.YAMLError) as e:
        raise ScheduleFileError(f"Could not parse {path.name}: {e}", str(path)) from e
    try:
        return ScheduleFile.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ScheduleFileError(f"Invalid schedule file: {problems}", str(path)) from e


def resolve_workflow_path(definition: ScheduleDefinition, schedule_file: Path) -> Path:
    anchor = Path(schedule_file).resolve().parent
    if definition.base_dir:
        base = Path(definition.base_dir).expanduser()
        anchor = base if base.is_absolute() else (anchor / base)
    wf = Path(definition.workflow).expanduser()
    return (wf if wf.is_absolute() else anchor / wf).resolve()


def add_schedules_from_file(path: Path, store: ScheduleStore) -> AddReport:
    """
    Add every valid schedule from a schedule file.

    A bad cron expression, timezone or missing workflow rejects only that
    schedule; the rest are still added.
    """
    parsed = parse_schedule_file(path)
    report = AddReport()

    for definition in parsed.schedules:
        label = f"'{definition.name}'"
        timezone = None
        if definition.timezone is not None:
            timezone = resolve_timezone(definition.timezone)
            if timezone is None:
                report.errors.append(f"{label}: invalid timezone '{definition.timezone}'")
                continue
        try:
            build_trigger(definition.cron, timezone)
        except ValueError as e:
            report.errors.append(f"{label}: invalid cron expression '{definition.cron}' ({e})")
            continue
        workflow_path = resolve_workflow_path(definition, path)
        if not workflow_path.exists():
            report.errors.append(f"{label}: workflow file not found: {workflow_path}")
            continue

        report.added.append(store.add(
            workflow_path=str(workflow_path),
            cron=definition.cron,
            name=definition.name,
            timezone=definition.timezone,
            profile=definition.profile,
            silent=definition.silent,
        ))
    return report
