# scheduling/cron.py
from __future__ import annotations

from typing import Optional

from apscheduler.triggers.cron import CronTrigger

# cron counts days of week from Sunday = 0 (7 is Sunday again);
# APScheduler counts from Monday = 0, so numbers are mapped to names.
_DOW_NAMES = ["sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun"]


def _dow_number(token: str) -> int:
    n = int(token)
    if n > 7:
        raise ValueError(f"day of week out of range: {token}")
    return n % 7


def _dow_item(item: str) -> str:
    base, _, step = item.partition("/")
    if step and not step.isdigit():
        raise ValueError(f"invalid day of week step: {item}")
    stride = int(step) if step else 1
    if base == "*":
        if not step:
            return base
        lo, hi = 0, 6
    elif "-" in base and all(p.isdigit() for p in base.split("-", 1)):
        lo, hi = (int(p) for p in base.split("-", 1))
        if lo > 7 or hi > 7:
            raise ValueError(f"day of week out of range: {base}")
    elif base.isdigit():
        if step:
            lo, hi = int(base), 6
        else:
            return _DOW_NAMES[_dow_number(base)]
    else:
        # named days (mon-fri) mean the same thing to APScheduler
        return item
    if lo > hi:
        raise ValueError(f"invalid day of week range: {base}")
    days = dict.fromkeys(_DOW_NAMES[n % 7] for n in range(lo, hi + 1, stride))
    return ",".join(days)


def _translate_dow(field: str) -> str:
    return ",".join(_dow_item(item) for item in field.split(","))


def build_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """
    Build a CronTrigger from a 5-field cron expression, or 6 fields with
    leading seconds.

    Raises:
        ValueError: the expression is not valid cron
    """
    fields = expression.split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, dow = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, dow = fields
    else:
        raise ValueError(f"expected 5 or 6 cron fields, got {len(fields)}: {expression!r}")

    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=_translate_dow(dow),
        timezone=timezone,
    )


def is_valid_cron(expression: str) -> bool:
    try:
        build_trigger(expression)
    except ValueError:
        return False
    return True
