# scheduling/timezone.py
from __future__ import annotations

import re
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_OFFSET = re.compile(r"^([+-])?(\d{1,2})(?::(\d{2}))?$")

MIN_OFFSET = -12
MAX_OFFSET = 14


def parse_offset_hours(value: str) -> Optional[int]:
    """'+9', '-05', '+09:00', '0' -> whole hours; None if not an offset in range."""
    match = _OFFSET.match(value.strip())
    if match is None:
        return None
    sign, hours, minutes = match.groups()
    if minutes is not None and int(minutes) != 0:
        return None
    offset = int(hours) * (-1 if sign == "-" else 1)
    if offset < MIN_OFFSET or offset > MAX_OFFSET:
        return None
    return offset


def offset_hours_to_iana(offset: int) -> str:
    # Etc/GMT zones have inverted signs: UTC+9 is Etc/GMT-9
    if offset == 0:
        return "UTC"
    return f"Etc/GMT{-offset:+d}"


def resolve_timezone(value: Optional[str]) -> Optional[str]:
    """
    Turn a schedule's timezone setting into an IANA zone name.

    Numeric offsets become fixed Etc/GMT zones; IANA names pass through
    when the zone database knows them. Anything else is invalid (None).
    """
    if value is None:
        return None
    value = str(value).strip()
    if not value:
        return None
    if _OFFSET.match(value):
        offset = parse_offset_hours(value)
        return None if offset is None else offset_hours_to_iana(offset)
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return value
