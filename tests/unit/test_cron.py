"""Unit tests for cron trigger construction."""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from pipeliner.scheduling.cron import build_trigger, is_valid_cron

UTC = ZoneInfo("UTC")


def next_fire(expr: str, after: datetime, tz: str = "UTC") -> datetime:
    trigger = build_trigger(expr, tz)
    return trigger.get_next_fire_time(None, after)


@pytest.mark.parametrize("expr", ["* * * * *", "*/5 * * * *", "0 9 * * 1-5", "30 2 1 * *", "0 0 * * 0", "15 * * * * *"])
def test_valid_expressions(expr: str) -> None:
    assert is_valid_cron(expr)


@pytest.mark.parametrize("expr", ["", "* * * *", "61 * * * *", "* 25 * * *", "* * * * 9", "not a cron"])
def test_invalid_expressions(expr: str) -> None:
    assert not is_valid_cron(expr)
    with pytest.raises(ValueError):
        build_trigger(expr)


def test_five_fields_fire_on_the_minute() -> None:
    fire = next_fire("*/15 * * * *", datetime(2024, 3, 1, 10, 7, 30, tzinfo=UTC))
    assert (fire.hour, fire.minute, fire.second) == (10, 15, 0)


def test_day_of_week_uses_cron_numbering() -> None:
    # 2024-03-01 is a Friday; cron 0 is Sunday
    fire = next_fire("0 8 * * 0", datetime(2024, 3, 1, 12, 0, tzinfo=UTC))
    assert fire.date().isoformat() == "2024-03-03"
    assert fire.weekday() == 6


def test_weekday_range() -> None:
    # Saturday noon -> next weekday run is Monday
    fire = next_fire("0 9 * * 1-5", datetime(2024, 3, 2, 12, 0, tzinfo=UTC))
    assert fire.date().isoformat() == "2024-03-04"


def test_timezone_is_applied() -> None:
    fire = next_fire("0 9 * * *", datetime(2024, 3, 1, 0, 0, tzinfo=UTC), tz="Etc/GMT-9")
    assert fire.astimezone(UTC).hour == 0


def test_range_starting_on_sunday() -> None:
    # 0-5 is Sunday through Friday; Saturday must be skipped
    fire = next_fire("0 9 * * 0-5", datetime(2024, 3, 1, 12, 0, tzinfo=UTC))
    assert fire.date().isoformat() == "2024-03-03"


def test_day_of_week_step_counts_from_sunday() -> None:
    # */2 means Sun, Tue, Thu, Sat
    fire = next_fire("0 9 * * */2", datetime(2024, 3, 1, 12, 0, tzinfo=UTC))
    assert fire.date().isoformat() == "2024-03-02"
    assert fire.weekday() == 5
