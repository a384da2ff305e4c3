from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from attendance.errors import ConfigError, NotFoundError
from attendance.schedule import Period, Schedule


def test_parse_keeps_order_and_minutes():
    schedule = Schedule.parse("Hour1=08:40-09:40; Hour2=09:40-10:40")

    assert schedule.names() == ["Hour1", "Hour2"]
    first, second = schedule.all()
    assert (first.start_minute, first.end_minute) == (520, 580)
    assert (second.start_minute, second.end_minute) == (580, 640)
    assert first.duration_minutes == 60


def test_resolve_unknown_period_raises_not_found():
    schedule = Schedule.parse("Hour1=08:40-09:40")

    assert schedule.resolve("Hour1").name == "Hour1"
    with pytest.raises(NotFoundError):
        schedule.resolve("Hour9")


def test_period_may_run_to_midnight():
    schedule = Schedule.parse("Late=23:00-24:00")
    assert schedule.resolve("Late").end_minute == 1440


@pytest.mark.parametrize(
    "text",
    [
        "Hour1=09:40-08:40",
        "Hour1=08:40-08:40",
        "Hour1=08:40-09:40;Hour1=10:00-11:00",
        "Hour1=24:00-24:30",
        "Hour1=08:40-24:01",
        "Hour1=08:70-09:00",
        "Hour1 08:40-09:40",
        "=08:40-09:40",
        "",
    ],
)
def test_invalid_schedules_are_rejected(text):
    with pytest.raises(ConfigError):
        Schedule.parse(text)


def test_constructor_validates_periods():
    with pytest.raises(ConfigError):
        Schedule([Period("A", -10, 30)])
    with pytest.raises(ConfigError):
        Schedule([Period("A", 0, 30), Period("A", 30, 60)])


def test_period_names_with_surrounding_whitespace_are_rejected():
    with pytest.raises(ConfigError):
        Schedule([Period(" A", 0, 30)])
    with pytest.raises(ConfigError):
        Schedule([Period("A ", 0, 30)])

    # Parsed names are stripped, so they resolve by their bare name.
    schedule = Schedule.parse(" A = 00:00-00:30 ")
    assert schedule.resolve("A").end_minute == 30


def test_bounds_on_anchor_to_local_day():
    ist = ZoneInfo("Asia/Kolkata")
    period = Period("Hour1", 520, 580)

    start, end = period.bounds_on(date(2026, 3, 2), ist)

    assert start == datetime(2026, 3, 2, 8, 40, tzinfo=ist)
    assert end == datetime(2026, 3, 2, 9, 40, tzinfo=ist)
    assert start.astimezone(timezone.utc) == datetime(2026, 3, 2, 3, 10, tzinfo=timezone.utc)
