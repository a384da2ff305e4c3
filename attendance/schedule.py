from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo

from attendance.errors import ConfigError, NotFoundError

MINUTES_PER_DAY = 24 * 60


@dataclass(frozen=True)
class Period:
    name: str
    start_minute: int
    end_minute: int

    @property
    def duration_minutes(self) -> int:
        return self.end_minute - self.start_minute

    def bounds_on(self, day: date, tz: tzinfo) -> tuple[datetime, datetime]:
        """Anchor the period to `day` in `tz` as aware datetimes."""
        midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
        return (
            midnight + timedelta(minutes=self.start_minute),
            midnight + timedelta(minutes=self.end_minute),
        )

    def clock_range(self) -> str:
        return f"{_format_minute(self.start_minute)}-{_format_minute(self.end_minute)}"


def _format_minute(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


def _parse_minute(value: str) -> int:
    parts = value.strip().split(":")
    if len(parts) != 2:
        raise ConfigError(f"Invalid clock time {value!r}; expected HH:MM.")
    try:
        hh = int(parts[0])
        mm = int(parts[1])
    except ValueError:
        raise ConfigError(f"Invalid clock time {value!r}; expected HH:MM.")
    if not 0 <= mm < 60:
        raise ConfigError(f"Invalid clock time {value!r}; minutes must be 00-59.")
    return hh * 60 + mm


class Schedule:
    """Ordered, immutable set of named periods for one school day."""

    def __init__(self, periods):
        items = tuple(periods)
        seen: set[str] = set()
        for period in items:
            name = period.name or ""
            if not name.strip():
                raise ConfigError("Period name is required.")
            if name != name.strip():
                raise ConfigError(f"Period name {name!r} has surrounding whitespace.")
            if name in seen:
                raise ConfigError(f"Duplicate period name {name!r}.")
            seen.add(name)
            if not 0 <= period.start_minute < MINUTES_PER_DAY:
                raise ConfigError(f"Period {name!r} starts outside the day.")
            if not 0 < period.end_minute <= MINUTES_PER_DAY:
                raise ConfigError(f"Period {name!r} ends outside the day.")
            if period.start_minute >= period.end_minute:
                raise ConfigError(f"Period {name!r} must start before it ends.")
        self._periods = items
        self._by_name = {p.name: p for p in items}

    @classmethod
    def parse(cls, text: str) -> "Schedule":
        """
        Build a schedule from `Name=HH:MM-HH:MM;Name=HH:MM-HH:MM`.

        `24:00` is accepted as an end time for a period that runs to midnight.
        """
        periods = []
        for chunk in text.split(";"):
            chunk = chunk.strip()
            if not chunk:
                continue
            name, sep, span = chunk.partition("=")
            start_text, dash, end_text = span.partition("-")
            if not sep or not dash:
                raise ConfigError(f"Invalid period definition {chunk!r}; expected Name=HH:MM-HH:MM.")
            periods.append(
                Period(
                    name=name.strip(),
                    start_minute=_parse_minute(start_text),
                    end_minute=_parse_minute(end_text),
                )
            )
        if not periods:
            raise ConfigError("Schedule must define at least one period.")
        return cls(periods)

    def resolve(self, name: str) -> Period:
        period = self._by_name.get(name)
        if period is None:
            raise NotFoundError(f"Unknown period {name!r}.")
        return period

    def all(self) -> tuple[Period, ...]:
        return self._periods

    def names(self) -> list[str]:
        return [p.name for p in self._periods]

    def __repr__(self) -> str:
        spans = ", ".join(f"{p.name}={p.clock_range()}" for p in self._periods)
        return f"Schedule({spans})"
