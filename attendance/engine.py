from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone, tzinfo
from typing import Literal

from attendance.errors import ConfigError, TemporalOrderError
from attendance.schedule import Schedule

DEFAULT_PRESENCE_THRESHOLD = 0.10

ScanAction = Literal["entered", "exited"]


@dataclass(frozen=True)
class PeriodAccumulator:
    name: str
    duration_minutes: int = 0
    present: bool = False


@dataclass(frozen=True)
class AttendanceRecord:
    subject_id: int
    day: date
    checked_in: bool = False
    entry_timestamp: datetime | None = None
    exit_timestamp: datetime | None = None
    periods: dict[str, PeriodAccumulator] = field(default_factory=dict)
    # Store-owned optimistic lock counter; the engine carries it through untouched.
    version: int = 0

    def __post_init__(self):
        if self.checked_in and self.entry_timestamp is None:
            raise ValueError("A checked-in record needs an entry timestamp.")


@dataclass(frozen=True)
class ScanResult:
    action: ScanAction
    timestamp: datetime
    # Minutes this scan added per period (exits only).
    credited: dict[str, int] = field(default_factory=dict)

    @property
    def message(self) -> str:
        return self.action


def _utc(stamp: datetime) -> datetime:
    return stamp.astimezone(timezone.utc)


def overlap_minutes(entry: datetime, departure: datetime, start: datetime, end: datetime) -> int:
    """Whole minutes shared by [entry, departure) and [start, end). Arguments must be aware."""
    entry, departure, start, end = (_utc(v) for v in (entry, departure, start, end))
    overlap_start = max(entry, start)
    overlap_end = min(departure, end)
    seconds = (overlap_end - overlap_start).total_seconds()
    return max(0, int(seconds // 60))


class SessionEngine:
    """
    Presence toggle and period-overlap accounting for one subject-day record.

    `record_scan` is pure: it never mutates the record it is given and performs
    no I/O. Callers serialise scans per (subject, day).
    """

    def __init__(
        self,
        schedule: Schedule,
        *,
        tz: tzinfo = timezone.utc,
        threshold: float = DEFAULT_PRESENCE_THRESHOLD,
    ):
        if not 0 < threshold <= 1:
            raise ConfigError(f"Presence threshold must be in (0, 1], got {threshold!r}.")
        self.schedule = schedule
        self.tz = tz
        self.threshold = threshold

    def localize(self, stamp: datetime) -> datetime:
        """Express `stamp` in the reference timezone; naive values are taken as already local."""
        if stamp.tzinfo is None:
            return stamp.replace(tzinfo=self.tz)
        return stamp.astimezone(self.tz)

    def day_for(self, stamp: datetime) -> date:
        return self.localize(stamp).date()

    def initial_periods(self) -> dict[str, PeriodAccumulator]:
        return {p.name: PeriodAccumulator(name=p.name) for p in self.schedule.all()}

    def is_present(self, name: str, duration_minutes: int) -> bool:
        period = self.schedule.resolve(name)
        return (duration_minutes / period.duration_minutes) >= self.threshold

    def overlap_pass(self, entry: datetime, departure: datetime) -> dict[str, int]:
        """Per-period minutes covered by [entry, departure), periods anchored to the entry's day."""
        entry = self.localize(entry)
        departure = self.localize(departure)
        anchor = entry.date()

        credited: dict[str, int] = {}
        for period in self.schedule.all():
            start, end = period.bounds_on(anchor, self.tz)
            if _utc(end) <= _utc(entry):
                continue
            minutes = overlap_minutes(entry, departure, start, end)
            if minutes > 0:
                credited[period.name] = minutes
        return credited

    def merge(
        self,
        periods: dict[str, PeriodAccumulator],
        credited: dict[str, int],
    ) -> dict[str, PeriodAccumulator]:
        merged = dict(periods)
        for name, minutes in credited.items():
            current = merged.get(name)
            # The period set is fixed when the day's record is opened.
            if current is None:
                continue
            total = current.duration_minutes + minutes
            merged[name] = PeriodAccumulator(
                name=name,
                duration_minutes=total,
                present=self.is_present(name, total),
            )
        return merged

    def record_scan(
        self,
        record: AttendanceRecord | None,
        now: datetime,
        *,
        subject_id: int | None = None,
    ) -> tuple[AttendanceRecord, ScanResult]:
        stamp = self.localize(now)

        if record is None:
            if subject_id is None:
                raise ValueError("subject_id is required to open a new attendance record.")
            record = AttendanceRecord(subject_id=subject_id, day=stamp.date())

        if record.checked_in:
            return self._exit(record, stamp)
        return self._enter(record, stamp)

    def _enter(self, record: AttendanceRecord, stamp: datetime) -> tuple[AttendanceRecord, ScanResult]:
        periods = record.periods if record.periods else self.initial_periods()
        updated = replace(
            record,
            checked_in=True,
            entry_timestamp=stamp,
            periods=periods,
        )
        return updated, ScanResult(action="entered", timestamp=stamp)

    def _exit(self, record: AttendanceRecord, stamp: datetime) -> tuple[AttendanceRecord, ScanResult]:
        entry = self.localize(record.entry_timestamp)
        if _utc(stamp) < _utc(entry):
            raise TemporalOrderError(
                f"Scan at {stamp.isoformat()} is earlier than entry at {entry.isoformat()}."
            )

        # Report only what is merged into the record.
        credited = {
            name: minutes
            for name, minutes in self.overlap_pass(entry, stamp).items()
            if name in record.periods
        }
        updated = replace(
            record,
            checked_in=False,
            exit_timestamp=stamp,
            periods=self.merge(record.periods, credited),
        )
        return updated, ScanResult(action="exited", timestamp=stamp, credited=credited)
