import logging
import threading
from datetime import date, datetime, timezone
from typing import Callable, TypedDict

from attendance.engine import AttendanceRecord, ScanResult, SessionEngine
from attendance.errors import NotFoundError, TemporalOrderError
from backend.config import PRESENCE_THRESHOLD, REFERENCE_TIMEZONE, SCHEDULE
from database.db import (
    Subject,
    get_attendance_record,
    insert_scan_event,
    lookup_subject,
    put_attendance_record_with_event,
)

logger = logging.getLogger(__name__)


class ScanOutcome(TypedDict):
    subject: Subject
    record: AttendanceRecord
    result: ScanResult


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanService:
    """
    Runs one card scan end to end: identity lookup, load, engine, store, log.

    Scans for the same (subject, day) are serialised with an in-process lock;
    the store's version check catches writers outside this process.
    """

    def __init__(self, engine: SessionEngine, *, clock: Callable[[], datetime] = _utc_now):
        self.engine = engine
        self.clock = clock
        self._locks: dict[tuple[int, date], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, subject_id: int, day: date) -> threading.Lock:
        key = (subject_id, day)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                # Drop locks for earlier days; those records are closed history.
                for stale in [k for k in self._locks if k[1] < day]:
                    if not self._locks[stale].locked():
                        del self._locks[stale]
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def scan(self, card_token: str) -> ScanOutcome:
        now = self.engine.localize(self.clock())

        try:
            subject = lookup_subject(card_token)
        except NotFoundError as e:
            logger.warning("Rejected scan from unknown card %s at %s", card_token, now.isoformat())
            insert_scan_event(
                card_token=card_token,
                action="rejected",
                event_timestamp=now,
                day=now.date(),
                message=e.message,
            )
            raise

        subject_id = subject["id"]
        day = now.date()

        with self._lock_for(subject_id, day):
            record = get_attendance_record(subject_id, day)
            try:
                updated, result = self.engine.record_scan(record, now, subject_id=subject_id)
            except TemporalOrderError as e:
                logger.warning("Rejected scan for subject %s: %s", subject_id, e.message)
                insert_scan_event(
                    card_token=card_token,
                    subject_id=subject_id,
                    action="rejected",
                    event_timestamp=now,
                    day=day,
                    message=e.message,
                )
                raise
            stored = put_attendance_record_with_event(
                updated,
                card_token=card_token,
                action=result.action,
                event_timestamp=result.timestamp,
            )

        logger.info(
            "RFID card received: %s (%s) %s at %s",
            card_token,
            subject["display_name"],
            result.action,
            result.timestamp.isoformat(),
        )
        if result.credited:
            logger.debug("Credited minutes for subject %s: %s", subject_id, result.credited)

        return {"subject": subject, "record": stored, "result": result}


_SERVICE: ScanService | None = None
_SERVICE_LOCK = threading.Lock()


def build_engine() -> SessionEngine:
    return SessionEngine(SCHEDULE, tz=REFERENCE_TIMEZONE, threshold=PRESENCE_THRESHOLD)


def get_scan_service() -> ScanService:
    global _SERVICE
    with _SERVICE_LOCK:
        if _SERVICE is None:
            _SERVICE = ScanService(build_engine())
        return _SERVICE
