import sqlite3
import threading
from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

import database.db as db
from attendance.engine import SessionEngine
from attendance.errors import StoreError
from attendance.schedule import Schedule
from backend.services.scanning import ScanService

IST = ZoneInfo("Asia/Kolkata")
NOW = datetime(2026, 3, 2, 9, 10, tzinfo=IST)


@pytest.fixture()
def service(temp_db):
    engine = SessionEngine(Schedule.parse("Hour1=08:40-09:40;Hour2=09:40-10:40"), tz=IST)
    return ScanService(engine, clock=lambda: NOW)


def _fail_log_insert(*args, **kwargs):
    raise sqlite3.OperationalError("disk I/O error")


def test_failed_log_write_leaves_record_unchanged(service, monkeypatch):
    subject_id = db.add_subject("CARD-001", "Asha Rao")
    service.scan("CARD-001")
    before = db.get_attendance_record(subject_id, NOW.date())

    monkeypatch.setattr(db, "_insert_event", _fail_log_insert)
    with pytest.raises(StoreError):
        service.scan("CARD-001")

    after = db.get_attendance_record(subject_id, NOW.date())
    assert after == before
    assert after.checked_in is True
    assert after.version == 1
    assert len(db.get_scan_events(subject_id=subject_id)) == 1


def test_failed_log_write_does_not_open_record(service, monkeypatch):
    subject_id = db.add_subject("CARD-001", "Asha Rao")

    monkeypatch.setattr(db, "_insert_event", _fail_log_insert)
    with pytest.raises(StoreError):
        service.scan("CARD-001")

    assert db.get_attendance_record(subject_id, NOW.date()) is None


def test_concurrent_scans_are_serialised(service):
    subject_id = db.add_subject("CARD-001", "Asha Rao")
    threads_count = 7
    barrier = threading.Barrier(threads_count)
    errors: list[Exception] = []

    def worker():
        barrier.wait()
        try:
            service.scan("CARD-001")
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []

    record = db.get_attendance_record(subject_id, NOW.date())
    assert record.checked_in is (threads_count % 2 == 1)
    assert record.version == threads_count
    assert len(db.get_scan_events(subject_id=subject_id)) == threads_count


def test_locks_for_earlier_days_are_dropped(service):
    first = service._lock_for(1, date(2026, 3, 2))
    held = service._lock_for(2, date(2026, 3, 2))
    held.acquire()
    try:
        service._lock_for(1, date(2026, 3, 3))

        assert (1, date(2026, 3, 2)) not in service._locks
        assert service._locks[(2, date(2026, 3, 2))] is held
        assert (1, date(2026, 3, 3)) in service._locks
    finally:
        held.release()

    # Same key hands back the same lock.
    assert service._lock_for(1, date(2026, 3, 3)) is service._lock_for(1, date(2026, 3, 3))
    assert first is not service._lock_for(1, date(2026, 3, 2))
