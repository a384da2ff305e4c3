import sqlite3
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest

import database.db as db
from attendance.engine import AttendanceRecord, PeriodAccumulator
from attendance.errors import NotFoundError, StaleRecordError, StoreError

DAY = date(2026, 3, 2)


def _record(subject_id: int) -> AttendanceRecord:
    return AttendanceRecord(
        subject_id=subject_id,
        day=DAY,
        checked_in=True,
        entry_timestamp=datetime(2026, 3, 2, 3, 40, tzinfo=timezone.utc),
        periods={
            "Hour1": PeriodAccumulator("Hour1", 12, True),
            "Hour2": PeriodAccumulator("Hour2"),
        },
    )


def test_lookup_subject_by_card(temp_db):
    subject_id = db.add_subject("CARD-001", "Asha Rao")

    subject = db.lookup_subject("CARD-001")

    assert subject["id"] == subject_id
    assert subject["display_name"] == "Asha Rao"
    with pytest.raises(NotFoundError):
        db.lookup_subject("CARD-404")


def test_duplicate_card_is_integrity_error(temp_db):
    db.add_subject("CARD-001", "Asha Rao")
    with pytest.raises(sqlite3.IntegrityError):
        db.add_subject("CARD-001", "Someone Else")


def test_record_round_trip_and_versioning(temp_db):
    subject_id = db.add_subject("CARD-001", "Asha Rao")
    assert db.get_attendance_record(subject_id, DAY) is None

    stored = db.put_attendance_record(_record(subject_id))
    assert stored.version == 1

    loaded = db.get_attendance_record(subject_id, DAY)
    assert loaded == stored
    assert list(loaded.periods) == ["Hour1", "Hour2"]
    assert loaded.exit_timestamp is None

    closed = replace(loaded, checked_in=False, exit_timestamp=datetime(2026, 3, 2, 4, 0, tzinfo=timezone.utc))
    assert db.put_attendance_record(closed).version == 2
    assert db.get_attendance_record(subject_id, DAY).checked_in is False


def test_stale_version_is_rejected(temp_db):
    subject_id = db.add_subject("CARD-001", "Asha Rao")
    stored = db.put_attendance_record(_record(subject_id))

    db.put_attendance_record(replace(stored, checked_in=False, exit_timestamp=stored.entry_timestamp))

    with pytest.raises(StaleRecordError):
        db.put_attendance_record(stored)
    with pytest.raises(StaleRecordError):
        db.put_attendance_record(_record(subject_id))


def test_store_failure_surfaces_as_store_error(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_PATH", tmp_path / "missing" / "rollcall.db")
    with pytest.raises(StoreError):
        db.get_attendance_record(1, DAY)


def test_scan_log_filters_by_day(temp_db):
    subject_id = db.add_subject("CARD-001", "Asha Rao")
    db.insert_scan_event(
        card_token="CARD-001",
        subject_id=subject_id,
        action="entered",
        event_timestamp=datetime(2026, 3, 2, 3, 40, tzinfo=timezone.utc),
        day=DAY,
    )
    db.insert_scan_event(
        card_token="CARD-999",
        action="rejected",
        event_timestamp=datetime(2026, 3, 3, 3, 40, tzinfo=timezone.utc),
        day=date(2026, 3, 3),
        message="Card 'CARD-999' is not registered.",
    )

    rows = db.get_scan_events(day="2026-03-02")

    assert len(rows) == 1
    assert rows[0]["subject_name"] == "Asha Rao"
    assert rows[0]["action"] == "entered"
    assert len(db.get_scan_events()) == 2
