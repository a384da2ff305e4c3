import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, TypedDict

from attendance.engine import AttendanceRecord, PeriodAccumulator, ScanAction
from attendance.errors import NotFoundError, StaleRecordError, StoreError
from backend.config import DB_PATH

logger = logging.getLogger(__name__)


class Subject(TypedDict):
    id: int
    card_token: str
    display_name: str
    created_at: str | None


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def _store_errors(action: str):
    try:
        yield
    except sqlite3.IntegrityError:
        raise
    except sqlite3.Error as exc:
        logger.exception("Store failure while trying to %s", action)
        raise StoreError(f"Could not {action}: {exc}") from exc


def create_tables():
    with _store_errors("create tables"):
        conn = connect_db()
        cursor = conn.cursor()

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS subjects (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            card_token TEXT NOT NULL UNIQUE,
            display_name TEXT NOT NULL,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """)

        # One row per subject per day; `version` guards read-modify-write.
        cursor.execute("""
        CREATE TABLE IF NOT EXISTS attendance_records (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subject_id INTEGER NOT NULL,
            day TEXT NOT NULL,                 -- YYYY-MM-DD
            checked_in INTEGER NOT NULL DEFAULT 0,
            entry_timestamp TEXT,              -- ISO-8601 UTC
            exit_timestamp TEXT,               -- ISO-8601 UTC
            periods_json TEXT NOT NULL DEFAULT '{}',
            version INTEGER NOT NULL DEFAULT 1,
            updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (subject_id) REFERENCES subjects(id) ON DELETE CASCADE,
            UNIQUE(subject_id, day)
        )
        """)

        cursor.execute("""
        CREATE TABLE IF NOT EXISTS scan_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            card_token TEXT NOT NULL,
            subject_id INTEGER,
            action TEXT NOT NULL,              -- entered | exited | rejected
            event_timestamp TEXT NOT NULL,     -- ISO-8601 UTC
            day TEXT,
            message TEXT,
            captured_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        """)
        cursor.execute(
            "CREATE INDEX IF NOT EXISTS idx_scan_events_day ON scan_events(day)"
        )

        conn.commit()
        conn.close()


# -----------------------------
# Subjects (identity store)
# -----------------------------
def _subject_from_row(row) -> Subject:
    return {
        "id": int(row[0]),
        "card_token": str(row[1]),
        "display_name": str(row[2]),
        "created_at": str(row[3]) if row[3] else None,
    }


def add_subject(card_token: str, display_name: str) -> int:
    """Register a card. Raises sqlite3.IntegrityError if the token is taken."""
    with _store_errors("add subject"):
        conn = connect_db()
        cur = conn.cursor()
        try:
            cur.execute("""
                INSERT INTO subjects (card_token, display_name)
                VALUES (?, ?)
            """, (card_token, display_name))
            subject_id = int(cur.lastrowid)
            conn.commit()
        finally:
            conn.close()
        return subject_id


def get_all_subjects() -> list[Subject]:
    with _store_errors("list subjects"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT id, card_token, display_name, created_at
            FROM subjects
            ORDER BY display_name
        """)
        rows = cur.fetchall()
        conn.close()
    return [_subject_from_row(r) for r in rows]


def get_subject_by_id(subject_id: int) -> Subject | None:
    with _store_errors("load subject"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT id, card_token, display_name, created_at
            FROM subjects
            WHERE id = ?
        """, (subject_id,))
        row = cur.fetchone()
        conn.close()
    return _subject_from_row(row) if row else None


def lookup_subject(card_token: str) -> Subject:
    with _store_errors("look up card"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT id, card_token, display_name, created_at
            FROM subjects
            WHERE card_token = ?
        """, (card_token,))
        row = cur.fetchone()
        conn.close()
    if not row:
        raise NotFoundError(f"Card {card_token!r} is not registered.")
    return _subject_from_row(row)


# -----------------------------
# Attendance records (record store)
# -----------------------------
def _to_utc_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


def _from_utc_text(value: str | None) -> datetime | None:
    if not value:
        return None
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def periods_to_json(periods: dict[str, PeriodAccumulator]) -> str:
    return json.dumps(
        {
            name: {"durationMinutes": acc.duration_minutes, "present": acc.present}
            for name, acc in periods.items()
        }
    )


def periods_from_json(raw: str | None) -> dict[str, PeriodAccumulator]:
    data = json.loads(raw or "{}")
    return {
        name: PeriodAccumulator(
            name=name,
            duration_minutes=int(item.get("durationMinutes", 0)),
            present=bool(item.get("present", False)),
        )
        for name, item in data.items()
    }


def get_attendance_record(subject_id: int, day: date) -> AttendanceRecord | None:
    with _store_errors("load attendance record"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute("""
            SELECT checked_in, entry_timestamp, exit_timestamp, periods_json, version
            FROM attendance_records
            WHERE subject_id = ? AND day = ?
        """, (subject_id, day.isoformat()))
        row = cur.fetchone()
        conn.close()

    if not row:
        return None

    checked_in, entry_ts, exit_ts, periods_json, version = row
    return AttendanceRecord(
        subject_id=subject_id,
        day=day,
        checked_in=bool(checked_in),
        entry_timestamp=_from_utc_text(entry_ts),
        exit_timestamp=_from_utc_text(exit_ts),
        periods=periods_from_json(periods_json),
        version=int(version),
    )


def _write_record(cur, record: AttendanceRecord) -> None:
    """Version-checked INSERT or UPDATE of `record` on an open cursor; no commit."""
    values = (
        1 if record.checked_in else 0,
        _to_utc_text(record.entry_timestamp),
        _to_utc_text(record.exit_timestamp),
        periods_to_json(record.periods),
    )
    day_text = record.day.isoformat()

    if record.version == 0:
        try:
            cur.execute("""
                INSERT INTO attendance_records (
                    checked_in, entry_timestamp, exit_timestamp, periods_json,
                    subject_id, day, version
                )
                VALUES (?, ?, ?, ?, ?, ?, 1)
            """, (*values, record.subject_id, day_text))
        except sqlite3.IntegrityError:
            raise StaleRecordError(
                f"Attendance record for subject {record.subject_id} on {day_text} already exists."
            )
    else:
        cur.execute("""
            UPDATE attendance_records
            SET checked_in = ?,
                entry_timestamp = ?,
                exit_timestamp = ?,
                periods_json = ?,
                version = version + 1,
                updated_at = CURRENT_TIMESTAMP
            WHERE subject_id = ? AND day = ? AND version = ?
        """, (*values, record.subject_id, day_text, record.version))
        if cur.rowcount == 0:
            raise StaleRecordError(
                f"Attendance record for subject {record.subject_id} on {day_text} changed since it was read."
            )


def put_attendance_record(record: AttendanceRecord) -> AttendanceRecord:
    """
    Store `record` if the stored copy still has `record.version`.

    A record with version 0 has never been stored and is inserted. Returns the
    record with its new version; raises StaleRecordError when another writer
    got there first.
    """
    with _store_errors("store attendance record"):
        conn = connect_db()
        try:
            _write_record(conn.cursor(), record)
            conn.commit()
        finally:
            conn.close()

    return replace(record, version=record.version + 1)


def put_attendance_record_with_event(
    record: AttendanceRecord,
    *,
    card_token: str,
    action: ScanAction,
    event_timestamp: datetime,
    message: str | None = None,
) -> AttendanceRecord:
    """
    Store `record` and its scan log row in one transaction.

    Same version check as put_attendance_record. If either write fails nothing
    is committed, so a retried scan sees the record as it was.
    """
    with _store_errors("store attendance record"):
        conn = connect_db()
        try:
            cur = conn.cursor()
            _write_record(cur, record)
            _insert_event(
                cur,
                card_token=card_token,
                subject_id=record.subject_id,
                action=action,
                event_timestamp=event_timestamp,
                day=record.day,
                message=message,
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    return replace(record, version=record.version + 1)


def clear_attendance() -> None:
    with _store_errors("clear attendance"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute("DELETE FROM attendance_records")
        cur.execute("DELETE FROM scan_events")
        conn.commit()
        conn.close()


# -----------------------------
# Scan log
# -----------------------------
def _insert_event(
    cur,
    *,
    card_token: str,
    action: ScanAction | str,
    event_timestamp: datetime,
    subject_id: int | None = None,
    day: date | None = None,
    message: str | None = None,
) -> int:
    cur.execute(
        """
        INSERT INTO scan_events (
            card_token,
            subject_id,
            action,
            event_timestamp,
            day,
            message
        )
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            card_token,
            subject_id,
            action,
            _to_utc_text(event_timestamp),
            day.isoformat() if day else None,
            message,
        ),
    )
    return int(cur.lastrowid)


def insert_scan_event(
    *,
    card_token: str,
    action: ScanAction | str,
    event_timestamp: datetime,
    subject_id: int | None = None,
    day: date | None = None,
    message: str | None = None,
) -> int:
    with _store_errors("log scan"):
        conn = connect_db()
        try:
            event_id = _insert_event(
                conn.cursor(),
                card_token=card_token,
                subject_id=subject_id,
                action=action,
                event_timestamp=event_timestamp,
                day=day,
                message=message,
            )
            conn.commit()
        finally:
            conn.close()
    return event_id


def get_scan_events(
    *,
    day: str | None = None,
    subject_id: int | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where_sql, params = _build_scan_events_where_clause(day=day, subject_id=subject_id)
    safe_limit = max(1, min(int(limit), 500))
    safe_offset = max(0, int(offset))

    with _store_errors("list scans"):
        conn = connect_db()
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT
                se.id,
                se.card_token,
                se.subject_id,
                s.display_name,
                se.action,
                se.event_timestamp,
                se.day,
                se.message
            FROM scan_events se
            LEFT JOIN subjects s ON s.id = se.subject_id
            WHERE {where_sql}
            ORDER BY se.event_timestamp DESC, se.id DESC
            LIMIT ?
            OFFSET ?
            """,
            [*params, safe_limit, safe_offset],
        )
        rows = cur.fetchall()
        conn.close()

    return [
        {
            "id": r[0],
            "cardID": r[1],
            "subject_id": r[2],
            "subject_name": r[3],
            "action": r[4],
            "timestamp": r[5],
            "day": r[6],
            "message": r[7],
        }
        for r in rows
    ]


def _build_scan_events_where_clause(
    *,
    day: str | None = None,
    subject_id: int | None = None,
) -> tuple[str, list[Any]]:
    where = ["1=1"]
    params: list[Any] = []

    if day is not None:
        where.append("se.day = ?")
        params.append(day)
    if subject_id is not None:
        where.append("se.subject_id = ?")
        params.append(subject_id)

    return " AND ".join(where), params
