from datetime import date as date_type

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from attendance.engine import AttendanceRecord
from backend.services.scanning import ScanService, get_scan_service
from database.db import get_attendance_record, get_scan_events, get_subject_by_id

router = APIRouter()


class ScanRequest(BaseModel):
    cardID: str | None = None


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def _periods_payload(record: AttendanceRecord) -> dict:
    return {
        name: {"durationMinutes": acc.duration_minutes, "present": acc.present}
        for name, acc in record.periods.items()
    }


def _record_payload(record: AttendanceRecord, service: ScanService) -> dict:
    local = service.engine.localize
    return {
        "subject_id": record.subject_id,
        "day": record.day.isoformat(),
        "checked_in": record.checked_in,
        "entry_timestamp": _iso(local(record.entry_timestamp)) if record.entry_timestamp else None,
        "exit_timestamp": _iso(local(record.exit_timestamp)) if record.exit_timestamp else None,
        "periods": _periods_payload(record),
    }


@router.post("/api/rfid")
def receive_scan(payload: ScanRequest, service: ScanService = Depends(get_scan_service)):
    card_id = (payload.cardID or "").strip()
    if not card_id:
        raise HTTPException(status_code=400, detail="Invalid request: cardID is required")

    outcome = service.scan(card_id)
    subject = outcome["subject"]
    record = outcome["record"]
    result = outcome["result"]

    body = {
        "message": result.message,
        "cardID": card_id,
        "subjectId": subject["id"],
        "subjectName": subject["display_name"],
        "timestamp": result.timestamp.isoformat(),
        "day": record.day.isoformat(),
    }
    if result.action == "exited":
        body["credited"] = result.credited
        body["periods"] = _periods_payload(record)
    return body


@router.get("/api/rfid")
def list_scans(
    date: str | None = None,
    subject_id: int | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    return get_scan_events(day=date, subject_id=subject_id, limit=limit, offset=offset)


@router.get("/attendance/{subject_id}")
def attendance_record(
    subject_id: int,
    date: date_type | None = None,
    service: ScanService = Depends(get_scan_service),
):
    if not get_subject_by_id(subject_id):
        raise HTTPException(status_code=404, detail="Subject not found.")

    day = date or service.engine.day_for(service.clock())
    record = get_attendance_record(subject_id, day)
    if record is None:
        raise HTTPException(status_code=404, detail="No attendance recorded for that day.")
    return _record_payload(record, service)
