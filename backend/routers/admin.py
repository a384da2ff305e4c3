from fastapi import APIRouter

from database.db import clear_attendance

router = APIRouter()


@router.post("/admin/reset/attendance")
def reset_attendance():
    clear_attendance()
    return {"ok": True, "message": "Attendance records and scan log cleared"}
