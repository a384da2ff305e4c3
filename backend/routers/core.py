from fastapi import APIRouter

from backend.config import PRESENCE_THRESHOLD, REFERENCE_TIMEZONE, SCHEDULE

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/config/schedule")
def schedule_config():
    return {
        "timezone": str(REFERENCE_TIMEZONE),
        "presence_threshold": PRESENCE_THRESHOLD,
        "periods": [
            {
                "name": p.name,
                "start_minute": p.start_minute,
                "end_minute": p.end_minute,
                "clock": p.clock_range(),
                "presence_minutes_needed": _minutes_needed(p.duration_minutes),
            }
            for p in SCHEDULE.all()
        ],
    }


def _minutes_needed(duration_minutes: int) -> int:
    # Smallest whole-minute total whose share of the period meets the threshold.
    for minutes in range(duration_minutes + 1):
        if minutes / duration_minutes >= PRESENCE_THRESHOLD:
            return minutes
    return duration_minutes
