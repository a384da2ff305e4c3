import os
from datetime import timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from attendance.errors import ConfigError
from attendance.schedule import Schedule

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("ROLLCALL_DB_PATH", BASE_DIR / "database" / "rollcall.db"))
LOG_LEVEL = os.getenv("ROLLCALL_LOG_LEVEL", "INFO").strip().upper() or "INFO"

DEFAULT_SCHEDULE = ";".join(
    [
        "Hour1=08:40-09:40",
        "Hour2=09:40-10:40",
        "Hour3=10:40-11:40",
        "Hour4=11:40-12:40",
        "Hour5=13:20-14:20",
        "Hour6=14:20-15:20",
        "Hour7=15:20-16:20",
    ]
)


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_timezone(value: str | None) -> tzinfo:
    name = (value or "").strip() or "Asia/Kolkata"
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"Unknown timezone {name!r} in ROLLCALL_TIMEZONE.")


def _parse_threshold(value: str | None) -> float:
    if not value or not value.strip():
        return 0.10
    try:
        threshold = float(value)
    except ValueError:
        raise ConfigError(f"ROLLCALL_PRESENCE_THRESHOLD must be a fraction, got {value!r}.")
    if not 0 < threshold <= 1:
        raise ConfigError(f"ROLLCALL_PRESENCE_THRESHOLD must be in (0, 1], got {value!r}.")
    return threshold


CORS_ALLOW_ORIGINS = _parse_csv(os.getenv("ROLLCALL_CORS_ALLOW_ORIGINS"), ["*"])
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_METHODS"),
    ["GET", "POST", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("ROLLCALL_CORS_ALLOW_HEADERS"),
    ["Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("ROLLCALL_CORS_ALLOW_CREDENTIALS"), False)

# Schedule problems are fatal: fail the import rather than fall back.
REFERENCE_TIMEZONE = _parse_timezone(os.getenv("ROLLCALL_TIMEZONE"))
SCHEDULE = Schedule.parse(os.getenv("ROLLCALL_SCHEDULE") or DEFAULT_SCHEDULE)
PRESENCE_THRESHOLD = _parse_threshold(os.getenv("ROLLCALL_PRESENCE_THRESHOLD"))
