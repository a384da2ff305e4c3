class AttendanceError(Exception):
    """Base exception for the attendance engine and its collaborators."""

    def __init__(self, message: str = "Attendance error"):
        self.message = message
        super().__init__(self.message)


class ConfigError(AttendanceError):
    """Raised when the schedule or engine settings are invalid. Fatal at startup."""

    def __init__(self, message: str = "Invalid attendance configuration"):
        super().__init__(message)


class NotFoundError(AttendanceError):
    """Raised when a subject, period or record does not exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class TemporalOrderError(AttendanceError):
    """Raised when a scan is older than the stored entry timestamp."""

    def __init__(self, message: str = "Scan timestamp is earlier than the recorded entry"):
        super().__init__(message)


class StoreError(AttendanceError):
    """Raised when the record or identity store fails."""

    def __init__(self, message: str = "Attendance store operation failed"):
        super().__init__(message)


class StaleRecordError(StoreError):
    """Raised when a record changed between load and store."""

    def __init__(self, message: str = "Attendance record was modified concurrently"):
        super().__init__(message)
