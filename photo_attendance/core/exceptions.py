class AttendanceError(Exception):
    """Base exception for expected check-in and retention failures.

    ``code`` is stable and machine readable; ``message`` is safe to show users.
    """

    code = "attendance_error"
    default_message = "Attendance request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class AlreadyCheckedIn(AttendanceError):
    """Raised when the employee already has a record for the current day."""

    code = "already_checked_in"
    default_message = "You have already checked in today"


class InvalidPhoto(AttendanceError):
    """Raised when the submitted photo is missing, too large or not an image."""

    code = "invalid_photo"
    default_message = "Photo is not a valid image"

    def __init__(self, message: str | None = None, *, too_large: bool = False):
        super().__init__(message)
        self.too_large = too_large


class StorageUnavailable(AttendanceError):
    """Raised when the photo could not be uploaded. Nothing was persisted."""

    code = "storage_unavailable"
    default_message = "Photo storage is temporarily unavailable, please retry"


class PersistenceFailed(AttendanceError):
    """Raised when the record could not be written after the photo was uploaded."""

    code = "persistence_failed"
    default_message = "Could not record attendance, please retry"


class ReclaimTransientFailure(AttendanceError):
    """Photo deletion failed but may succeed on the next sweep."""

    code = "reclaim_transient_failure"
    default_message = "Photo deletion failed temporarily"


class ReclaimPermanentFailure(AttendanceError):
    """Photo deletion can never succeed; the record is closed and flagged."""

    code = "reclaim_permanent_failure"
    default_message = "Photo deletion failed permanently"
