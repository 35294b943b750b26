from .attendance import (
    AttendanceRead,
    AttendanceStats,
    CheckInResult,
    CheckInStatus,
    EmployeeSnapshot,
    Location,
    Page,
    Pagination,
    SweepReport,
)

__all__ = [
    "AttendanceRead",
    "AttendanceStats",
    "CheckInResult",
    "CheckInStatus",
    "EmployeeSnapshot",
    "Location",
    "Page",
    "Pagination",
    "SweepReport",
]
