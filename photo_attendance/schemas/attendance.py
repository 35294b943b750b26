import datetime
import math
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, EmailStr, Field

T = TypeVar("T")


# --- Input Schemas ---
class EmployeeSnapshot(BaseModel):
    """Directory fields copied onto the record at check-in time."""

    name: str = Field(..., min_length=1, max_length=100, examples=["Jane Doe"])
    email: EmailStr
    department: str = Field(..., min_length=1, max_length=100)
    employee_code: str = Field(..., min_length=1, max_length=50, examples=["EMP-001"])


class Location(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    accuracy: Optional[float] = Field(None, ge=0.0)


# --- Output Schemas ---
class AttendanceRead(BaseModel):
    id: int
    employee_id: str
    employee_name: str
    employee_email: str
    department: str
    employee_code: str
    check_in_at: datetime.datetime
    day: datetime.date = Field(validation_alias="day_bucket")
    photo_url: str
    location: Optional[Location] = None
    photo_reclaimed: bool
    needs_attention: bool = False

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_record(cls, record) -> "AttendanceRead":
        read = cls.model_validate(record)
        if record.latitude is not None and record.longitude is not None:
            read.location = Location(
                latitude=record.latitude,
                longitude=record.longitude,
                accuracy=record.accuracy,
            )
        return read


class CheckInResult(BaseModel):
    """What the employee gets back after a successful check-in (never the photo)."""

    id: int
    check_in_at: datetime.datetime
    photo_url: str


class CheckInStatus(BaseModel):
    allowed: bool
    record: Optional[AttendanceRead] = None

    @property
    def has_checked_in_today(self) -> bool:
        return not self.allowed


class SweepReport(BaseModel):
    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    flagged: int = 0


class AttendanceStats(BaseModel):
    today_check_ins: int
    weekly_check_ins: int
    pending_reclaim: int
    needs_attention: int


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_records: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if limit else 0
        return cls(
            current_page=page,
            total_pages=total_pages,
            total_records=total,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class Page(BaseModel, Generic[T]):
    records: List[T]
    pagination: Pagination
