from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin, utcnow


class AttendanceRecord(Base, TimestampMixin):
    __tablename__ = "attendance_records"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Identity supplied by the auth layer; not a foreign key, the directory lives elsewhere.
    employee_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Snapshot of the directory entry at check-in time
    employee_name: Mapped[str] = mapped_column(String(100), nullable=False)
    employee_email: Mapped[str] = mapped_column(String(255), nullable=False)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False)

    check_in_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    # Calendar day of check_in_at in the reference timezone (stored for the unique index)
    day_bucket: Mapped[date] = mapped_column(Date, nullable=False)

    photo_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    photo_storage_id: Mapped[str] = mapped_column(String(255), nullable=False)

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Reclamation lifecycle: ACTIVE (False) -> RECLAIMED (True), never back.
    photo_reclaimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reclaimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    needs_attention: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reclaim_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # one record per employee per day.
    __table_args__ = (
        UniqueConstraint("employee_id", "day_bucket", name="uq_attendance_employee_daily"),
        Index("ix_attendance_reclaim_scan", "photo_reclaimed", "check_in_at"),
        Index("ix_attendance_check_in_at", "check_in_at"),
    )

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def __repr__(self):
        return (
            f"<AttendanceRecord(id={self.id}, employee_id='{self.employee_id}', "
            f"day='{self.day_bucket}', reclaimed={self.photo_reclaimed})>"
        )
