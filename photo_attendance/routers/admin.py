import datetime
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from photo_attendance.core.exceptions import StorageUnavailable
from photo_attendance.dependencies import (
    get_attendance_service,
    get_checkin_service,
    get_sweeper,
    require_admin,
)
from photo_attendance.schemas.attendance import (
    AttendanceRead,
    AttendanceStats,
    Page,
    Pagination,
    SweepReport,
)
from photo_attendance.services.attendance import AttendanceService
from photo_attendance.services.retention import RetentionSweeper

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


def sweeper_dependency() -> RetentionSweeper:
    try:
        return get_sweeper()
    except RuntimeError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=StorageUnavailable().to_dict(),
        )


@router.get("/attendance", response_model=Page[AttendanceRead])
async def list_attendance(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: str = Query("", max_length=100),
    start_date: Optional[datetime.date] = Query(None, description="YYYY-MM-DD"),
    end_date: Optional[datetime.date] = Query(None, description="YYYY-MM-DD"),
    service: AttendanceService = Depends(get_attendance_service),
):
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must not be after end_date",
        )
    records, total = await service.search(
        page=page, limit=limit, search=search, start_date=start_date, end_date=end_date
    )
    return Page[AttendanceRead](
        records=[AttendanceRead.from_record(r) for r in records],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/stats", response_model=AttendanceStats)
async def attendance_stats(service: AttendanceService = Depends(get_attendance_service)):
    return await service.stats()


@router.post("/retention/sweep", response_model=SweepReport)
async def run_sweep(
    retention_days: Optional[int] = Query(None, ge=1, le=3650),
    sweeper: RetentionSweeper = Depends(sweeper_dependency),
):
    """Run the photo retention sweep now instead of waiting for the schedule."""
    retention = timedelta(days=retention_days) if retention_days else None
    return await sweeper.sweep(retention)


@router.delete("/employees/{employee_id}/attendance")
async def purge_employee_attendance(
    employee_id: str, service: AttendanceService = Depends(get_checkin_service)
):
    removed = await service.purge_employee(employee_id)
    return {"employee_id": employee_id, "deleted_records": removed}
