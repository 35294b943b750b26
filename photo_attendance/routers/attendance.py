from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import ValidationError

from photo_attendance.config import settings
from photo_attendance.core.exceptions import (
    AlreadyCheckedIn,
    AttendanceError,
    InvalidPhoto,
    PersistenceFailed,
    StorageUnavailable,
)
from photo_attendance.dependencies import (
    Identity,
    get_attendance_service,
    get_checkin_service,
    get_identity,
)
from photo_attendance.schemas.attendance import (
    AttendanceRead,
    CheckInResult,
    EmployeeSnapshot,
    Location,
    Page,
    Pagination,
)
from photo_attendance.services.attendance import AttendanceService

router = APIRouter(prefix="/attendance", tags=["attendance"])


def to_http_exception(error: AttendanceError) -> HTTPException:
    if isinstance(error, AlreadyCheckedIn):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, InvalidPhoto):
        code = (
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
            if error.too_large
            else status.HTTP_400_BAD_REQUEST
        )
    elif isinstance(error, StorageUnavailable):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, PersistenceFailed):
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=error.to_dict())


def require_employee(identity: Identity = Depends(get_identity)) -> Identity:
    if identity.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Employee access required"
        )
    return identity


@router.get("/status")
async def check_in_status(
    identity: Identity = Depends(require_employee),
    service: AttendanceService = Depends(get_attendance_service),
):
    """Has the caller already checked in today?"""
    result = await service.can_check_in(identity.employee_id)
    return {
        "has_checked_in_today": result.has_checked_in_today,
        "record": result.record,
    }


@router.post("/check-in", response_model=CheckInResult, status_code=status.HTTP_201_CREATED)
async def check_in(
    photo: UploadFile = File(...),
    latitude: Optional[float] = Form(None),
    longitude: Optional[float] = Form(None),
    accuracy: Optional[float] = Form(None),
    identity: Identity = Depends(require_employee),
    service: AttendanceService = Depends(get_checkin_service),
):
    try:
        snapshot = EmployeeSnapshot(
            name=identity.name,
            email=identity.email,
            department=identity.department,
            employee_code=identity.employee_code,
        )
        location = (
            Location(latitude=latitude, longitude=longitude, accuracy=accuracy)
            if latitude is not None and longitude is not None
            else None
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=e.errors(include_url=False, include_context=False),
        )

    # One byte past the ceiling is enough to know it is too large.
    data = await photo.read(settings.MAX_PHOTO_BYTES + 1)

    try:
        record = await service.check_in(identity.employee_id, snapshot, data, location)
    except AttendanceError as e:
        raise to_http_exception(e)

    return CheckInResult(
        id=record.id, check_in_at=record.check_in_at, photo_url=record.photo_url
    )


@router.get("/history", response_model=Page[AttendanceRead])
async def get_attendance_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    identity: Identity = Depends(require_employee),
    service: AttendanceService = Depends(get_attendance_service),
):
    """
    Fetch the caller's own check-ins, newest first.
    """
    records, total = await service.history(identity.employee_id, page=page, limit=limit)
    return Page[AttendanceRead](
        records=[AttendanceRead.from_record(r) for r in records],
        pagination=Pagination.build(page, limit, total),
    )
