import threading
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from photo_attendance.core.exceptions import StorageUnavailable
from photo_attendance.database import get_db, get_sessionmaker
from photo_attendance.redis_config import CacheClient, get_redis
from photo_attendance.services.attendance import AttendanceService
from photo_attendance.services.object_store import ObjectStore, get_object_store
from photo_attendance.services.retention import RetentionSweeper
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity as verified and forwarded by the auth gateway."""

    employee_id: str
    role: str
    name: str = ""
    email: str = ""
    department: str = ""
    employee_code: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_identity(
    x_employee_id: Optional[str] = Header(None),
    x_employee_role: str = Header("employee"),
    x_employee_name: str = Header(""),
    x_employee_email: str = Header(""),
    x_employee_department: str = Header(""),
    x_employee_code: str = Header(""),
) -> Identity:
    if not x_employee_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required"
        )
    return Identity(
        employee_id=x_employee_id,
        role=x_employee_role.strip().lower(),
        name=x_employee_name,
        email=x_employee_email,
        department=x_employee_department,
        employee_code=x_employee_code,
    )


async def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return identity


def get_store() -> ObjectStore:
    try:
        return get_object_store()
    except RuntimeError as error:
        logger.error("Object store unavailable: %s", error)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=StorageUnavailable().to_dict(),
        )


async def get_attendance_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_redis),
) -> AttendanceService:
    return AttendanceService(db, cache=cache)


async def get_checkin_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_redis),
    store: ObjectStore = Depends(get_store),
) -> AttendanceService:
    return AttendanceService(db, store, cache)


_sweeper: RetentionSweeper | None = None
_sweeper_lock = threading.Lock()


def get_sweeper() -> RetentionSweeper:
    """Process-wide sweeper; scheduled and manual runs share its run-lock."""
    global _sweeper
    if _sweeper is not None:
        return _sweeper

    with _sweeper_lock:
        if _sweeper is None:
            _sweeper = RetentionSweeper(get_sessionmaker(), get_object_store())
        return _sweeper


def reset_sweeper() -> None:
    global _sweeper
    with _sweeper_lock:
        _sweeper = None
