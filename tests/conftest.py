import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

import cv2
import numpy as np
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from photo_attendance.models import AttendanceRecord, Base
from photo_attendance.schemas.attendance import EmployeeSnapshot
from photo_attendance.services.attendance import AttendanceService
from photo_attendance.services.object_store import StoredObject


class InMemoryObjectStore:
    """Object store fake with failure injection."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.uploads: list[str] = []
        self.deletes: list[str] = []
        self.upload_error: Optional[Exception] = None
        self.delete_errors: dict[str, Exception] = {}
        self.upload_delay = 0.0
        self.delete_delay = 0.0
        self.on_upload: Optional[Callable[[], Awaitable[None]]] = None

    async def upload(self, data: bytes, name_hint: str) -> StoredObject:
        self.uploads.append(name_hint)
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        if self.upload_error is not None:
            raise self.upload_error
        if self.on_upload is not None:
            await self.on_upload()
        self.blobs[name_hint] = data
        return StoredObject(url=f"https://cdn.test/{name_hint}.png", storage_id=name_hint)

    async def delete(self, storage_id: str) -> None:
        self.deletes.append(storage_id)
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        error = self.delete_errors.get(storage_id)
        if error is not None:
            raise error
        self.blobs.pop(storage_id, None)

    async def close(self) -> None:
        return None


class DictCache:
    def __init__(self):
        self.values: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        return self.values.get(key)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self.values[key] = value

    async def delete(self, key: str) -> None:
        self.values.pop(key, None)

    async def close(self) -> None:
        return None


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path):
    # A file database with one connection per session, so sessions are isolated
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'attendance.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def store():
    return InMemoryObjectStore()


@pytest.fixture
def cache():
    return DictCache()


@pytest.fixture
def photo_bytes():
    ok, buffer = cv2.imencode(".png", np.full((16, 16, 3), 127, dtype=np.uint8))
    assert ok
    return buffer.tobytes()


@pytest.fixture
def snapshot():
    return EmployeeSnapshot(
        name="Jane Doe",
        email="jane@example.com",
        department="Engineering",
        employee_code="EMP-001",
    )


@pytest.fixture
def service(db, store, cache):
    return AttendanceService(
        db, store, cache, tz="UTC", max_photo_bytes=64 * 1024, store_timeout=0.2
    )


@pytest.fixture
def make_record(session_factory, store):
    """Insert a record directly, with a known storage id and its blob in the store."""

    async def _make(
        employee_id: str,
        check_in_at: datetime,
        storage_id: Optional[str] = None,
        **overrides,
    ) -> AttendanceRecord:
        storage_id = storage_id or f"{employee_id}-{check_in_at:%Y%m%d%H%M}"
        store.blobs[storage_id] = b"blob"
        values = dict(
            employee_id=employee_id,
            employee_name=f"Employee {employee_id}",
            employee_email=f"{employee_id.lower()}@example.com",
            department="Operations",
            employee_code=f"CODE-{employee_id}",
            check_in_at=check_in_at,
            day_bucket=check_in_at.date(),
            photo_url=f"https://cdn.test/{storage_id}.png",
            photo_storage_id=storage_id,
        )
        values.update(overrides)
        async with session_factory() as session:
            record = AttendanceRecord(**values)
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    return _make


@pytest.fixture
def fetch_record(session_factory):
    async def _fetch(record_id: int) -> AttendanceRecord:
        async with session_factory() as session:
            return await session.get(AttendanceRecord, record_id)

    return _fetch
