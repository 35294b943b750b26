import asyncio
import io
import threading
from dataclasses import dataclass
from typing import Iterable, Protocol

import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from photo_attendance.config import settings
from photo_attendance.core.exceptions import StorageUnavailable
from photo_attendance.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    url: str
    storage_id: str


class ObjectStoreError(Exception):
    """A failed object store call.

    ``permanent`` is True only when the store answered with a status listed in
    RECLAIM_PERMANENT_STATUS_CODES. Timeouts, network errors and unreadable
    responses are transient.
    """

    def __init__(
        self, message: str, *, permanent: bool = False, status_code: int | None = None
    ):
        super().__init__(message)
        self.permanent = permanent
        self.status_code = status_code


class ObjectStore(Protocol):
    async def upload(self, data: bytes, name_hint: str) -> StoredObject: ...

    # Deleting an id that does not exist succeeds.
    async def delete(self, storage_id: str) -> None: ...

    async def close(self) -> None: ...


class CloudinaryObjectStore:
    """Cloudinary uploads and deletes through the ``cloudinary`` SDK.

    The SDK is blocking, so every call runs in a worker thread. Calls pass
    ``return_error=True`` so API errors come back with their HTTP status.
    """

    def __init__(
        self,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        *,
        folder: str = "",
        timeout: float = 10.0,
        permanent_status_codes: Iterable[int] = (400, 422),
    ):
        self.credentials = {
            "cloud_name": cloud_name,
            "api_key": api_key,
            "api_secret": api_secret,
        }
        self.folder = folder
        self.timeout = timeout
        self.permanent_status_codes = frozenset(permanent_status_codes)

    def classify(self, status_code: int) -> bool:
        return status_code in self.permanent_status_codes

    async def _call(self, method, *args, **options) -> dict:
        try:
            result = await asyncio.to_thread(
                method,
                *args,
                return_error=True,
                timeout=self.timeout,
                **self.credentials,
                **options,
            )
        except CloudinaryError as error:
            # Network failures, unexpected statuses and unparsable bodies
            raise ObjectStoreError(f"Object store call failed: {error}") from error

        if not isinstance(result, dict):
            raise ObjectStoreError("Object store returned an unexpected payload")

        error = result.get("error")
        if error:
            status_code = error.get("http_code") if isinstance(error, dict) else None
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise ObjectStoreError(
                f"Object store returned {status_code}: {message}",
                permanent=status_code is not None and self.classify(status_code),
                status_code=status_code,
            )
        return result

    async def upload(self, data: bytes, name_hint: str) -> StoredObject:
        options = {"public_id": name_hint, "resource_type": "image", "filename": name_hint}
        if self.folder:
            options["folder"] = self.folder
        result = await self._call(cloudinary.uploader.upload, io.BytesIO(data), **options)
        try:
            return StoredObject(url=result["secure_url"], storage_id=result["public_id"])
        except KeyError as error:
            raise ObjectStoreError(f"Upload response missing {error}") from error

    async def delete(self, storage_id: str) -> None:
        result = await self._call(cloudinary.uploader.destroy, storage_id, invalidate=True)
        outcome = result.get("result")
        if outcome in {"ok", "not found"}:
            return
        raise ObjectStoreError(f"Unexpected destroy result for {storage_id}: {outcome}")

    async def close(self) -> None:
        return None


class TentativeUpload:
    """Upload a blob on entry and delete it on exit unless ``confirm()`` was called.

    Entry failures raise ``StorageUnavailable`` and leave nothing behind. A failing
    compensating delete is logged and never replaces the exception that caused it.
    """

    def __init__(self, store: ObjectStore, data: bytes, name_hint: str, *, timeout: float):
        self.store = store
        self.data = data
        self.name_hint = name_hint
        self.timeout = timeout
        self.stored: StoredObject | None = None
        self.confirmed = False

    async def __aenter__(self) -> StoredObject:
        try:
            self.stored = await asyncio.wait_for(
                self.store.upload(self.data, self.name_hint), self.timeout
            )
        except asyncio.TimeoutError as error:
            logger.warning("Upload of %s timed out after %ss", self.name_hint, self.timeout)
            raise StorageUnavailable() from error
        except ObjectStoreError as error:
            logger.warning("Upload of %s failed: %s", self.name_hint, error)
            raise StorageUnavailable() from error
        return self.stored

    def confirm(self) -> None:
        self.confirmed = True

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.stored is not None and not self.confirmed:
            await self.compensate()
        return False

    async def compensate(self) -> bool:
        if self.stored is None:
            return False
        storage_id = self.stored.storage_id
        try:
            await asyncio.wait_for(self.store.delete(storage_id), self.timeout)
        except (ObjectStoreError, asyncio.TimeoutError) as error:
            logger.error("Compensating delete of %s failed, blob orphaned: %r", storage_id, error)
            return False
        except Exception:
            logger.exception("Compensating delete of %s raised, blob orphaned", storage_id)
            return False
        logger.info("Compensating delete of %s succeeded", storage_id)
        return True


_object_store: ObjectStore | None = None
_object_store_lock = threading.Lock()


def _build_object_store() -> ObjectStore:
    if not (
        settings.CLOUDINARY_CLOUD_NAME
        and settings.CLOUDINARY_API_KEY
        and settings.CLOUDINARY_API_SECRET
    ):
        raise RuntimeError(
            "Object store is not configured. Set CLOUDINARY_CLOUD_NAME, "
            "CLOUDINARY_API_KEY and CLOUDINARY_API_SECRET."
        )
    return CloudinaryObjectStore(
        settings.CLOUDINARY_CLOUD_NAME,
        settings.CLOUDINARY_API_KEY,
        settings.CLOUDINARY_API_SECRET,
        folder=settings.CLOUDINARY_FOLDER,
        timeout=settings.OBJECT_STORE_TIMEOUT_SECONDS,
        permanent_status_codes=settings.RECLAIM_PERMANENT_STATUS_CODES,
    )


def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is not None:
        return _object_store

    with _object_store_lock:
        if _object_store is None:
            _object_store = _build_object_store()
        return _object_store


async def shutdown_object_store() -> None:
    global _object_store
    with _object_store_lock:
        store, _object_store = _object_store, None
    if store is not None:
        await store.close()
