from datetime import datetime, timezone

import cv2
import numpy as np
import pytest

from photo_attendance.core.exceptions import InvalidPhoto
from photo_attendance.services.photo import photo_name, validate_photo


def test_accepts_jpeg(photo_bytes):
    ok, jpeg = cv2.imencode(".jpg", np.zeros((10, 10, 3), dtype=np.uint8))
    assert ok

    validate_photo(jpeg.tobytes(), max_bytes=1024 * 1024)
    validate_photo(photo_bytes, max_bytes=1024 * 1024)


def test_rejects_truncated_image(photo_bytes):
    with pytest.raises(InvalidPhoto):
        validate_photo(photo_bytes[:20], max_bytes=1024 * 1024)


def test_size_ceiling_is_inclusive(photo_bytes):
    validate_photo(photo_bytes, max_bytes=len(photo_bytes))

    with pytest.raises(InvalidPhoto) as exc_info:
        validate_photo(photo_bytes, max_bytes=len(photo_bytes) - 1)
    assert exc_info.value.too_large is True


def test_photo_names_are_unique_and_safe():
    now = datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)

    first = photo_name("E 1/../x", now)
    second = photo_name("E 1/../x", now)

    assert first != second
    assert first.startswith("employee-E_1____x-1704096000000-")
    assert "/" not in first and " " not in first
