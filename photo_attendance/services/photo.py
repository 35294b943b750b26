import re
import uuid
from datetime import datetime

import cv2
import numpy as np

from photo_attendance.core.exceptions import InvalidPhoto


def validate_photo(data: bytes, max_bytes: int) -> None:
    if not data:
        raise InvalidPhoto("Photo is required")
    if len(data) > max_bytes:
        raise InvalidPhoto(
            f"Photo exceeds the maximum size of {max_bytes} bytes", too_large=True
        )

    buffer = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buffer, cv2.IMREAD_UNCHANGED)
    if image is None or image.size == 0:
        raise InvalidPhoto("Only image files are allowed")


def photo_name(employee_id: str, now: datetime) -> str:
    # Unique enough for retries inside the same millisecond; not a secret.
    safe_id = re.sub(r"[^A-Za-z0-9_-]", "_", employee_id)
    millis = int(now.timestamp() * 1000)
    return f"employee-{safe_id}-{millis}-{uuid.uuid4().hex[:8]}"
